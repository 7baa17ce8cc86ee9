import sys
import json
import argparse

import crashscope.utils.logger as log
from crashscope.result_store.memcached_wrapper import setup_memcached_client
from crashscope.result_store.result_sink import read_run_results
from crashscope.utils.exceptions import ResultStoreOPFailed

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Dump the results a checking run published to memcached.')

    parser.add_argument("--memcached_host", type=str,
                        required=False, default='127.0.0.1',
                        help="The memcached server.")
    parser.add_argument("--memcached_port", type=int,
                        required=False, default=11211,
                        help="The port of the memcached server. Default: 11211.")
    parser.add_argument("--run_id", type=str,
                        required=True,
                        help="The name of the run.")
    parser.add_argument("--output_file", type=str,
                        required=False, default=None,
                        help="Write the results to this file instead of stdout.")
    parser.add_argument("--stderr_level", type=int,
                        required=False, default=40,
                        help="stderr output level:\n10: debug; 20: info ; 30: warning; 40: error; 50: critical. Default: 40.")

    return parser.parse_args(argv)

def main(argv=None) -> int:
    args = parse_args(argv)
    log.setup_global_logger(stm=sys.stderr, stm_lv=args.stderr_level)

    mc_client = setup_memcached_client(args.memcached_host, args.memcached_port)
    try:
        results = read_run_results(mc_client, args.run_id)
    except ResultStoreOPFailed as e:
        print('cannot read run %s: %s' % (args.run_id, e), file=sys.stderr)
        return 1
    finally:
        mc_client.close()

    if args.output_file:
        with open(args.output_file, 'w') as fd:
            json.dump(results, fd, indent=2)
            fd.write('\n')
    else:
        print(json.dumps(results, indent=2))
    return 0

if __name__ == "__main__":
    sys.exit(main())
