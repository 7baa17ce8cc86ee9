import os
import sys
import time
import json
import argparse

import crashscope.utils.logger as log
from crashscope.conf.check_env import CheckEnv
from crashscope.crash_plan.atomicity_policy import AtomicityPolicy
from crashscope.executor.check_runner import CheckRunner
from crashscope.result_store.memcached_wrapper import setup_memcached_pooled_client
from crashscope.result_store.result_sink import MemcachedResultSink
from crashscope.utils.const_var import TRACE_FILE_PREFIX, ORACLE_TTL, DEFAULT_NUM_WORKERS, DEFAULT_WRITE_SPLITS
from crashscope.utils.exceptions import CrashCheckFatal
from crashscope.utils.utils import str2bool

EXIT_CLEAN = 0
EXIT_VULNERABLE = 1
EXIT_FATAL = 2

def parse_codes(value : str) -> tuple:
    try:
        return tuple(int(x) for x in value.split(',') if x.strip())
    except ValueError:
        raise argparse.ArgumentTypeError('comma separated exit codes expected, got %s.' % (value))

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Check whether an application recovers from crashes at any point of its file system trace.')

    parser.add_argument("--traces_dir", type=str,
                        required=True,
                        help="The directory holding the recorded trace files.")
    parser.add_argument("--trace_prefix", type=str,
                        required=False, default=TRACE_FILE_PREFIX,
                        help="Trace files are named <trace_prefix>.<source>. Default: %s." % (TRACE_FILE_PREFIX))
    parser.add_argument("--initial_snapshot", type=str,
                        required=True,
                        help="The copy of the workload directory taken before the workload started.")
    parser.add_argument("--workload_dir", type=str,
                        required=False, default=None,
                        help="The directory the workload ran in. Paths of the trace outside it are ignored.")
    parser.add_argument("--scratch_dir", type=str,
                        required=False, default=None,
                        help="Where crashed directories are constructed. The system temp dir in default.")
    parser.add_argument("--checker", type=str,
                        required=True,
                        help="The checker command. The crashed directory is appended as its last argument.")
    parser.add_argument("--recovery", type=str,
                        required=False, default=None,
                        help="The recovery command run on the crashed directory before the checker.")
    parser.add_argument("--oracle_ttl", type=float,
                        required=False, default=ORACLE_TTL,
                        help="Seconds the recovery and the checker may take each. Default: %d." % (ORACLE_TTL))
    parser.add_argument("--pass_stdout_file", type=str2bool,
                        required=False, default=False,
                        help="If enabled, the file holding the stdout printed before the crash is given to the checker as its second argument.")
    parser.add_argument("--consistent_codes", type=parse_codes,
                        required=False, default=(0,),
                        help="Comma separated exit codes of the checker meaning consistent. Default: 0.")
    parser.add_argument("--inconsistent_codes", type=parse_codes,
                        required=False, default=(1, 101),
                        help="Comma separated exit codes of the checker meaning inconsistent. Default: 1,101.")
    parser.add_argument("--num_workers", type=int,
                        required=False, default=DEFAULT_NUM_WORKERS,
                        help="The number of crash images evaluated in parallel. Default: %d." % (DEFAULT_NUM_WORKERS))
    parser.add_argument("--deadline", type=float,
                        required=False, default=None,
                        help="Seconds the evaluation may take. Unlimited in default.")
    parser.add_argument("--max_images", type=int,
                        required=False, default=None,
                        help="The number of crash images to evaluate. Unlimited in default.")
    parser.add_argument("--reorder", type=str2bool,
                        required=False, default=True,
                        help="Generate crash images that drop an operation while later ones persist.")
    parser.add_argument("--torn", type=str2bool,
                        required=False, default=True,
                        help="Generate crash images that persist an operation partially.")
    parser.add_argument("--split_mode", type=str,
                        required=False, default='count',
                        choices=list(AtomicityPolicy.SPLIT_MODES),
                        help="How writes are split into atomic units. Default: count.")
    parser.add_argument("--splits", type=int,
                        required=False, default=DEFAULT_WRITE_SPLITS,
                        help="The number of units of a write in the count split mode. Default: %d." % (DEFAULT_WRITE_SPLITS))
    parser.add_argument("--block_size", type=int,
                        required=False, default=None,
                        help="The unit size in bytes in the aligned split mode.")
    parser.add_argument("--atomic_write_bytes", type=int,
                        required=False, default=None,
                        help="Writes no larger than this are atomic.")
    parser.add_argument("--extend_fill", type=str,
                        required=False, default='zeros',
                        choices=list(AtomicityPolicy.FILL_MODES),
                        help="What an extended but unwritten region reads as. Default: zeros.")
    parser.add_argument("--atomic_rename", type=str2bool,
                        required=False, default=True,
                        help="If disabled, renaming a file may persist as separate unlink and link steps.")
    parser.add_argument("--static_analysis", type=str2bool,
                        required=False, default=True,
                        help="Report code locations that miss a durability barrier.")
    parser.add_argument("--report_file", type=str,
                        required=False, default=None,
                        help="Write the report to this file. The report is printed to stdout in default.")
    parser.add_argument("--report_format", type=str,
                        required=False, default='text', choices=['text', 'json'],
                        help="The format of the report. Default: text.")
    parser.add_argument("--failed_images_dir", type=str,
                        required=False, default=None,
                        help="Keep the crashed directories the checker rejects here.")
    parser.add_argument("--progress", type=str2bool,
                        required=False, default=False,
                        help="Show a progress bar.")
    parser.add_argument("--memcached_host", type=str,
                        required=False, default=None,
                        help="Publish the results to this memcached server.")
    parser.add_argument("--memcached_port", type=int,
                        required=False, default=11211,
                        help="The port of the memcached server. Default: 11211.")
    parser.add_argument("--run_id", type=str,
                        required=False, default=None,
                        help="The name of the run in the result store. The basename of traces_dir in default.")
    parser.add_argument("--time_logger_local_file", type=str,
                        required=False, default=None,
                        help="The local logging file to store time elapsed information. If does not set, the time elapsed information will not be logged.")
    parser.add_argument("--logging_file", type=str,
                        required=False, default=None,
                        help="The logging file")
    parser.add_argument("--logging_level", type=int,
                        required=False, default=40,
                        help="logging file level:\n10: debug; 20: info ; 30: warning; 40: error; 50: critical. Default: 40.")
    parser.add_argument("--stderr_level", type=int,
                        required=False, default=50,
                        help="stderr output level:\n10: debug; 20: info ; 30: warning; 40: error; 50: critical. Default: 50.")

    return parser.parse_args(argv)

def build_env(args) -> CheckEnv:
    policy = AtomicityPolicy(split_mode=args.split_mode, splits=args.splits,
                             block_size=args.block_size, atomic_write_bytes=args.atomic_write_bytes,
                             extend_fill=args.extend_fill, atomic_rename=args.atomic_rename)
    return CheckEnv(traces_dir=args.traces_dir,
                    trace_prefix=args.trace_prefix,
                    initial_snapshot=args.initial_snapshot,
                    workload_dir=args.workload_dir,
                    scratch_dir=args.scratch_dir,
                    checker=args.checker,
                    recovery=args.recovery,
                    oracle_ttl=args.oracle_ttl,
                    pass_stdout_file=args.pass_stdout_file,
                    consistent_codes=args.consistent_codes,
                    inconsistent_codes=args.inconsistent_codes,
                    num_workers=args.num_workers,
                    deadline=args.deadline,
                    max_images=args.max_images,
                    reorder=args.reorder,
                    torn=args.torn,
                    static_analysis=args.static_analysis,
                    atomicity_policy=policy,
                    report_file=args.report_file,
                    report_format=args.report_format,
                    failed_images_dir=args.failed_images_dir,
                    progress=args.progress,
                    memcached_host=args.memcached_host,
                    memcached_port=args.memcached_port,
                    run_id=args.run_id)

def run_check(env : CheckEnv) -> int:
    result_sink = None
    if env.MEMCACHED_HOST():
        mc_client = setup_memcached_pooled_client(env.MEMCACHED_HOST(), env.MEMCACHED_PORT())
        result_sink = MemcachedResultSink(mc_client, env.RUN_ID())

    start_time = time.perf_counter()
    try:
        report = CheckRunner(env, result_sink=result_sink).run()
    except CrashCheckFatal as e:
        log.global_logger.critical(str(e))
        print('fatal: %s: %s' % (e.invariant, e.msg), file=sys.stderr)
        return EXIT_FATAL
    log.time_logger.info(f"elapsed_time.check.main_check.run_check:{time.perf_counter() - start_time:.6f}")

    if env.REPORT_FILE():
        report.save(env.REPORT_FILE(), env.REPORT_FORMAT())
        log.global_logger.info("report written to %s" % (os.path.abspath(env.REPORT_FILE())))
    elif env.REPORT_FORMAT() == 'json':
        print(json.dumps(report.to_dict(), indent=2))
    else:
        print(report.to_text(), end='')

    return EXIT_VULNERABLE if report.vulnerabilities else EXIT_CLEAN

def main(argv=None) -> int:
    args = parse_args(argv)

    log.setup_global_logger(fname=args.logging_file, file_lv=args.logging_level, stm=sys.stderr, stm_lv=args.stderr_level, time_fname=args.time_logger_local_file)
    log.global_logger.info(str(args))

    try:
        try:
            env = build_env(args)
        except ValueError as e:
            print('invalid arguments: %s' % (e), file=sys.stderr)
            return EXIT_FATAL
        return run_check(env)
    finally:
        log.flush_all()
        log.close_all()

if __name__ == "__main__":
    sys.exit(main())
