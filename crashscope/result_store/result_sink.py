from crashscope.executor.eval_result import EvalResult
from crashscope.oracle.oracle_verdict import OracleVerdict
from crashscope.report.report import CheckReport
from crashscope.result_store.memcached_wrapper import mc_set_wrapper, mc_get_wrapper, mc_incr_wrapper
from crashscope.utils.logger import global_logger

KEY_PREFIX = 'crashscope'

def verdict_count_key(run_id, verdict_name):
    return f'{KEY_PREFIX}.{run_id}.verdict.{verdict_name}.count'

def vuln_count_key(run_id):
    return f'{KEY_PREFIX}.{run_id}.vuln.count'

def vuln_key(run_id, num):
    return f'{KEY_PREFIX}.{run_id}.vuln.{num}'

def report_key(run_id):
    return f'{KEY_PREFIX}.{run_id}.report'

class MemcachedResultSink:
    """
    Publish verdict counters and vulnerabilities of a run to memcached, so
    runs on several hosts can be collected in one place.
    """
    def __init__(self, mc_client, run_id : str):
        self.mc_client = mc_client
        self.run_id = run_id.replace(' ', '_')

    def publish_eval(self, result : EvalResult):
        name = result.verdict.value if result.verdict is not None else 'Skipped'
        mc_incr_wrapper(self.mc_client, verdict_count_key(self.run_id, name), 1)

    def publish_report(self, report : CheckReport):
        for vuln in report.vulnerabilities:
            num = mc_incr_wrapper(self.mc_client, vuln_count_key(self.run_id), 1)
            mc_set_wrapper(self.mc_client, vuln_key(self.run_id, num), vuln.to_dict())
        summary = {'complete': report.complete, 'stats': dict(report.stats), 'notes': list(report.notes)}
        mc_set_wrapper(self.mc_client, report_key(self.run_id), summary)
        global_logger.info("published %d vulnerabilities of run %s" % (len(report.vulnerabilities), self.run_id))

def read_run_results(mc_client, run_id : str) -> dict:
    ''' collect what MemcachedResultSink published for run_id '''
    run_id = run_id.replace(' ', '_')
    counts = dict()
    for name in [v.value for v in OracleVerdict] + ['Skipped']:
        counts[name] = int(mc_get_wrapper(mc_client, verdict_count_key(run_id, name), 0))

    vulns = []
    num = int(mc_get_wrapper(mc_client, vuln_count_key(run_id), 0))
    for i in range(1, num + 1):
        vuln = mc_get_wrapper(mc_client, vuln_key(run_id, i))
        if vuln is None:
            global_logger.warning("vulnerability %d of run %s is missing" % (i, run_id))
            continue
        vulns.append(vuln)

    return {'run_id': run_id, 'verdict_counts': counts, 'vulnerabilities': vulns,
            'summary': mc_get_wrapper(mc_client, report_key(run_id))}
