import threading

import crashscope.utils.logger as log
from crashscope.crash_plan.crash_image_type import CrashImageType
from crashscope.executor.eval_result import EvalResult
from crashscope.oracle.oracle_verdict import OracleVerdict
from crashscope.persist_graph.persist_graph import PersistenceGraph
from crashscope.report.report import CheckReport
from crashscope.report.static_gap import StaticGapAnalyzer
from crashscope.report.vulnerability import Vulnerability, VulnClass, VulnKind

class VulnerabilityReporter:
    """
    Collect evaluation results in any order and turn the inconsistent
    ones into vulnerabilities over operation ranges.
    """
    def __init__(self, op_list : list, graph : PersistenceGraph, static_analysis : bool = True):
        self.op_list = op_list
        self.graph = graph
        self.static_analysis = static_analysis
        self.num_ops = len(op_list)

        self.results = []
        self.lock = threading.Lock()

    def consume(self, result : EvalResult):
        with self.lock:
            self.results.append(result)
        if result.is_inconsistent():
            log.global_logger.info("inconsistent crash image, %s" % (str(result)))

    def __stats(self) -> dict:
        stats = {'images': len(self.results)}
        for verdict in OracleVerdict:
            stats[verdict.value] = len([r for r in self.results if r.verdict == verdict])
        stats['Skipped'] = len([r for r in self.results if r.verdict is None])
        return stats

    def __prefix_verdicts(self) -> dict:
        ''' cut -> (verdict, image id) of the images persisting every issued operation '''
        rst = dict()
        for r in self.results:
            if r.image.type.is_prefix_like() and not r.is_inconclusive():
                rst[r.image.cut] = (r.verdict, r.image.image_id)
        return rst

    def __prefix_findings(self, prefix_verdicts : dict) -> list:
        rst = []
        last_consistent = None
        run = []

        def close_run(next_consistent):
            start = last_consistent if last_consistent is not None else 0
            if next_consistent is not None:
                end = next_consistent - 1
                info = 'crashing after operations %d..%d leaves an inconsistent state' % (run[0][0] - 1, run[-1][0] - 1)
            else:
                end = self.num_ops - 1
                info = 'inconsistent from cut %d through the full replay' % (run[0][0])
            start = min(start, end)
            rst.append(Vulnerability(VulnClass.Dynamic, VulnKind.Atomicity, max(start, 0), max(end, 0),
                                     None, info, [image_id for cut, image_id in run]))

        for cut in sorted(prefix_verdicts):
            verdict, image_id = prefix_verdicts[cut]
            if verdict == OracleVerdict.Inconsistent:
                run.append((cut, image_id))
            else:
                if run:
                    close_run(cut)
                    run = []
                last_consistent = cut
        if run:
            close_run(None)
        return rst

    def __focus_findings(self, prefix_verdicts : dict) -> list:
        ''' findings of reorder and torn images, grouped by the operation they are about '''
        # seq -> dict(image type, list of EvalResult)
        focus_map = dict()
        for r in self.results:
            image = r.image
            if image.type not in [CrashImageType.Reorder, CrashImageType.Torn] or not r.is_inconsistent():
                continue
            prefix = prefix_verdicts.get(image.cut)
            # failures of the prefix itself are reported by the prefix findings
            if prefix is None or prefix[0] != OracleVerdict.Consistent:
                continue
            focus_map.setdefault(image.focus_seq, dict()).setdefault(image.type, []).append(r)

        rst = []
        for seq in sorted(focus_map):
            failed = focus_map[seq]
            op = self.op_list[seq]
            barrier = self.graph.durable_at(seq)
            image_ids = [r.image.image_id for results in failed.values() for r in results]

            reorder_end = None
            if CrashImageType.Reorder in failed:
                if barrier is not None:
                    reorder_end = barrier
                else:
                    first = min(failed[CrashImageType.Reorder], key=lambda r: r.image.cut)
                    overtaking = [s for s in first.image.persisted if s > seq]
                    reorder_end = max(overtaking) if overtaking else seq

            torn_end = None
            if CrashImageType.Torn in failed:
                torn_end = barrier if barrier is not None else seq

            if reorder_end is not None and torn_end is not None:
                kind = VulnKind.Both
                end = max(reorder_end, torn_end)
                info = '%s may be lost or persist partially' % (op.short_str())
            elif reorder_end is not None:
                kind = VulnKind.OrderingDurability
                end = reorder_end
                info = '%s may be lost while later operations persist' % (op.short_str())
            elif barrier is not None:
                kind = VulnKind.OrderingDurability
                end = torn_end
                info = '%s may persist partially before the barrier at %d' % (op.short_str(), barrier)
            else:
                kind = VulnKind.Atomicity
                end = torn_end
                info = '%s may persist partially' % (op.short_str())
            rst.append(Vulnerability(VulnClass.Dynamic, kind, seq, end, None, info, image_ids))
        return rst

    def __no_barrier_findings(self) -> list:
        failed = [r.image.image_id for r in self.results
                  if r.is_inconsistent() and r.image.type not in [CrashImageType.Minimal, CrashImageType.Maximal]]
        if not failed or self.num_ops == 0:
            return []
        info = 'no durability barrier in the trace, a crash at any point may leave an inconsistent state'
        return [Vulnerability(VulnClass.Dynamic, VulnKind.Atomicity, 0, self.num_ops - 1, None, info, failed)]

    @classmethod
    def dedup(cls, vulns : list) -> list:
        found = dict()
        for vuln in vulns:
            key = vuln.key()
            if key in found:
                found[key] = found[key].with_images(vuln.image_ids)
            else:
                found[key] = vuln
        return sorted(found.values(), key=lambda v: v.sort_key())

    def finalize(self, complete : bool = True, notes : list = None) -> CheckReport:
        notes = list(notes) if notes else []
        with self.lock:
            results = sorted(self.results, key=lambda r: r.image.position())
            self.results = results

        prefix_verdicts = self.__prefix_verdicts()
        minimal = [r for r in results if r.image.type == CrashImageType.Minimal]
        maximal = [r for r in results if r.image.type == CrashImageType.Maximal]
        if minimal and minimal[0].is_inconsistent():
            notes.append('the oracle rejects the baseline snapshot, findings at the start of the trace are unreliable')
        if maximal and maximal[0].is_inconsistent():
            notes.append('the oracle rejects the state after the full workload')

        if self.num_ops > 0 and not self.graph.has_barriers():
            dynamic = self.__no_barrier_findings()
        else:
            dynamic = self.__prefix_findings(prefix_verdicts) + self.__focus_findings(prefix_verdicts)
        dynamic = self.dedup(dynamic)

        static = []
        if self.static_analysis:
            analyzer = StaticGapAnalyzer(self.op_list, self.graph)
            static = StaticGapAnalyzer.dedup(analyzer.from_dynamic(dynamic) + analyzer.graph_gaps())

        inconclusive = [r for r in results if r.is_inconclusive()]
        for r in inconclusive:
            log.global_logger.debug("inconclusive crash image, %s" % (str(r)))

        report = CheckReport(self.op_list, dynamic + static, inconclusive, self.__stats(), notes, complete)
        log_msg = "report finalized, %d dynamic and %d static vulnerabilities, %d inconclusive images" \
                % (len(dynamic), len(static), len(inconclusive))
        log.global_logger.info(log_msg)
        return report
