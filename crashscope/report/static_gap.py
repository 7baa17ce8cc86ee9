from crashscope.persist_graph.persist_graph import PersistenceGraph
from crashscope.report.vulnerability import Vulnerability, VulnClass, VulnKind
from crashscope.trace_proc.trace_reader.op_type import OpKind

class StaticGapAnalyzer:
    """
    Find code locations that miss a durability barrier.

    Dynamic ordering findings are mapped back to the call site of the
    operation that was lost, and the persistence graph is searched for
    renames that are not protected by barriers.
    """
    def __init__(self, op_list : list, graph : PersistenceGraph):
        self.op_list = op_list
        self.graph = graph

    def __witness(self, seq : int):
        backtrace = self.op_list[seq].backtrace
        return backtrace[0] if backtrace else None

    def from_dynamic(self, vulns : list) -> list:
        rst = []
        for vuln in vulns:
            if vuln.vuln_class != VulnClass.Dynamic or vuln.kind == VulnKind.Atomicity:
                continue
            op = self.op_list[vuln.start_seq]
            if op.kind.isSyncTy() or op.kind.isPseudoTy():
                continue
            barrier = self.graph.durable_at(op.seq)
            if barrier is not None and barrier <= vuln.end_seq:
                continue
            info = 'no barrier makes %s durable before operation %d' % (op.short_str(), vuln.end_seq)
            rst.append(Vulnerability(VulnClass.Static, VulnKind.OrderingDurability,
                                     op.seq, vuln.end_seq, self.__witness(op.seq), info,
                                     vuln.image_ids))
        return rst

    def graph_gaps(self) -> list:
        # an application that never syncs makes no durability promise to check
        if not self.graph.has_barriers():
            return []

        rst = []
        last_seq = len(self.op_list) - 1
        data_seqs = dict()  # inode -> seqs of data operations
        for op in self.op_list:
            if op.kind.isDataTy():
                data_seqs.setdefault(op.inode, []).append(op.seq)
            if op.kind != OpKind.kRename or op.is_dir:
                continue

            unsynced = [seq for seq in data_seqs.get(op.inode, [])
                        if self.graph.durable_at(seq) is None or self.graph.durable_at(seq) > op.seq]
            if unsynced:
                info = 'rename %s -> %s may persist before the data written to it' % (op.path, op.dest_path)
                rst.append(Vulnerability(VulnClass.Static, VulnKind.OrderingDurability,
                                         unsynced[0], op.seq, self.__witness(op.seq), info))

            if self.graph.rename_durable_at.get(op.seq) is None:
                info = 'rename %s -> %s is never made durable by fsync of its directory' % (op.path, op.dest_path)
                rst.append(Vulnerability(VulnClass.Static, VulnKind.OrderingDurability,
                                         op.seq, last_seq, self.__witness(op.seq), info))
        return rst

    @classmethod
    def dedup(cls, vulns : list) -> list:
        ''' one finding per code location, findings without one are kept per range '''
        found = dict()
        for vuln in vulns:
            if vuln.witness is not None:
                key = (vuln.kind, vuln.witness)
            else:
                key = (vuln.kind, vuln.start_seq, vuln.end_seq)
            if key in found:
                found[key] = found[key].with_images(vuln.image_ids)
            else:
                found[key] = vuln
        return sorted(found.values(), key=lambda v: v.sort_key())
