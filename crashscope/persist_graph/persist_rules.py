from abc import ABC, abstractmethod
from intervaltree import IntervalTree

from crashscope.trace_proc.trace_reader.op_type import OpKind

class PersistRuleBase(ABC):
    """ A source of persistence edges. """
    name = 'base'

    @abstractmethod
    def apply(self, graph):
        '''add edges to graph through graph.add_edge'''
        pass

    def __str__(self) -> str:
        return self.name

    def __repr__(self) -> str:
        return self.__str__()

class ExistenceRule(PersistRuleBase):
    '''an operation depends on the creation of every inode it references'''
    name = 'existence'

    def apply(self, graph):
        creator = dict()
        for op in graph.op_list:
            inodes = op.referenced_inodes()
            if op.dest_inode is not None:
                inodes.append(op.dest_inode)
            for inode in inodes:
                if inode in creator:
                    graph.add_edge(creator[inode], op.seq, self.name)
            if op.kind in [OpKind.kCreate, OpKind.kMkdir]:
                creator[op.inode] = op.seq

class MetadataProgramOrderRule(PersistRuleBase):
    '''changes to the metadata of one inode persist in program order'''
    name = 'metadata_order'

    def apply(self, graph):
        last_meta_op = dict()
        for op in graph.op_list:
            for inode in op.metadata_inodes():
                if inode in last_meta_op:
                    graph.add_edge(last_meta_op[inode], op.seq, self.name)
                last_meta_op[inode] = op.seq

class ExtentDependencyRule(PersistRuleBase):
    '''an overwrite depends on the operations that made the overwritten bytes part of the file'''
    name = 'extent'

    def apply(self, graph):
        # inode -> IntervalTree, [start, end) -> seq of the extending operation
        extent_trees = dict()
        for op in graph.op_list:
            if op.kind == OpKind.kAppend:
                tree = extent_trees.setdefault(op.inode, IntervalTree())
                tree.addi(op.offset, op.end(), op.seq)
            elif op.kind == OpKind.kTruncate:
                tree = extent_trees.setdefault(op.inode, IntervalTree())
                if op.final_size > op.initial_size:
                    tree.addi(op.initial_size, op.final_size, op.seq)
                elif op.final_size < op.initial_size:
                    tree.chop(op.final_size, op.initial_size)
            elif op.kind == OpKind.kOverwrite:
                tree = extent_trees.get(op.inode)
                if tree is None:
                    continue
                for interval in tree.overlap(op.offset, op.end()):
                    graph.add_edge(interval.data, op.seq, self.name)

class DurabilityBarrierRule(PersistRuleBase):
    '''
    fsync(i) makes prior data operations on i and prior entry changes of
    directory i durable, fdatasync(i) the data operations only. Everything
    issued after a barrier returned depends on it.
    '''
    name = 'barrier'

    def apply(self, graph):
        pending_data = dict()  # inode -> seqs of data operations not yet durable
        pending_entry = dict() # directory inode -> seqs of entry changes not yet durable
        last_barrier = None
        for op in graph.op_list:
            if last_barrier is not None:
                graph.add_edge(last_barrier, op.seq, self.name)

            if op.kind.isSyncTy():
                covered = pending_data.pop(op.inode, [])
                if op.kind == OpKind.kFsync:
                    covered += pending_entry.pop(op.inode, [])
                for seq in covered:
                    graph.add_edge(seq, op.seq, self.name)
                    graph.barrier_of.setdefault(seq, op.seq)
                last_barrier = op.seq
                continue

            if op.kind.isDataTy():
                pending_data.setdefault(op.inode, []).append(op.seq)
            for parent in op.namespace_parents():
                pending_entry.setdefault(parent, []).append(op.seq)

class RenameDurabilityRule(PersistRuleBase):
    '''
    A rename is visible once issued but durable only after fsync of every
    directory whose entries it changed. Records the durability point, adds
    no edges.
    '''
    name = 'rename_durability'

    def apply(self, graph):
        # directory inode -> seqs of fsync on it
        dir_fsync_map = dict()
        for op in graph.op_list:
            if op.kind == OpKind.kFsync:
                dir_fsync_map.setdefault(op.inode, []).append(op.seq)

        for op in graph.op_list:
            if op.kind != OpKind.kRename:
                continue
            durable_at = op.seq
            for parent in op.namespace_parents():
                later = [seq for seq in dir_fsync_map.get(parent, []) if seq > op.seq]
                if not later:
                    durable_at = None
                    break
                durable_at = max(durable_at, later[0])
            graph.rename_durable_at[op.seq] = durable_at

def default_rules() -> list:
    return [ExistenceRule(), MetadataProgramOrderRule(), ExtentDependencyRule(),
            DurabilityBarrierRule(), RenameDurabilityRule()]
