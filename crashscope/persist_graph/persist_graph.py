import time
import heapq

import crashscope.utils.logger as log
from crashscope.persist_graph.persist_rules import default_rules
from crashscope.trace_proc.trace_reader.op_type import OpKind
from crashscope.utils.exceptions import CyclicDependency

def timeit(func):
    """Decorator that prints the time a function takes to execute."""
    def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        result = func(*args, **kwargs)
        log.time_logger.info(f"elapsed_time.graph.persist_graph.{func.__name__}:{time.perf_counter() - start_time:.6f}")
        return result
    return wrapper

def iter_bits(mask : int):
    ''' yield the set bit positions of mask in ascending order '''
    while mask:
        low = mask & -mask
        yield low.bit_length() - 1
        mask ^= low

def seqs_to_mask(seqs) -> int:
    mask = 0
    for seq in seqs:
        mask |= 1 << seq
    return mask

class PersistenceEdge:
    """ src must reach stable storage before dst does """

    def __init__(self, src : int, dst : int, rule : str):
        self.src = src
        self.dst = dst
        self.rule = rule

    def __str__(self) -> str:
        return '%d -> %d (%s)' % (self.src, self.dst, self.rule)

    def __repr__(self) -> str:
        return self.__str__()

    def __member(self) -> tuple:
        return (self.src, self.dst)

    def __eq__(self, other) -> bool:
        if not isinstance(other, PersistenceEdge):
            return False
        return self.__member() == other.__member()

    def __hash__(self) -> int:
        return hash(self.__member())

class PersistenceGraph:
    """
    The persistence dependencies among the operations of one trace.

    Every operation is a node. Edges are produced by an ordered list of
    rules, each rule sees the edges of the rules applied before it.
    Ancestor and descendant sets are kept as integer bitsets indexed by seq.
    """
    def __init__(self, op_list : list, rules : list = None):
        self.op_list = op_list
        self.num_ops = len(op_list)
        self.rules = rules if rules is not None else default_rules()

        # dst seq -> dict(src seq, rule name)
        self.dep_map = {op.seq: dict() for op in op_list}
        # src seq -> set of dst seq
        self.succ_map = {op.seq: set() for op in op_list}

        # seq -> seq of the first barrier that makes the operation durable
        self.barrier_of = dict()
        # seq of a rename -> seq of the barrier that makes it durable, None if never
        self.rename_durable_at = dict()

        self.sync_seq_list = [op.seq for op in op_list if op.kind.isSyncTy()]

        self.topo_order = []
        self.ancestor_masks = []
        self.descendant_masks = []

        self.__build()

    @timeit
    def __build(self):
        for rule in self.rules:
            rule.apply(self)
            log_msg = "persistence rule %s applied, %d edges in total" % (rule.name, self.num_edges())
            log.global_logger.debug(log_msg)

        self.topo_order = self.__topo_sort()
        self.__compute_closures()

    def add_edge(self, src : int, dst : int, rule : str):
        if src == dst:
            return
        if src not in self.dep_map or dst not in self.dep_map:
            raise ValueError("edge %d -> %d refers to an unknown operation" % (src, dst))
        if src not in self.dep_map[dst]:
            self.dep_map[dst][src] = rule
            self.succ_map[src].add(dst)

    def num_edges(self) -> int:
        return sum(len(deps) for deps in self.dep_map.values())

    def edges(self) -> list:
        rst = []
        for dst in sorted(self.dep_map):
            for src in sorted(self.dep_map[dst]):
                rst.append(PersistenceEdge(src, dst, self.dep_map[dst][src]))
        return rst

    def direct_deps(self, seq : int) -> list:
        return sorted(self.dep_map[seq])

    def __topo_sort(self) -> list:
        in_degree = {seq: len(deps) for seq, deps in self.dep_map.items()}
        ready = [seq for seq, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)

        order = []
        while ready:
            seq = heapq.heappop(ready)
            order.append(seq)
            for succ in self.succ_map[seq]:
                in_degree[succ] -= 1
                if in_degree[succ] == 0:
                    heapq.heappush(ready, succ)

        if len(order) != self.num_ops:
            stuck = sorted(seq for seq, degree in in_degree.items() if degree > 0)
            err_msg = "persistence edges form a cycle among operations %s" % (str(stuck[:16]))
            log.global_logger.critical(err_msg)
            raise CyclicDependency(err_msg)
        return order

    def __compute_closures(self):
        self.ancestor_masks = [0] * self.num_ops
        self.descendant_masks = [0] * self.num_ops
        for seq in self.topo_order:
            mask = 0
            for dep in self.dep_map[seq]:
                mask |= self.ancestor_masks[dep] | (1 << dep)
            self.ancestor_masks[seq] = mask
        for seq in reversed(self.topo_order):
            mask = 0
            for succ in self.succ_map[seq]:
                mask |= self.descendant_masks[succ] | (1 << succ)
            self.descendant_masks[seq] = mask

    def ancestors(self, seq : int) -> set:
        return set(iter_bits(self.ancestor_masks[seq]))

    def descendants(self, seq : int) -> set:
        return set(iter_bits(self.descendant_masks[seq]))

    def is_ancestor(self, anc : int, seq : int) -> bool:
        return bool(self.ancestor_masks[seq] >> anc & 1)

    def closure_mask(self, seqs) -> int:
        ''' the given operations and all their ancestors '''
        mask = 0
        for seq in seqs:
            mask |= self.ancestor_masks[seq] | (1 << seq)
        return mask

    def is_downward_closed(self, seqs) -> bool:
        seqs = set(seqs)
        for seq in seqs:
            for dep in self.dep_map[seq]:
                if dep not in seqs:
                    return False
        return True

    def has_barriers(self) -> bool:
        return len(self.sync_seq_list) > 0

    def durable_at(self, seq : int):
        ''' seq of the barrier after which the operation is durable, None if it never is '''
        if self.op_list[seq].kind == OpKind.kRename:
            return self.rename_durable_at.get(seq)
        return self.barrier_of.get(seq)

    def __str__(self) -> str:
        return 'operations: %d, edges: %d, barriers: %d' \
                % (self.num_ops, self.num_edges(), len(self.sync_seq_list))

    def __repr__(self) -> str:
        return self.__str__()
