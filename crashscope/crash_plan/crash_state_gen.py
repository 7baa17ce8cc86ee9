import crashscope.utils.logger as log
from crashscope.crash_plan.atomicity_policy import AtomicityPolicy, AtomicityUnit
from crashscope.crash_plan.crash_image import CrashImage
from crashscope.crash_plan.crash_image_type import CrashImageType
from crashscope.persist_graph.persist_graph import PersistenceGraph, iter_bits
from crashscope.utils.const_var import MAX_TORN_VARIANTS_PER_OP

class CrashStateGenerator:
    """
    Enumerate the crash images of a trace lazily.

    Iterating the generator starts a new enumeration, so the same images
    are produced with the same ids every time. The order is: the maximal
    image, the minimal image, one prefix image per crash point, then for
    every crash point the reorder and torn images of each operation that
    may still be lost at that point.
    """
    def __init__(self, op_list : list, graph : PersistenceGraph,
                 policy : AtomicityPolicy = None, max_images : int = None,
                 reorder : bool = True, torn : bool = True,
                 max_torn_per_op : int = MAX_TORN_VARIANTS_PER_OP):
        self.op_list = op_list
        self.graph = graph
        self.policy = policy if policy is not None else AtomicityPolicy()
        self.max_images = max_images
        self.reorder = reorder
        self.torn = torn
        self.max_torn_per_op = max_torn_per_op
        self.num_ops = len(op_list)

        # operations that every image with a later crash point must persist
        self.mandatory_seqs = [op.seq for op in op_list if op.kind.isSyncTy() or op.kind.isStdoutTy()]
        self.stdout_seqs = [op.seq for op in op_list if op.kind.isStdoutTy()]

        # seq -> list of AtomicityUnit
        self.unit_map = dict()

        # set by the last enumeration
        self.num_generated = 0
        self.num_duplicated = 0
        self.limit_reached = False

    def __iter__(self):
        return self.generate()

    def units_of(self, seq : int) -> list:
        if seq not in self.unit_map:
            self.unit_map[seq] = self.policy.units_of(self.op_list[seq])
        return self.unit_map[seq]

    def forced_mask(self, cut : int) -> int:
        ''' operations before cut that cannot be lost when crashing at cut '''
        return self.graph.closure_mask([seq for seq in self.mandatory_seqs if seq < cut])

    def __num_stdout_before(self, cut : int) -> int:
        return len([seq for seq in self.stdout_seqs if seq < cut])

    def generate(self):
        self.num_generated = 0
        self.num_duplicated = 0
        self.limit_reached = False
        seen = set()

        for ty, cut, persisted, partial, omitted, info, focus_seq in self.__candidates():
            if self.max_images is not None and self.num_generated >= self.max_images:
                self.limit_reached = True
                log.global_logger.warning("crash image limit %d reached, stop generating" % (self.max_images))
                break

            key = (persisted, tuple(sorted(partial.items())) if partial else (),
                   self.__num_stdout_before(cut))
            if key in seen:
                self.num_duplicated += 1
                continue
            seen.add(key)

            image = CrashImage(self.num_generated, ty, cut, persisted, partial, omitted, info, focus_seq)
            self.num_generated += 1
            if log.debug:
                log.global_logger.debug("crash image generated, %s" % (str(image)))
            yield image

        log_msg = "%d crash images generated, %d duplicates skipped" % (self.num_generated, self.num_duplicated)
        log.global_logger.info(log_msg)

    def __candidates(self):
        ''' yield (type, cut, persisted, partial, omitted, info, focus_seq) '''
        n = self.num_ops
        yield (CrashImageType.Maximal, n, frozenset(range(n)), None, (), 'full replay', None)
        yield (CrashImageType.Minimal, 0, frozenset(), None, (), 'baseline', None)
        for cut in range(1, n):
            yield (CrashImageType.Prefix, cut, frozenset(range(cut)), None, (), '', None)

        if not (self.reorder or self.torn):
            return

        for cut in range(1, n + 1):
            cut_mask = (1 << cut) - 1
            forced = self.forced_mask(cut)
            for seq in range(cut):
                if forced >> seq & 1:
                    continue
                removed_mask = ((1 << seq) | self.graph.descendant_masks[seq]) & cut_mask
                persisted = frozenset(iter_bits(cut_mask & ~removed_mask))

                if self.reorder:
                    yield (CrashImageType.Reorder, cut, persisted, None,
                           tuple(iter_bits(removed_mask)), 'lose %d' % (seq), seq)

                if self.torn and len(self.units_of(seq)) > 1:
                    omitted = tuple(s for s in iter_bits(removed_mask) if s != seq)
                    for units, info in self.__torn_variants(seq):
                        yield (CrashImageType.Torn, cut, persisted, {seq: units}, omitted, info, seq)

    def __torn_variants(self, seq : int) -> list:
        ''' return a list of (persisted unit indices, info) '''
        all_units = self.units_of(seq)
        num_units = len(all_units)
        variants = []
        for k in range(1, num_units):
            variants.append((tuple(range(k)), 'tear %d, first %d of %d units' % (seq, k, num_units)))
        # losing the last unit alone is the same as the longest prefix
        for i in range(num_units - 1):
            units = tuple(j for j in range(num_units) if j != i)
            if self.__loss_is_hidden(all_units, i, units):
                continue
            variants.append((units, 'tear %d, lose unit %d of %d' % (seq, i, num_units)))
        return variants[:self.max_torn_per_op]

    @staticmethod
    def __loss_is_hidden(all_units : list, lost : int, kept : tuple) -> bool:
        ''' the data of an extent grows the file as its extend would '''
        unit = all_units[lost]
        if unit.kind != AtomicityUnit.EXTEND:
            return False
        return any(all_units[j].kind == AtomicityUnit.DATA and
                   all_units[j].offset == unit.offset and all_units[j].count == unit.count
                   for j in kept)
