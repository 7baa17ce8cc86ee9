from crashscope.trace_proc.trace_reader.logical_op import LogicalOperation
from crashscope.trace_proc.trace_reader.op_type import OpKind
from crashscope.utils.const_var import DEFAULT_WRITE_SPLITS
from crashscope.utils import utils as my_utils

class AtomicityUnit:
    """ A piece of one operation that may reach storage on its own. """

    # the whole operation
    WHOLE = 'whole'
    # the file grows to cover [offset, offset + count), contents not yet written
    EXTEND = 'extend'
    # the payload of [offset, offset + count) lands
    DATA = 'data'
    # pieces of a rename that is not atomic
    UNLINK_DEST = 'unlink_dest'
    UNLINK_SRC = 'unlink_src'
    LINK_DEST = 'link_dest'

    def __init__(self, seq : int, index : int, kind : str, offset : int = None, count : int = None):
        self.seq = seq
        self.index = index
        self.kind = kind
        self.offset = offset
        self.count = count

    def __str__(self) -> str:
        if self.offset is None:
            return '%d.%d:%s' % (self.seq, self.index, self.kind)
        return '%d.%d:%s(%d, %d)' % (self.seq, self.index, self.kind, self.offset, self.count)

    def __repr__(self) -> str:
        return self.__str__()

    def __member(self) -> tuple:
        return (self.seq, self.index, self.kind, self.offset, self.count)

    def __eq__(self, other) -> bool:
        if not isinstance(other, AtomicityUnit):
            return False
        return self.__member() == other.__member()

    def __hash__(self) -> int:
        return hash(self.__member())

class AtomicityPolicy:
    """
    How an operation may be split by the storage medium.

    split_mode:
        atomic  - writes never tear
        count   - a write tears into `splits` pieces of similar size
        aligned - a write tears at multiples of `block_size`, which must be given
    atomic_write_bytes: writes of at most this many bytes stay atomic
    extend_fill: what an extended but unwritten region reads as, zeros or garbage
    atomic_rename: if False, renaming a file may persist as
        unlink(dest), unlink(src), link(dest) separately
    """
    SPLIT_MODES = ('atomic', 'count', 'aligned')
    FILL_MODES = ('zeros', 'garbage')

    def __init__(self, split_mode : str = 'count', splits : int = DEFAULT_WRITE_SPLITS,
                 block_size : int = None, atomic_write_bytes : int = None,
                 extend_fill : str = 'zeros', atomic_rename : bool = True):
        if split_mode not in self.SPLIT_MODES:
            raise ValueError("unknown split mode %s" % (split_mode))
        if split_mode == 'count' and (splits is None or splits < 1):
            raise ValueError("split mode count needs a positive number of splits")
        if split_mode == 'aligned' and (block_size is None or block_size < 1):
            raise ValueError("split mode aligned needs a positive block size")
        if extend_fill not in self.FILL_MODES:
            raise ValueError("unknown extend fill %s" % (extend_fill))

        self.split_mode = split_mode
        self.splits = splits
        self.block_size = block_size
        self.atomic_write_bytes = atomic_write_bytes
        self.extend_fill = extend_fill
        self.atomic_rename = atomic_rename

    def __split(self, offset : int, count : int) -> list:
        ''' return a list of (offset, count) '''
        if self.split_mode == 'atomic' or \
                (self.atomic_write_bytes is not None and count <= self.atomic_write_bytes):
            return [(offset, count)]

        if self.split_mode == 'count':
            num = min(self.splits, count)
            pieces = []
            start = offset
            for i in range(num):
                end = offset + count * (i + 1) // num
                pieces.append((start, end - start))
                start = end
            return pieces

        pieces = []
        start = offset
        end = offset + count
        while start < end:
            stop = min(my_utils.alignToCeil(start, self.block_size), end)
            pieces.append((start, stop - start))
            start = stop
        return pieces

    def units_of(self, op : LogicalOperation) -> list:
        kind = op.kind
        if kind == OpKind.kAppend:
            if self.split_mode == 'atomic' or \
                    (self.atomic_write_bytes is not None and op.count <= self.atomic_write_bytes):
                return [AtomicityUnit(op.seq, 0, AtomicityUnit.WHOLE)]
            units = []
            for offset, count in self.__split(op.offset, op.count):
                units.append(AtomicityUnit(op.seq, len(units), AtomicityUnit.EXTEND, offset, count))
                units.append(AtomicityUnit(op.seq, len(units), AtomicityUnit.DATA, offset, count))
            return units
        elif kind == OpKind.kOverwrite:
            pieces = self.__split(op.offset, op.count)
            if len(pieces) == 1:
                return [AtomicityUnit(op.seq, 0, AtomicityUnit.WHOLE)]
            return [AtomicityUnit(op.seq, i, AtomicityUnit.DATA, offset, count)
                    for i, (offset, count) in enumerate(pieces)]
        elif kind == OpKind.kRename and not self.atomic_rename and not op.is_dir:
            kinds = []
            if op.dest_inode is not None:
                kinds.append(AtomicityUnit.UNLINK_DEST)
            kinds += [AtomicityUnit.UNLINK_SRC, AtomicityUnit.LINK_DEST]
            return [AtomicityUnit(op.seq, i, k) for i, k in enumerate(kinds)]
        return [AtomicityUnit(op.seq, 0, AtomicityUnit.WHOLE)]

    def is_atomic(self, op : LogicalOperation) -> bool:
        return len(self.units_of(op)) == 1

    def __str__(self) -> str:
        return 'split_mode: %s, splits: %s, block_size: %s, atomic_write_bytes: %s, extend_fill: %s, atomic_rename: %s' \
                % (self.split_mode, self.splits, self.block_size, self.atomic_write_bytes,
                   self.extend_fill, self.atomic_rename)

    def __repr__(self) -> str:
        return self.__str__()
