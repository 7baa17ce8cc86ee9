from crashscope.trace_proc.trace_reader.op_type import OpKind
from crashscope.utils import utils as my_utils

class LogicalOperation:
    """
    One normalized file-system operation of the workload.

    Operations are created by the trace reader and never modified afterwards,
    all other components refer to them by the sequence number.
    """

    # field name -> default value
    OPTIONAL_FIELDS = {
        'inode'             : None,  # target inode
        'parent_inode'      : None,  # directory holding the (source) entry
        'name'              : None,  # path component of the (source) entry
        'path'              : None,  # path relative to the workload directory
        'offset'            : None,
        'count'             : None,  # byte count
        'mode'              : None,
        'data'              : None,  # payload bytes of writes and stdout
        'dest_parent_inode' : None,  # rename and link
        'dest_name'         : None,
        'dest_path'         : None,
        'dest_inode'        : None,  # inode replaced by a rename
        'hardlinks'         : None,  # links left after an unlink
        'initial_size'      : None,  # file size before the operation
        'final_size'        : None,  # file size after the operation
        'is_dir'            : False,
        'token'             : None,  # causal token of the record
        'source'            : None,  # trace source, e.g., a pid
        'pid'               : None,
        'backtrace'         : (),    # a tuple of CodeLocation, innermost first
    }

    def __init__(self, seq : int, kind : OpKind, **kwargs):
        object.__setattr__(self, 'seq', seq)
        object.__setattr__(self, 'kind', kind)
        for field, default in self.OPTIONAL_FIELDS.items():
            object.__setattr__(self, field, kwargs.pop(field, default))
        if kwargs:
            raise TypeError("unknown fields of LogicalOperation: %s" % (sorted(kwargs)))
        if self.backtrace is None:
            object.__setattr__(self, 'backtrace', ())
        else:
            object.__setattr__(self, 'backtrace', tuple(self.backtrace))

    def __setattr__(self, name, value):
        raise AttributeError("LogicalOperation is immutable")

    def __delattr__(self, name):
        raise AttributeError("LogicalOperation is immutable")

    def end(self) -> int:
        ''' the end offset (exclusive) of a write '''
        return self.offset + self.count

    def metadata_inodes(self) -> list:
        '''
        Inodes whose metadata (directory entries, size, link count) is
        changed by this operation.
        '''
        kind = self.kind
        if kind in [OpKind.kCreate, OpKind.kMkdir, OpKind.kUnlink, OpKind.kRmdir]:
            return [self.parent_inode, self.inode]
        elif kind == OpKind.kLink:
            return [self.dest_parent_inode, self.inode]
        elif kind == OpKind.kRename:
            rst = [self.parent_inode]
            if self.dest_parent_inode != self.parent_inode:
                rst.append(self.dest_parent_inode)
            rst.append(self.inode)
            if self.dest_inode is not None:
                rst.append(self.dest_inode)
            return rst
        elif kind in [OpKind.kAppend, OpKind.kTruncate]:
            return [self.inode]
        return []

    def namespace_parents(self) -> list:
        ''' directories whose entries are changed by this operation '''
        kind = self.kind
        if kind in [OpKind.kCreate, OpKind.kMkdir, OpKind.kUnlink, OpKind.kRmdir]:
            return [self.parent_inode]
        elif kind == OpKind.kLink:
            return [self.dest_parent_inode]
        elif kind == OpKind.kRename:
            if self.dest_parent_inode != self.parent_inode:
                return [self.parent_inode, self.dest_parent_inode]
            return [self.parent_inode]
        return []

    def referenced_inodes(self) -> list:
        ''' every inode that must exist for this operation to make sense '''
        rst = []
        for inode in [self.inode, self.parent_inode, self.dest_parent_inode]:
            if inode is not None and inode not in rst:
                rst.append(inode)
        return rst

    def short_str(self) -> str:
        kind = self.kind
        if kind in [OpKind.kAppend, OpKind.kOverwrite]:
            return '%s("%s", %d, %d)' % (kind, self.path, self.offset, self.count)
        elif kind == OpKind.kTruncate:
            return '%s("%s", %d)' % (kind, self.path, self.final_size)
        elif kind in [OpKind.kRename, OpKind.kLink]:
            return '%s("%s", "%s")' % (kind, self.path, self.dest_path)
        elif kind == OpKind.kStdout:
            return '%s(%s)' % (kind, my_utils.shortBytesRepr(self.data))
        return '%s("%s")' % (kind, self.path)

    def to_dict(self) -> dict:
        return {
            'seq': self.seq,
            'kind': str(self.kind),
            'path': self.path,
            'dest_path': self.dest_path,
            'inode': self.inode,
            'offset': self.offset,
            'count': self.count,
            'source': self.source,
            'backtrace': [str(x) for x in self.backtrace],
        }

    def __str__(self) -> str:
        return '%d: %s' % (self.seq, self.short_str())

    def __repr__(self) -> str:
        return self.__str__()

    def __member(self) -> tuple:
        return (self.seq, self.kind, self.inode, self.parent_inode, self.name,
                self.offset, self.count, self.dest_parent_inode, self.dest_name)

    def __eq__(self, other) -> bool:
        if not isinstance(other, LogicalOperation):
            return False
        return self.__member() == other.__member()

    def __hash__(self) -> int:
        return hash(self.__member())
