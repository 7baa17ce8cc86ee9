from aenum import Enum

class OpKind(Enum):
    """Kinds of logical file-system operations."""
    _init_ = 'value string'

    kCreate     = 1,  'create'
    kAppend     = 2,  'append'
    kOverwrite  = 3,  'overwrite'
    kTruncate   = 4,  'truncate'
    kRename     = 5,  'rename'
    kUnlink     = 6,  'unlink'
    kMkdir      = 7,  'mkdir'
    kRmdir      = 8,  'rmdir'
    kFsync      = 9,  'fsync'
    kFdatasync  = 10, 'fdatasync'
    kLink       = 11, 'link'
    # what the workload printed, used by checkers to learn the promises made
    kStdout     = 12, 'stdout'

    def isSyncTy(self):
        return self.value in [OpKind.kFsync.value, OpKind.kFdatasync.value]

    def isDataTy(self):
        '''operations that change file contents or size'''
        return self.value in [OpKind.kAppend.value, OpKind.kOverwrite.value, OpKind.kTruncate.value]

    def isNamespaceTy(self):
        '''operations that change directory entries'''
        return self.value in [OpKind.kCreate.value, OpKind.kMkdir.value,
                              OpKind.kRename.value, OpKind.kUnlink.value,
                              OpKind.kRmdir.value, OpKind.kLink.value]

    def isWriteTy(self):
        return self.value in [OpKind.kAppend.value, OpKind.kOverwrite.value]

    def isStdoutTy(self):
        return self.value == OpKind.kStdout.value

    def isPseudoTy(self):
        '''operations that never touch the file system'''
        return self.isStdoutTy()

    def __str__(self):
        return self.string

    @classmethod
    def _missing_value_(cls, name):
        for member in cls:
            if member.string == name:
                return member
        return None

# syscall names accepted in trace files -> the kind they are normalized from
SYSCALL_NAME_MAP = {
    'creat'           : 'create',
    'create'          : 'create',
    'open_creat'      : 'create',
    'write'           : 'write',
    'pwrite'          : 'write',
    'pwrite64'        : 'write',
    'append'          : 'append',
    'truncate'        : 'truncate',
    'ftruncate'       : 'truncate',
    'rename'          : 'rename',
    'unlink'          : 'unlink',
    'link'            : 'link',
    'mkdir'           : 'mkdir',
    'rmdir'           : 'rmdir',
    'fsync'           : 'fsync',
    'fdatasync'       : 'fdatasync',
    'sync_file_range' : 'fdatasync',
    'stdout'          : 'stdout',
}
