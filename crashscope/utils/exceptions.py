class CrashCheckFatal(Exception):
    '''
    Errors that invalidate the whole run. Partial results are discarded and the
    violated invariant is reported to the user.
    '''
    invariant = 'unknown'

    def __init__(self, msg=''):
        super().__init__(msg)
        self.msg = msg

    def __str__(self):
        return f"{self.__class__.__name__}: {self.msg}"

    def __repr__(self):
        return f"{self.__class__.__name__}({self.msg!r})"

class MalformedTrace(CrashCheckFatal):
    invariant = 'trace must be totally ordered and reference only known inodes'

class CyclicDependency(CrashCheckFatal):
    invariant = 'persistence edges must form a directed acyclic graph'

class BadSnapshot(CrashCheckFatal):
    invariant = 'baseline snapshot must exist and be readable'

class ReplayIOError(Exception):
    '''
    The crashed directory of one candidate could not be constructed.
    The candidate is skipped and listed as inconclusive.
    '''
    def __str__(self):
        return f"{self.__class__.__name__}: {self.args[0] if self.args else ''}"

    def __repr__(self):
        return f"{self.__class__.__name__}"

class OracleError(Exception):
    def __str__(self):
        return f"{self.__class__.__name__}: {self.args[0] if self.args else ''}"

    def __repr__(self):
        return f"{self.__class__.__name__}"

class OracleTimeout(OracleError):
    pass

class ResultStoreOPFailed(Exception):
    '''
    Sometime, the memcached operation might failed due to timeout or network unreachable.
    '''
    def __str__(self):
        return f"{self.__class__.__name__}"

    def __repr__(self):
        return f"{self.__class__.__name__}"
