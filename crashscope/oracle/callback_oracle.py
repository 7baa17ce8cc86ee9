import threading
import traceback

from crashscope.oracle.oracle_base import OracleBase, StepOutcome
from crashscope.utils.const_var import ORACLE_TTL
from crashscope.utils.exceptions import OracleError, OracleTimeout
from crashscope.utils.logger import global_logger

class _CallbackThread(threading.Thread):
    def __init__(self, fn, args):
        super().__init__(daemon=True)
        self.fn = fn
        self.args = args
        self.ret = None
        self.exc = None
        self.exc_text = ''

    def run(self):
        try:
            self.ret = self.fn(*self.args)
        except BaseException as e:
            self.exc = e
            self.exc_text = traceback.format_exc()

class CallbackOracle(OracleBase):
    """
    An oracle implemented by python callables, checker(crashed_dir) or
    checker(crashed_dir, stdout_fpath) if pass_stdout_file is set.

    Returning True or None means consistent, returning False or raising
    AssertionError means inconsistent, any other exception is an
    OracleError. Each call runs on its own daemon thread, a call exceeding
    the ttl is abandoned and reported as OracleTimeout.
    """
    def __init__(self, checker, recovery = None, ttl : float = ORACLE_TTL,
                 pass_stdout_file : bool = False):
        super().__init__(ttl, pass_stdout_file)
        self.checker = checker
        self.recovery = recovery

    def has_recovery(self) -> bool:
        return self.recovery is not None

    def __call_with_ttl(self, fn, crashed_dir : str, stdout_fpath : str) -> StepOutcome:
        args = (crashed_dir, stdout_fpath) if self.pass_stdout_file else (crashed_dir,)
        thd = _CallbackThread(fn, args)
        thd.start()
        thd.join(self.ttl)
        if thd.is_alive():
            raise OracleTimeout("%s did not return in %s seconds" % (getattr(fn, '__name__', str(fn)), self.ttl))

        if thd.exc is not None:
            if isinstance(thd.exc, AssertionError):
                return StepOutcome(False, thd.exc_text, str(thd.exc) or 'assertion failed')
            if not isinstance(thd.exc, Exception):
                # SystemExit, KeyboardInterrupt and the like
                raise OracleError("%s exited, %r" % (getattr(fn, '__name__', str(fn)), thd.exc))
            global_logger.debug(thd.exc_text)
            raise OracleError("%s raised %r" % (getattr(fn, '__name__', str(fn)), thd.exc))

        if thd.ret is False:
            return StepOutcome(False, '', 'returned False')
        return StepOutcome(True)

    def _run_recovery(self, crashed_dir : str, stdout_fpath : str) -> StepOutcome:
        return self.__call_with_ttl(self.recovery, crashed_dir, stdout_fpath)

    def _run_checker(self, crashed_dir : str, stdout_fpath : str) -> StepOutcome:
        return self.__call_with_ttl(self.checker, crashed_dir, stdout_fpath)
