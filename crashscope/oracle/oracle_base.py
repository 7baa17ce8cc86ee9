import time
from abc import ABC, abstractmethod

import crashscope.utils.logger as log
from crashscope.oracle.oracle_verdict import OracleVerdict, OracleResult
from crashscope.utils.const_var import ORACLE_TTL
from crashscope.utils.exceptions import OracleError, OracleTimeout

class StepOutcome:
    """ What one recovery or checker step returned. """

    def __init__(self, passed : bool, output : str = '', detail : str = ''):
        self.passed = passed
        self.output = output
        self.detail = detail

class OracleBase(ABC):
    """
    Decide whether a crashed directory is consistent.

    An optional recovery step runs first. A failing recovery makes the
    directory inconsistent, a crashing or hung step makes the verdict an
    OracleError. Subclasses implement the two steps and raise OracleError
    (or OracleTimeout) when a step cannot give an answer.
    """
    def __init__(self, ttl : float = ORACLE_TTL, pass_stdout_file : bool = False):
        self.ttl = ttl
        self.pass_stdout_file = pass_stdout_file

    def has_recovery(self) -> bool:
        return False

    def _run_recovery(self, crashed_dir : str, stdout_fpath : str) -> StepOutcome:
        return StepOutcome(True)

    @abstractmethod
    def _run_checker(self, crashed_dir : str, stdout_fpath : str) -> StepOutcome:
        pass

    def check(self, crashed_dir : str, stdout_fpath : str = None) -> OracleResult:
        start_time = time.perf_counter()
        recovery_output = ''
        try:
            if self.has_recovery():
                recovery = self._run_recovery(crashed_dir, stdout_fpath)
                recovery_output = recovery.output
                if not recovery.passed:
                    return OracleResult(OracleVerdict.Inconsistent, 'recovery failed, %s' % (recovery.detail),
                                        recovery_output, '', time.perf_counter() - start_time)

            checker = self._run_checker(crashed_dir, stdout_fpath)
        except OracleTimeout as e:
            log.global_logger.warning("oracle timed out on %s, %s" % (crashed_dir, str(e)))
            return OracleResult(OracleVerdict.OracleError, 'timeout, %s' % (str(e)), recovery_output,
                                '', time.perf_counter() - start_time)
        except OracleError as e:
            log.global_logger.warning("oracle error on %s, %s" % (crashed_dir, str(e)))
            return OracleResult(OracleVerdict.OracleError, str(e), recovery_output,
                                '', time.perf_counter() - start_time)

        verdict = OracleVerdict.Consistent if checker.passed else OracleVerdict.Inconsistent
        return OracleResult(verdict, checker.detail, recovery_output, checker.output,
                            time.perf_counter() - start_time)
