from enum import Enum

from crashscope.crash_plan.crash_image import CrashImage
from crashscope.oracle.oracle_verdict import OracleVerdict, OracleResult

class EvalStatus(Enum):
    Evaluated = 'Evaluated'
    # the crashed directory could not be constructed
    Skipped   = 'Skipped'

class EvalResult:
    """ The outcome of evaluating one crash image, tagged with the image. """

    def __init__(self, image : CrashImage, status : EvalStatus,
                 oracle_result : OracleResult = None, reason : str = ''):
        self.image = image
        self.status = status
        self.oracle_result = oracle_result
        self.reason = reason

    @classmethod
    def evaluated(cls, image : CrashImage, oracle_result : OracleResult):
        return cls(image, EvalStatus.Evaluated, oracle_result)

    @classmethod
    def skipped(cls, image : CrashImage, reason : str):
        return cls(image, EvalStatus.Skipped, None, reason)

    @property
    def verdict(self):
        ''' None if the image was skipped '''
        if self.oracle_result is None:
            return None
        return self.oracle_result.verdict

    def is_inconsistent(self) -> bool:
        return self.verdict == OracleVerdict.Inconsistent

    def is_consistent(self) -> bool:
        return self.verdict == OracleVerdict.Consistent

    def is_inconclusive(self) -> bool:
        return self.verdict is None or self.verdict == OracleVerdict.OracleError

    def reason_str(self) -> str:
        if self.status == EvalStatus.Skipped:
            return 'skipped, %s' % (self.reason)
        return str(self.oracle_result)

    def __str__(self) -> str:
        return 'image: [%s], %s' % (str(self.image), self.reason_str())

    def __repr__(self) -> str:
        return self.__str__()
