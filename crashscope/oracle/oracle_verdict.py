from enum import Enum

class OracleVerdict(Enum):
    Consistent   = 'Consistent'
    Inconsistent = 'Inconsistent'
    OracleError  = 'OracleError'

    def is_conclusive(self):
        return self.value in ['Consistent', 'Inconsistent']

class OracleResult:
    """ The verdict on one crashed directory and what led to it. """

    def __init__(self, verdict : OracleVerdict, detail : str = '',
                 recovery_output : str = '', checker_output : str = '',
                 elapsed : float = 0.0):
        self.verdict = verdict
        self.detail = detail
        self.recovery_output = recovery_output
        self.checker_output = checker_output
        self.elapsed = elapsed

    def to_dict(self) -> dict:
        return {
            'verdict': self.verdict.value,
            'detail': self.detail,
            'elapsed': round(self.elapsed, 6),
        }

    def __str__(self) -> str:
        data = '%s, %.3fs' % (self.verdict.value, self.elapsed)
        if self.detail:
            data += ', %s' % (self.detail)
        return data

    def __repr__(self) -> str:
        return self.__str__()
