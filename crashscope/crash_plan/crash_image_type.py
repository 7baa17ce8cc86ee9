from enum import Enum

class CrashImageType(Enum):
    # nothing of the trace persisted
    Minimal  = 'Minimal'
    # the whole trace persisted
    Maximal  = 'Maximal'
    # every operation before the crash point persisted
    Prefix   = 'Prefix'
    # an operation before the crash point and its dependents did not persist
    Reorder  = 'Reorder'
    # part of one operation persisted
    Torn     = 'Torn'

    def is_prefix_like(self):
        return self.value in ['Minimal', 'Maximal', 'Prefix']

    def order(self) -> int:
        return ['Maximal', 'Minimal', 'Prefix', 'Reorder', 'Torn'].index(self.value)
