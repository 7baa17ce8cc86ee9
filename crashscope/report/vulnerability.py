from enum import Enum

from crashscope.trace_proc.trace_reader.code_location import CodeLocation

class VulnClass(Enum):
    # observed through the oracle on a crashed directory
    Dynamic = 'dynamic'
    # inferred from the trace and the persistence graph
    Static  = 'static'

class VulnKind(Enum):
    Atomicity          = 'atomicity'
    OrderingDurability = 'ordering/durability'
    Both               = 'both'

    def merge(self, other):
        if self == other:
            return self
        return VulnKind.Both

class Vulnerability:
    """ A crash vulnerability over the operations [start_seq, end_seq]. """

    def __init__(self, vuln_class : VulnClass, kind : VulnKind, start_seq : int, end_seq : int,
                 witness : CodeLocation = None, info : str = '', image_ids : tuple = ()):
        self.__dict__['vuln_class'] = vuln_class
        self.__dict__['kind'] = kind
        self.__dict__['start_seq'] = start_seq
        self.__dict__['end_seq'] = end_seq
        self.__dict__['witness'] = witness
        self.__dict__['info'] = info
        self.__dict__['image_ids'] = tuple(sorted(set(image_ids)))

    def __setattr__(self, name, value):
        raise AttributeError("Vulnerability is immutable")

    def with_images(self, image_ids):
        return Vulnerability(self.vuln_class, self.kind, self.start_seq, self.end_seq,
                             self.witness, self.info, self.image_ids + tuple(image_ids))

    def key(self) -> tuple:
        return (self.vuln_class, self.kind, self.start_seq, self.end_seq)

    def sort_key(self) -> tuple:
        return (0 if self.vuln_class == VulnClass.Dynamic else 1, self.start_seq, self.end_seq,
                self.kind.value, str(self.witness))

    def to_dict(self) -> dict:
        return {
            'class': self.vuln_class.value,
            'kind': self.kind.value,
            'start_seq': self.start_seq,
            'end_seq': self.end_seq,
            'witness': str(self.witness) if self.witness else None,
            'info': self.info,
            'image_ids': list(self.image_ids),
        }

    def __str__(self) -> str:
        data = '%s %s vulnerability, operations [%d, %d]' \
                % (self.vuln_class.value, self.kind.value, self.start_seq, self.end_seq)
        if self.witness:
            data += ', at %s' % (str(self.witness))
        if self.info:
            data += ', %s' % (self.info)
        return data

    def __repr__(self) -> str:
        return self.__str__()

    def __member(self) -> tuple:
        return (self.vuln_class, self.kind, self.start_seq, self.end_seq, self.witness)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Vulnerability):
            return False
        return self.__member() == other.__member()

    def __hash__(self) -> int:
        return hash(self.__member())
