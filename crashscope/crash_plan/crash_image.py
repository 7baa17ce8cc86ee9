from crashscope.crash_plan.crash_image_type import CrashImageType

class CrashImage:
    '''
    One candidate state of the workload directory after a crash.
    Operations with seq < cut were issued before the crash. Of those, the
    persisted ones reached storage completely, the partial ones reached
    storage only with the listed atomicity units, the rest did not at all.
    '''
    def __init__(self,
                 image_id : int,
                 ty : CrashImageType,
                 cut : int,
                 persisted : frozenset,
                 partial : dict = None,
                 omitted : tuple = (),
                 info : str = '',
                 focus_seq : int = None) -> None:
        self.image_id = image_id
        self.type = ty
        self.cut = cut
        self.persisted : frozenset = frozenset(persisted)
        # seq -> tuple of unit indices that persisted
        self.partial : dict = dict(partial) if partial else dict()
        # seqs before the crash point that did not persist at all
        self.omitted : tuple = tuple(omitted)
        self.info = info
        # the operation a reorder or torn image is about
        self.focus_seq = focus_seq

    @property
    def torn(self) -> bool:
        return len(self.partial) > 0

    def position(self) -> tuple:
        ''' where the image sits in the generation order '''
        return (self.cut, self.type.order(), self.image_id)

    def persisted_mask(self) -> int:
        mask = 0
        for seq in self.persisted:
            mask |= 1 << seq
        return mask

    def state_key(self) -> tuple:
        return (self.persisted, tuple(sorted(self.partial.items())))

    def to_dict(self) -> dict:
        return {
            'image_id': self.image_id,
            'type': self.type.value,
            'cut': self.cut,
            'omitted': list(self.omitted),
            'partial': {str(seq): list(units) for seq, units in sorted(self.partial.items())},
            'focus_seq': self.focus_seq,
            'info': self.info,
        }

    def __str__(self) -> str:
        data = "id: %d, type: %s, cut: %d" % (self.image_id, self.type.value, self.cut)
        if self.omitted:
            data += ", omitted: %s" % (str(list(self.omitted)))
        if self.partial:
            data += ", partial: %s" % (str(sorted(self.partial.items())))
        if self.info:
            data += ", info: %s" % (self.info)
        return data

    def __repr__(self) -> str:
        return self.__str__()

    def __member(self) -> tuple:
        return (self.cut, self.persisted, tuple(sorted(self.partial.items())))

    def __eq__(self, other) -> bool:
        if not isinstance(other, CrashImage):
            return False
        return self.__member() == other.__member()

    def __hash__(self) -> int:
        return hash(self.__member())
