class CodeLocation:
    """ A frame of the call stack recorded with an operation: (binary, return address). """

    def __init__(self, binary : str, pc : int):
        self.binary = binary
        self.pc = pc

    @classmethod
    def from_str(cls, frame : str):
        ''' parse "binary:0xpc", the binary name may contain ':' itself '''
        binary, sep, pc = frame.rpartition(':')
        if not sep or not binary:
            raise ValueError("invalid stack frame %s" % (frame))
        return cls(binary, int(pc, 0))

    def __str__(self) -> str:
        return '%s:%s' % (self.binary, hex(self.pc))

    def __repr__(self) -> str:
        return self.__str__()

    def __member(self) -> tuple:
        return (self.binary, self.pc)

    def __eq__(self, other) -> bool:
        if not isinstance(other, CodeLocation):
            return False
        return self.__member() == other.__member()

    def __hash__(self) -> int:
        return hash(self.__member())

    def __lt__(self, other) -> bool:
        return self.__member() < other.__member()
