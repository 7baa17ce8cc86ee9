import json

from crashscope.trace_proc.trace_reader.code_location import CodeLocation
from crashscope.trace_proc.trace_reader.op_type import SYSCALL_NAME_MAP
from crashscope.utils.exceptions import MalformedTrace

class TraceRecord:
    """ TraceRecord represents one raw line of a trace source. """

    def __init__(self, source : str, line_no : int, fields : dict, byte_dump : bytes = None):
        self.source  : str = source
        self.line_no : int = line_no

        self.token = None     # causal token, comparable across sources
        self.syscall : str = None
        self.path : str = None
        self.dest : str = None
        self.inode : int = None
        self.offset : int = None
        self.count : int = None
        self.size : int = None
        self.mode : int = None
        self.data : bytes = None
        self.pid = None
        self.backtrace = []   # a list of CodeLocation

        self.__parse(fields, byte_dump)

    @classmethod
    def from_line(cls, source : str, line_no : int, line : str, byte_dump : bytes = None):
        try:
            fields = json.loads(line)
        except ValueError as e:
            raise MalformedTrace("%s:%d: cannot parse the record, %s" % (source, line_no, e))
        if not isinstance(fields, dict):
            raise MalformedTrace("%s:%d: a record must be a JSON object" % (source, line_no))
        return cls(source, line_no, fields, byte_dump)

    @classmethod
    def is_valid_trace_line(cls, line : str) -> bool:
        line = line.strip()
        return len(line) > 0 and not line.startswith('#')

    def where(self) -> str:
        return '%s:%d' % (self.source, self.line_no)

    def __get_int(self, fields, key):
        if key not in fields or fields[key] is None:
            return None
        try:
            return int(fields[key], 0) if isinstance(fields[key], str) else int(fields[key])
        except (TypeError, ValueError):
            raise MalformedTrace("%s: invalid %s %r" % (self.where(), key, fields[key]))

    def __parse(self, fields : dict, byte_dump : bytes):
        if 'token' not in fields:
            raise MalformedTrace("%s: missing causal token" % (self.where()))
        token = fields['token']
        if isinstance(token, bool) or not isinstance(token, (int, float)):
            raise MalformedTrace("%s: causal token must be a number, got %r" % (self.where(), token))
        self.token = token

        op_name = fields.get('op')
        if op_name not in SYSCALL_NAME_MAP:
            raise MalformedTrace("%s: unknown operation %r" % (self.where(), op_name))
        self.syscall = op_name

        self.path = fields.get('path')
        self.dest = fields.get('dest')
        self.inode = self.__get_int(fields, 'inode')
        self.offset = self.__get_int(fields, 'offset')
        self.count = self.__get_int(fields, 'count')
        self.size = self.__get_int(fields, 'size')
        self.mode = self.__get_int(fields, 'mode')
        self.pid = fields.get('pid')

        if 'data' in fields and fields['data'] is not None:
            try:
                self.data = bytes.fromhex(fields['data'])
            except (TypeError, ValueError):
                raise MalformedTrace("%s: data must be a hex string" % (self.where()))
        elif 'text' in fields and fields['text'] is not None:
            self.data = str(fields['text']).encode('utf-8')
        elif 'dump_offset' in fields:
            dump_offset = self.__get_int(fields, 'dump_offset')
            if byte_dump is None or self.count is None or dump_offset + self.count > len(byte_dump):
                raise MalformedTrace("%s: payload is not in the byte dump" % (self.where()))
            self.data = byte_dump[dump_offset:dump_offset + self.count]

        if self.data is not None:
            if self.count is None:
                self.count = len(self.data)
            elif self.count != len(self.data):
                raise MalformedTrace("%s: count %d does not match the payload length %d" \
                        % (self.where(), self.count, len(self.data)))

        for frame in fields.get('stack', []) or []:
            try:
                self.backtrace.append(CodeLocation.from_str(frame))
            except (AttributeError, ValueError):
                raise MalformedTrace("%s: invalid stack frame %r" % (self.where(), frame))

    def __str__(self) -> str:
        return '%s, token: %s, %s(%s, %s)' % (self.where(), self.token, self.syscall,
                                              self.path if self.path is not None else self.inode,
                                              self.dest)

    def __repr__(self) -> str:
        return self.__str__()
