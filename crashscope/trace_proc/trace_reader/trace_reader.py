import os
import time
import heapq

import crashscope.utils.logger as log
from crashscope.trace_proc.snapshot.snapshot_index import SnapshotIndex
from crashscope.trace_proc.trace_reader.logical_op import LogicalOperation
from crashscope.trace_proc.trace_reader.namespace_tracker import NamespaceTracker, normalize_relpath, split_path
from crashscope.trace_proc.trace_reader.op_type import OpKind, SYSCALL_NAME_MAP
from crashscope.trace_proc.trace_reader.trace_record import TraceRecord
from crashscope.utils.const_var import TRACE_FILE_PREFIX, BYTE_DUMP_INFIX
from crashscope.utils.exceptions import MalformedTrace

def timeit(func):
    """Decorator that prints the time a function takes to execute."""
    def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        result = func(*args, **kwargs)
        log.time_logger.info(f"elapsed_time.ingest.trace_reader.{func.__name__}:{time.perf_counter() - start_time:.6f}")
        return result
    return wrapper

def find_trace_files(traces_dir : str, prefix : str = TRACE_FILE_PREFIX) -> dict:
    ''' return dict(source, trace file path) '''
    rst = dict()
    dump_prefix = '%s.%s.' % (prefix, BYTE_DUMP_INFIX)
    for fname in sorted(os.listdir(traces_dir)):
        fpath = os.path.join(traces_dir, fname)
        if not os.path.isfile(fpath):
            continue
        if fname.startswith(dump_prefix) or not fname.startswith(prefix + '.'):
            continue
        source = fname[len(prefix) + 1:]
        if source:
            rst[source] = fpath
    return rst

def read_trace_file(source : str, fpath : str, dump_fpath : str = None) -> list:
    byte_dump = None
    line_no = 0
    records = []
    try:
        if dump_fpath and os.path.isfile(dump_fpath):
            with open(dump_fpath, 'rb') as fd:
                byte_dump = fd.read()

        with open(fpath, 'rb') as fd:
            for line_no, raw_line in enumerate(fd, start=1):
                try:
                    line = raw_line.decode('utf-8')
                except UnicodeDecodeError as e:
                    raise MalformedTrace("%s:%d: the record is not valid utf-8, %s" % (fpath, line_no, e))
                if not TraceRecord.is_valid_trace_line(line):
                    continue
                records.append(TraceRecord.from_line(source, line_no, line, byte_dump))
    except OSError as e:
        raise MalformedTrace("%s:%d: cannot read the trace, %s" % (fpath, line_no, e))
    return records

class TraceReader:
    """
    Read the trace sources of one workload run, merge them by causal token,
    and normalize the records into logical operations.
    """
    def __init__(self, traces_dir : str = None, snapshot_index : SnapshotIndex = None,
                 workload_dir : str = None, prefix : str = TRACE_FILE_PREFIX):
        self.traces_dir = traces_dir
        self.prefix = prefix
        self.workload_dir = os.path.abspath(workload_dir) if workload_dir else None
        self.snapshot_index = snapshot_index

        # the normalized operations, op_list[i].seq == i
        self.op_list = []

        # dict(source, number of records)
        self.source_record_count = dict()

        # number of records referring to paths out of the workload directory
        self.ignored_records = 0

        self.tracker = NamespaceTracker(snapshot_index)

        if traces_dir is not None:
            self.__load_dir()

    @classmethod
    def from_records(cls, source_records : dict, snapshot_index : SnapshotIndex = None,
                     workload_dir : str = None):
        '''
        source_records: dict(source, list of record dicts), the records of a
        source are in the order the source recorded them.
        '''
        reader = cls(None, snapshot_index, workload_dir)
        record_lists = []
        for source, fields_list in source_records.items():
            records = [TraceRecord(str(source), i + 1, fields) for i, fields in enumerate(fields_list)]
            record_lists.append(records)
            reader.source_record_count[str(source)] = len(records)
        reader.__normalize(reader.__merge(record_lists))
        return reader

    @timeit
    def __load_dir(self):
        if not os.path.isdir(self.traces_dir):
            raise MalformedTrace("traces directory %s does not exist" % (self.traces_dir))

        source_files = find_trace_files(self.traces_dir, self.prefix)
        record_lists = []
        for source, fpath in source_files.items():
            dump_fpath = os.path.join(self.traces_dir, '%s.%s.%s' % (self.prefix, BYTE_DUMP_INFIX, source))
            records = read_trace_file(source, fpath, dump_fpath)
            record_lists.append(records)
            self.source_record_count[source] = len(records)

            log_msg = "read %d records from %s" % (len(records), fpath)
            log.global_logger.debug(log_msg)

        if not source_files:
            log.global_logger.warning("no trace file with prefix %s in %s" % (self.prefix, self.traces_dir))

        self.__normalize(self.__merge(record_lists))

    def __merge(self, record_lists : list) -> list:
        for records in record_lists:
            for prev, curr in zip(records, records[1:]):
                if not prev.token < curr.token:
                    raise MalformedTrace("%s: causal token %s does not increase after %s (%s)" \
                            % (curr.where(), curr.token, prev.token, prev.where()))

        merged = list(heapq.merge(*record_lists, key=lambda r: r.token))
        for prev, curr in zip(merged, merged[1:]):
            if prev.token == curr.token:
                raise MalformedTrace("causal tokens tie between %s and %s, cannot order them" \
                        % (prev.where(), curr.where()))
        return merged

    @timeit
    def __normalize(self, records : list):
        for record in records:
            self.__normalize_record(record)

        log_msg = "%d records normalized into %d operations, %d ignored" \
                % (sum(self.source_record_count.values()), len(self.op_list), self.ignored_records)
        log.global_logger.debug(log_msg)

    def __rel_path(self, record : TraceRecord, path : str):
        ''' path relative to the workload directory, None if it is out of it '''
        if os.path.isabs(path):
            if self.workload_dir is None:
                return None
            path = os.path.normpath(path)
            if path != self.workload_dir and not path.startswith(self.workload_dir + os.sep):
                return None
            path = os.path.relpath(path, self.workload_dir)
        path = normalize_relpath(path)
        if path == '..' or path.startswith('..' + os.sep):
            return None
        return path

    def __emit(self, kind : OpKind, record : TraceRecord, **kwargs) -> LogicalOperation:
        pid = record.pid if record.pid is not None else record.source
        op = LogicalOperation(len(self.op_list), kind,
                              token=record.token, source=record.source, pid=pid,
                              backtrace=record.backtrace, **kwargs)
        self.op_list.append(op)

        if log.debug:
            log.global_logger.debug("%s <- %s" % (str(op), str(record)))
        return op

    def __target(self, record : TraceRecord):
        '''
        return (path, inode) of the record's target,
        (None, None) if the target is out of the workload directory.
        '''
        if record.path is not None:
            path = self.__rel_path(record, record.path)
            if path is None:
                return None, None
            inode = self.tracker.lookup(path)
            if inode is None:
                raise MalformedTrace("%s: %s refers to a file that does not exist, %s" \
                        % (record.where(), record.syscall, path))
            return path, inode
        elif record.inode is not None:
            if self.tracker.state(record.inode) is None:
                raise MalformedTrace("%s: %s refers to inode %d before it was created" \
                        % (record.where(), record.syscall, record.inode))
            paths = self.tracker.paths_of(record.inode)
            return (paths[0] if paths else None), record.inode
        raise MalformedTrace("%s: %s needs a path or an inode" % (record.where(), record.syscall))

    def __parent(self, record : TraceRecord, path : str) -> tuple:
        ''' return (parent inode, name) of a new entry '''
        if path == '':
            raise MalformedTrace("%s: %s cannot target the workload directory itself" \
                    % (record.where(), record.syscall))
        parent_path, name = split_path(path)
        parent_inode = self.tracker.lookup(parent_path)
        if parent_inode is None or not self.tracker.state(parent_inode).is_dir:
            raise MalformedTrace("%s: parent directory of %s does not exist" % (record.where(), path))
        return parent_inode, name

    def __normalize_record(self, record : TraceRecord):
        kind = SYSCALL_NAME_MAP[record.syscall]

        if kind == 'stdout':
            self.__emit(OpKind.kStdout, record, data=record.data or b'',
                        count=len(record.data or b''))
            return

        if kind in ['rename', 'link']:
            self.__normalize_two_path(kind, record)
            return

        if kind in ['create', 'mkdir']:
            if record.path is None:
                raise MalformedTrace("%s: %s needs a path" % (record.where(), record.syscall))
            path = self.__rel_path(record, record.path)
            if path is None:
                self.ignored_records += 1
                return
            if kind == 'create':
                self.__normalize_create(record, path)
            else:
                self.__normalize_mkdir(record, path)
            return

        path, inode = self.__target(record)
        if inode is None:
            self.ignored_records += 1
            return
        inode_state = self.tracker.state(inode)

        if kind in ['write', 'append']:
            if inode_state.is_dir:
                raise MalformedTrace("%s: write to directory %s" % (record.where(), path))
            self.__normalize_write(kind, record, path, inode)
        elif kind == 'truncate':
            if inode_state.is_dir or record.size is None:
                raise MalformedTrace("%s: invalid truncate of %s" % (record.where(), path))
            if record.size == inode_state.size:
                log.global_logger.debug("%s: truncate does not change the size, skipped" % (record.where()))
                return
            self.__emit(OpKind.kTruncate, record, inode=inode, path=path,
                        initial_size=inode_state.size, final_size=record.size)
            inode_state.size = record.size
        elif kind == 'unlink':
            if inode_state.is_dir:
                raise MalformedTrace("%s: unlink of directory %s" % (record.where(), path))
            parent_inode, name = self.__parent(record, path)
            hardlinks = self.tracker.remove_entry(path)
            self.__emit(OpKind.kUnlink, record, inode=inode, parent_inode=parent_inode,
                        name=name, path=path, hardlinks=hardlinks,
                        initial_size=inode_state.size)
        elif kind == 'rmdir':
            if not inode_state.is_dir:
                raise MalformedTrace("%s: rmdir of file %s" % (record.where(), path))
            if self.tracker.children(path):
                raise MalformedTrace("%s: rmdir of non-empty directory %s" % (record.where(), path))
            parent_inode, name = self.__parent(record, path)
            self.tracker.remove_entry(path)
            self.__emit(OpKind.kRmdir, record, inode=inode, parent_inode=parent_inode,
                        name=name, path=path, is_dir=True)
        elif kind in ['fsync', 'fdatasync']:
            op_kind = OpKind.kFsync if kind == 'fsync' else OpKind.kFdatasync
            self.__emit(op_kind, record, inode=inode, path=path, is_dir=inode_state.is_dir)
        else:
            raise MalformedTrace("%s: unhandled operation %s" % (record.where(), record.syscall))

    def __normalize_create(self, record : TraceRecord, path : str):
        parent_inode, name = self.__parent(record, path)
        inode = self.tracker.lookup(path)
        if inode is not None:
            inode_state = self.tracker.state(inode)
            if inode_state.is_dir:
                raise MalformedTrace("%s: create on directory %s" % (record.where(), path))
            # creat() on an existing file truncates it
            if inode_state.size > 0:
                self.__emit(OpKind.kTruncate, record, inode=inode, path=path,
                            initial_size=inode_state.size, final_size=0)
                inode_state.size = 0
            return

        inode_state = self.tracker.alloc(is_dir=False)
        self.tracker.add_entry(path, inode_state.inode)
        self.__emit(OpKind.kCreate, record, inode=inode_state.inode, parent_inode=parent_inode,
                    name=name, path=path, mode=record.mode, final_size=0)

    def __normalize_mkdir(self, record : TraceRecord, path : str):
        parent_inode, name = self.__parent(record, path)
        if self.tracker.lookup(path) is not None:
            raise MalformedTrace("%s: mkdir on existing path %s" % (record.where(), path))
        inode_state = self.tracker.alloc(is_dir=True)
        self.tracker.add_entry(path, inode_state.inode)
        self.__emit(OpKind.kMkdir, record, inode=inode_state.inode, parent_inode=parent_inode,
                    name=name, path=path, mode=record.mode, is_dir=True)

    def __normalize_write(self, kind : str, record : TraceRecord, path : str, inode : int):
        inode_state = self.tracker.state(inode)
        count = record.count
        if count is None:
            raise MalformedTrace("%s: write without a byte count" % (record.where()))
        if count == 0:
            return

        size = inode_state.size
        offset = size if kind == 'append' or record.offset is None else record.offset
        data = record.data

        if offset > size:
            # the hole between the old end of file and the write reads as zeros
            self.__emit(OpKind.kTruncate, record, inode=inode, path=path,
                        initial_size=size, final_size=offset)
            size = offset

        if offset + count <= size:
            self.__emit(OpKind.kOverwrite, record, inode=inode, path=path,
                        offset=offset, count=count, data=data,
                        initial_size=size, final_size=size)
            return

        if offset < size:
            head = size - offset
            self.__emit(OpKind.kOverwrite, record, inode=inode, path=path,
                        offset=offset, count=head,
                        data=data[:head] if data is not None else None,
                        initial_size=size, final_size=size)
            offset, count = size, count - head
            data = data[head:] if data is not None else None

        self.__emit(OpKind.kAppend, record, inode=inode, path=path,
                    offset=offset, count=count, data=data,
                    initial_size=size, final_size=offset + count)
        inode_state.size = offset + count

    def __normalize_two_path(self, kind : str, record : TraceRecord):
        if record.path is None or record.dest is None:
            raise MalformedTrace("%s: %s needs a path and a dest" % (record.where(), record.syscall))
        src = self.__rel_path(record, record.path)
        dest = self.__rel_path(record, record.dest)
        if src is None and dest is None:
            self.ignored_records += 1
            return
        if src is None or dest is None:
            raise MalformedTrace("%s: %s crosses the workload directory boundary" \
                    % (record.where(), record.syscall))

        inode = self.tracker.lookup(src)
        if inode is None:
            raise MalformedTrace("%s: %s of a file that does not exist, %s" % (record.where(), record.syscall, src))
        inode_state = self.tracker.state(inode)
        parent_inode, name = self.__parent(record, src)
        dest_parent_inode, dest_name = self.__parent(record, dest)
        dest_inode = self.tracker.lookup(dest)

        if kind == 'link':
            if inode_state.is_dir or dest_inode is not None:
                raise MalformedTrace("%s: invalid link from %s to %s" % (record.where(), src, dest))
            self.tracker.add_entry(dest, inode)
            self.__emit(OpKind.kLink, record, inode=inode, parent_inode=parent_inode, name=name,
                        path=src, dest_parent_inode=dest_parent_inode, dest_name=dest_name,
                        dest_path=dest, hardlinks=inode_state.nlink)
            return

        if dest_inode == inode:
            # both names refer to the same file, rename does nothing
            log.global_logger.debug("%s: rename between hard links of one file, skipped" % (record.where()))
            return

        if inode_state.is_dir and dest.startswith(src + os.sep):
            raise MalformedTrace("%s: rename of %s into itself" % (record.where(), src))

        hardlinks = None
        if dest_inode is not None:
            dest_state = self.tracker.state(dest_inode)
            if dest_state.is_dir != inode_state.is_dir:
                raise MalformedTrace("%s: rename between a file and a directory, %s -> %s" \
                        % (record.where(), src, dest))
            if dest_state.is_dir and self.tracker.children(dest):
                raise MalformedTrace("%s: rename onto non-empty directory %s" % (record.where(), dest))
            hardlinks = self.tracker.remove_entry(dest)

        self.tracker.move(src, dest)
        self.__emit(OpKind.kRename, record, inode=inode, parent_inode=parent_inode, name=name,
                    path=src, dest_parent_inode=dest_parent_inode, dest_name=dest_name,
                    dest_path=dest, dest_inode=dest_inode, hardlinks=hardlinks,
                    is_dir=inode_state.is_dir)

    def __str__(self) -> str:
        return 'traces: %s, sources: %d, operations: %d' \
                % (self.traces_dir, len(self.source_record_count), len(self.op_list))

    def __repr__(self) -> str:
        return self.__str__()
