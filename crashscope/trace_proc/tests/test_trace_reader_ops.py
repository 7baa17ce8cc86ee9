import os
import sys
import json
import shutil
import logging
import tempfile
import unittest

codebase_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "../../.."))
sys.path.append(codebase_dir)

from crashscope.utils.logger import setup_global_logger
from crashscope.utils.exceptions import MalformedTrace, CrashCheckFatal
from crashscope.trace_proc.snapshot.snapshot_index import SnapshotIndex
from crashscope.trace_proc.trace_reader.op_type import OpKind
from crashscope.trace_proc.trace_reader.code_location import CodeLocation
from crashscope.trace_proc.trace_reader.trace_reader import TraceReader, find_trace_files

def kinds_of(reader):
    return [op.kind for op in reader.op_list]

class TestTraceReaderOps(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        setup_global_logger(stm=sys.stderr, stm_lv=logging.ERROR)

    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp(prefix='crashscope-trace-test-')

    def tearDown(self):
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def test_basic_normalization(self):
        records = [
            {'token': 1, 'op': 'mkdir', 'path': 'db'},
            {'token': 2, 'op': 'creat', 'path': 'conf'},
            {'token': 3, 'op': 'append', 'path': 'conf', 'text': 'v=1\n'},
            {'token': 4, 'op': 'creat', 'path': 'db/db'},
            {'token': 5, 'op': 'fsync', 'path': 'db/db'},
            {'token': 6, 'op': 'stdout', 'text': 'done'},
        ]
        reader = TraceReader.from_records({'main': records})

        self.assertEqual(kinds_of(reader), [OpKind.kMkdir, OpKind.kCreate, OpKind.kAppend,
                                            OpKind.kCreate, OpKind.kFsync, OpKind.kStdout])
        self.assertEqual([op.seq for op in reader.op_list], list(range(6)))

        mkdir_op, conf_op, append_op, db_op, fsync_op, stdout_op = reader.op_list
        self.assertTrue(mkdir_op.is_dir)
        self.assertEqual(conf_op.inode, append_op.inode)
        self.assertEqual(append_op.offset, 0)
        self.assertEqual(append_op.count, 4)
        self.assertEqual(append_op.data, b'v=1\n')
        self.assertEqual(db_op.parent_inode, mkdir_op.inode)
        self.assertEqual(fsync_op.inode, db_op.inode)
        self.assertEqual(stdout_op.data, b'done')
        self.assertEqual(reader.source_record_count, {'main': 6})

    def test_merge_by_token(self):
        sources = {
            'p1': [{'token': 1, 'op': 'creat', 'path': 'a'},
                   {'token': 4, 'op': 'creat', 'path': 'c'}],
            'p2': [{'token': 2, 'op': 'creat', 'path': 'b'},
                   {'token': 3, 'op': 'unlink', 'path': 'a'}],
        }
        reader = TraceReader.from_records(sources)
        self.assertEqual([op.path for op in reader.op_list], ['a', 'b', 'a', 'c'])
        self.assertEqual(kinds_of(reader), [OpKind.kCreate, OpKind.kCreate, OpKind.kUnlink, OpKind.kCreate])
        self.assertEqual(reader.op_list[1].source, 'p2')

    def test_token_tie_is_malformed(self):
        sources = {
            'p1': [{'token': 1, 'op': 'creat', 'path': 'a'}],
            'p2': [{'token': 1, 'op': 'creat', 'path': 'b'}],
        }
        with self.assertRaises(MalformedTrace):
            TraceReader.from_records(sources)

    def test_non_increasing_token_is_malformed(self):
        records = [{'token': 2, 'op': 'creat', 'path': 'a'},
                   {'token': 1, 'op': 'creat', 'path': 'b'}]
        with self.assertRaises(MalformedTrace):
            TraceReader.from_records({'main': records})

    def test_unknown_path_is_malformed(self):
        records = [{'token': 1, 'op': 'append', 'path': 'missing', 'text': 'x'}]
        with self.assertRaises(MalformedTrace) as ctx:
            TraceReader.from_records({'main': records})
        self.assertIsInstance(ctx.exception, CrashCheckFatal)
        self.assertIn('missing', ctx.exception.msg)

    def test_unknown_inode_is_malformed(self):
        records = [{'token': 1, 'op': 'fsync', 'inode': 42}]
        with self.assertRaises(MalformedTrace):
            TraceReader.from_records({'main': records})

    def test_unknown_op_is_malformed(self):
        records = [{'token': 1, 'op': 'mmap', 'path': 'a'}]
        with self.assertRaises(MalformedTrace):
            TraceReader.from_records({'main': records})

    def test_count_mismatch_is_malformed(self):
        records = [{'token': 1, 'op': 'creat', 'path': 'a'},
                   {'token': 2, 'op': 'append', 'path': 'a', 'count': 5, 'text': 'abc'}]
        with self.assertRaises(MalformedTrace):
            TraceReader.from_records({'main': records})

    def test_empty_trace(self):
        reader = TraceReader.from_records({'main': []})
        self.assertEqual(reader.op_list, [])

    def test_write_splitting(self):
        records = [
            {'token': 1, 'op': 'creat', 'path': 'f'},
            {'token': 2, 'op': 'write', 'path': 'f', 'offset': 0, 'text': 'abcd'},
            {'token': 3, 'op': 'pwrite', 'path': 'f', 'offset': 2, 'text': 'XYZW'},
            {'token': 4, 'op': 'pwrite', 'path': 'f', 'offset': 1, 'text': 'q'},
            {'token': 5, 'op': 'pwrite', 'path': 'f', 'offset': 10, 'text': 'ee'},
        ]
        reader = TraceReader.from_records({'main': records})
        self.assertEqual(kinds_of(reader), [OpKind.kCreate,
                                            OpKind.kAppend,
                                            OpKind.kOverwrite, OpKind.kAppend,
                                            OpKind.kOverwrite,
                                            OpKind.kTruncate, OpKind.kAppend])
        ops = reader.op_list
        self.assertEqual((ops[2].offset, ops[2].count, ops[2].data), (2, 2, b'XY'))
        self.assertEqual((ops[3].offset, ops[3].count, ops[3].data), (4, 2, b'ZW'))
        self.assertEqual(ops[3].final_size, 6)
        self.assertEqual((ops[5].initial_size, ops[5].final_size), (6, 10))
        self.assertEqual((ops[6].offset, ops[6].final_size), (10, 12))

    def test_create_existing_truncates(self):
        records = [
            {'token': 1, 'op': 'creat', 'path': 'f'},
            {'token': 2, 'op': 'append', 'path': 'f', 'text': 'abc'},
            {'token': 3, 'op': 'creat', 'path': 'f'},
            {'token': 4, 'op': 'creat', 'path': 'f'},
        ]
        reader = TraceReader.from_records({'main': records})
        self.assertEqual(kinds_of(reader), [OpKind.kCreate, OpKind.kAppend, OpKind.kTruncate])
        self.assertEqual(reader.op_list[2].final_size, 0)

    def test_rename_over_existing(self):
        records = [
            {'token': 1, 'op': 'creat', 'path': 'a'},
            {'token': 2, 'op': 'creat', 'path': 'b'},
            {'token': 3, 'op': 'rename', 'path': 'a', 'dest': 'b'},
            {'token': 4, 'op': 'append', 'path': 'b', 'text': 'x'},
        ]
        reader = TraceReader.from_records({'main': records})
        rename_op = reader.op_list[2]
        self.assertEqual(rename_op.kind, OpKind.kRename)
        self.assertEqual(rename_op.inode, reader.op_list[0].inode)
        self.assertEqual(rename_op.dest_inode, reader.op_list[1].inode)
        self.assertEqual(rename_op.hardlinks, 0)
        self.assertEqual(reader.op_list[3].inode, reader.op_list[0].inode)

    def test_rename_directory_moves_children(self):
        records = [
            {'token': 1, 'op': 'mkdir', 'path': 'd'},
            {'token': 2, 'op': 'creat', 'path': 'd/f'},
            {'token': 3, 'op': 'rename', 'path': 'd', 'dest': 'e'},
            {'token': 4, 'op': 'unlink', 'path': 'e/f'},
        ]
        reader = TraceReader.from_records({'main': records})
        self.assertEqual(reader.op_list[3].inode, reader.op_list[1].inode)

    def test_rename_into_itself_is_malformed(self):
        records = [
            {'token': 1, 'op': 'mkdir', 'path': 'd'},
            {'token': 2, 'op': 'rename', 'path': 'd', 'dest': 'd/sub'},
        ]
        with self.assertRaises(MalformedTrace):
            TraceReader.from_records({'main': records})

    def test_rmdir_non_empty_is_malformed(self):
        records = [
            {'token': 1, 'op': 'mkdir', 'path': 'd'},
            {'token': 2, 'op': 'creat', 'path': 'd/f'},
            {'token': 3, 'op': 'rmdir', 'path': 'd'},
        ]
        with self.assertRaises(MalformedTrace):
            TraceReader.from_records({'main': records})

    def test_out_of_workload_paths_ignored(self):
        workload_dir = os.path.join(self.tmp_dir, 'work')
        records = [
            {'token': 1, 'op': 'creat', 'path': '/var/log/app.log'},
            {'token': 2, 'op': 'creat', 'path': os.path.join(workload_dir, 'a')},
        ]
        reader = TraceReader.from_records({'main': records}, workload_dir=workload_dir)
        self.assertEqual(len(reader.op_list), 1)
        self.assertEqual(reader.op_list[0].path, 'a')
        self.assertEqual(reader.ignored_records, 1)

    def test_rename_crossing_workload_is_malformed(self):
        workload_dir = os.path.join(self.tmp_dir, 'work')
        records = [
            {'token': 1, 'op': 'creat', 'path': os.path.join(workload_dir, 'a')},
            {'token': 2, 'op': 'rename', 'path': os.path.join(workload_dir, 'a'), 'dest': '/tmp/elsewhere'},
        ]
        with self.assertRaises(MalformedTrace):
            TraceReader.from_records({'main': records}, workload_dir=workload_dir)

    def test_snapshot_files_are_known(self):
        snapshot_dir = os.path.join(self.tmp_dir, 'snapshot')
        os.makedirs(os.path.join(snapshot_dir, 'db'))
        with open(os.path.join(snapshot_dir, 'db', 'db'), 'wb') as fd:
            fd.write(b'0123456789')
        index = SnapshotIndex(snapshot_dir)

        records = [
            {'token': 1, 'op': 'append', 'path': 'db/db', 'text': 'xy'},
            {'token': 2, 'op': 'fsync', 'path': 'db'},
        ]
        reader = TraceReader.from_records({'main': records}, index)
        append_op, fsync_op = reader.op_list
        self.assertEqual(append_op.inode, index.entries['db/db'].inode)
        self.assertEqual((append_op.offset, append_op.final_size), (10, 12))
        self.assertTrue(fsync_op.is_dir)

    def test_read_trace_files_from_disk(self):
        traces_dir = os.path.join(self.tmp_dir, 'traces')
        os.makedirs(traces_dir)
        lines = [
            '# recorded by the test',
            json.dumps({'token': 1, 'op': 'creat', 'path': 'f'}),
            '',
            json.dumps({'token': 3, 'op': 'append', 'path': 'f', 'count': 4, 'dump_offset': 2,
                        'stack': ['/usr/bin/app:0x4005d0', '/lib/libc.so.6:0x21b97']}),
        ]
        with open(os.path.join(traces_dir, 'trace.100'), 'w') as fd:
            fd.write('\n'.join(lines) + '\n')
        with open(os.path.join(traces_dir, 'trace.byte_dump.100'), 'wb') as fd:
            fd.write(b'--DATA--')
        with open(os.path.join(traces_dir, 'trace.101'), 'w') as fd:
            fd.write(json.dumps({'token': 2, 'op': 'write', 'path': 'f', 'offset': 0, 'data': '6869'}) + '\n')

        self.assertEqual(sorted(find_trace_files(traces_dir)), ['100', '101'])

        reader = TraceReader(traces_dir)
        self.assertEqual(kinds_of(reader), [OpKind.kCreate, OpKind.kAppend, OpKind.kAppend])
        self.assertEqual(reader.op_list[1].data, b'hi')
        self.assertEqual(reader.op_list[2].data, b'DATA')
        self.assertEqual(reader.op_list[2].offset, 2)
        self.assertEqual(reader.op_list[2].backtrace[0], CodeLocation('/usr/bin/app', 0x4005d0))
        self.assertEqual(reader.source_record_count, {'100': 2, '101': 1})

    def test_missing_traces_dir_is_malformed(self):
        with self.assertRaises(MalformedTrace):
            TraceReader(os.path.join(self.tmp_dir, 'nope'))

    def test_undecodable_line_is_malformed(self):
        traces_dir = os.path.join(self.tmp_dir, 'traces')
        os.makedirs(traces_dir)
        with open(os.path.join(traces_dir, 'trace.main'), 'wb') as fd:
            fd.write(b'{"token": 1, "op": "mkdir", "path": "d"}\n')
            fd.write(b'{"token": 2, "op": "creat", "path": "\xff\xfe"}\n')

        with self.assertRaises(MalformedTrace) as cm:
            TraceReader(traces_dir)
        self.assertIn('trace.main:2', cm.exception.msg)
        self.assertIsInstance(cm.exception, CrashCheckFatal)

if __name__ == '__main__':
    unittest.main()
