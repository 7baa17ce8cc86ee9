import os
import sys
import json
import time
import shutil
import logging
import tempfile
import unittest

codebase_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "../../.."))
sys.path.append(codebase_dir)

from crashscope.utils.logger import setup_global_logger
from crashscope.conf.check_env import CheckEnv
from crashscope.executor.check_runner import CheckRunner
from crashscope.crash_plan.crash_image_type import CrashImageType
from crashscope.oracle.oracle_verdict import OracleVerdict
from crashscope.report.vulnerability import VulnClass, VulnKind

DB_PAYLOAD = bytes(i % 251 for i in range(295177))

def db_checker(crashed_dir):
    ''' the database promises that a returned fsync made the whole append durable '''
    fpath = os.path.join(crashed_dir, 'db', 'db')
    if not os.path.exists(fpath):
        return True
    with open(fpath, 'rb') as fd:
        content = fd.read()
    return content in (b'', DB_PAYLOAD)

def pair_checker(crashed_dir):
    ''' b is only written after a was complete '''
    if not os.path.exists(os.path.join(crashed_dir, 'b')):
        return True
    with open(os.path.join(crashed_dir, 'a'), 'rb') as fd:
        assert fd.read() == b'hello', 'b exists but a is incomplete'

def hanging_pair_checker(crashed_dir):
    try:
        pair_checker(crashed_dir)
    except AssertionError:
        time.sleep(1)
    return True

class TestReporterScenarios(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        setup_global_logger(stm=sys.stderr, stm_lv=logging.CRITICAL)

    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp(prefix='crashscope-report-test-')
        self.traces_dir = os.path.join(self.tmp_dir, 'traces')
        self.snapshot_dir = os.path.join(self.tmp_dir, 'snapshot')
        self.scratch_dir = os.path.join(self.tmp_dir, 'scratch')
        os.makedirs(self.traces_dir)
        os.makedirs(self.snapshot_dir)

    def tearDown(self):
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def write_trace(self, records, byte_dump=None, source='main'):
        with open(os.path.join(self.traces_dir, 'trace.' + source), 'w') as fd:
            for record in records:
                fd.write(json.dumps(record) + '\n')
        if byte_dump is not None:
            with open(os.path.join(self.traces_dir, 'trace.byte_dump.' + source), 'wb') as fd:
                fd.write(byte_dump)

    def env(self, checker, **kwargs):
        return CheckEnv(traces_dir=self.traces_dir, initial_snapshot=self.snapshot_dir,
                        scratch_dir=self.scratch_dir, checker=checker, num_workers=2, **kwargs)

    def write_db_trace(self):
        self.write_trace([
            {'token': 1, 'op': 'mkdir', 'path': 'db'},
            {'token': 2, 'op': 'creat', 'path': 'db/conf'},
            {'token': 3, 'op': 'append', 'path': 'db/conf', 'text': 'x' * 58},
            {'token': 4, 'op': 'creat', 'path': 'db/db'},
            {'token': 5, 'op': 'fsync', 'path': 'db/db', 'stack': ['/usr/bin/db:0x4011a0']},
            {'token': 6, 'op': 'append', 'path': 'db/db', 'dump_offset': 0, 'count': len(DB_PAYLOAD),
             'stack': ['/usr/bin/db:0x401234']},
            {'token': 7, 'op': 'fsync', 'path': 'db/db'},
        ], DB_PAYLOAD)

    def write_pair_trace(self):
        self.write_trace([
            {'token': 1, 'op': 'creat', 'path': 'a'},
            {'token': 2, 'op': 'append', 'path': 'a', 'text': 'hello'},
            {'token': 3, 'op': 'creat', 'path': 'b'},
            {'token': 4, 'op': 'append', 'path': 'b', 'text': 'world'},
        ])

    def test_torn_append_before_fsync(self):
        self.write_db_trace()
        failed_dir = os.path.join(self.tmp_dir, 'failed')
        report = CheckRunner(self.env(db_checker, failed_images_dir=failed_dir)).run()

        self.assertTrue(report.complete)
        self.assertEqual(len(report.vulnerabilities), 1)
        vuln = report.vulnerabilities[0]
        self.assertEqual(vuln.vuln_class, VulnClass.Dynamic)
        self.assertEqual(vuln.kind, VulnKind.OrderingDurability)
        self.assertEqual((vuln.start_seq, vuln.end_seq), (5, 6))
        self.assertTrue(vuln.image_ids)

        self.assertEqual(report.inconclusive, [])
        self.assertGreater(report.stats['Inconsistent'], 0)
        self.assertEqual(report.stats['images'], report.stats['Consistent'] + report.stats['Inconsistent'])

        kept = [name for name in os.listdir(failed_dir) if os.path.isdir(os.path.join(failed_dir, name))]
        self.assertEqual(len(kept), report.stats['Inconsistent'])
        # every scratch directory is gone
        self.assertEqual(os.listdir(self.scratch_dir), [])

        text = report.to_text()
        self.assertIn('ordering/durability', text)
        self.assertIn('append("db/db", 0, 295177)', text)

    def test_no_fsync_single_atomicity_finding(self):
        self.write_pair_trace()
        report = CheckRunner(self.env(pair_checker)).run()

        self.assertEqual(len(report.vulnerabilities), 1)
        vuln = report.vulnerabilities[0]
        self.assertEqual(vuln.vuln_class, VulnClass.Dynamic)
        self.assertEqual(vuln.kind, VulnKind.Atomicity)
        self.assertEqual((vuln.start_seq, vuln.end_seq), (0, 3))
        self.assertEqual(report.static(), [])

    def test_no_fsync_consistent_oracle(self):
        self.write_pair_trace()
        report = CheckRunner(self.env(lambda d: True)).run()
        self.assertTrue(report.is_empty())
        self.assertIn('no vulnerability found', report.to_text())

    def test_empty_trace(self):
        self.write_trace([])
        report = CheckRunner(self.env(lambda d: True)).run()
        self.assertTrue(report.is_empty())
        self.assertTrue(report.complete)
        self.assertEqual(report.stats['images'], 1)

    def test_oracle_timeout_is_inconclusive(self):
        self.write_pair_trace()
        report = CheckRunner(self.env(hanging_pair_checker, oracle_ttl=0.2)).run()

        self.assertEqual(report.vulnerabilities, [])
        self.assertTrue(report.inconclusive)
        for result in report.inconclusive:
            self.assertEqual(result.verdict, OracleVerdict.OracleError)
        self.assertEqual(report.stats['Inconsistent'], 0)
        self.assertFalse(report.is_empty())

    def test_image_limit_makes_report_incomplete(self):
        self.write_db_trace()
        report = CheckRunner(self.env(db_checker, max_images=4)).run()
        self.assertFalse(report.complete)
        self.assertEqual(report.stats['images'], 4)
        self.assertTrue(report.notes)

    def test_deadline_makes_report_incomplete(self):
        self.write_pair_trace()
        report = CheckRunner(self.env(lambda d: True, deadline=1e-6)).run()
        self.assertFalse(report.complete)

    def test_independent_appends_after_barrier_stay_consistent(self):
        self.write_trace([
            {'token': 1, 'op': 'creat', 'path': 'a'},
            {'token': 2, 'op': 'creat', 'path': 'b'},
            {'token': 3, 'op': 'fsync', 'path': 'a'},
            {'token': 4, 'op': 'fsync', 'path': 'b'},
            {'token': 5, 'op': 'fsync', 'path': '.'},
            {'token': 6, 'op': 'append', 'path': 'a', 'text': 'A'},
            {'token': 7, 'op': 'append', 'path': 'b', 'text': 'B'},
        ])

        def order_insensitive_checker(crashed_dir):
            for name, full in [('a', b'A'), ('b', b'B')]:
                with open(os.path.join(crashed_dir, name), 'rb') as fd:
                    if fd.read() not in (b'', full):
                        return False
            return True

        runner = CheckRunner(self.env(order_insensitive_checker, torn=False))
        runner.prepare()
        self.assertNotIn(5, runner.graph.ancestors(6))

        results = [runner.evaluate_image(image) for image in runner.generator]
        after_barrier = [r for r in results if r.image.cut >= 5]
        for result in after_barrier:
            self.assertEqual(result.verdict, OracleVerdict.Consistent, str(result.image))

        # b persisted while the earlier append to a was lost
        reordered = [r.image for r in after_barrier if r.image.type == CrashImageType.Reorder]
        self.assertTrue([image for image in reordered if 6 in image.persisted and 5 not in image.persisted])

    def test_json_report(self):
        self.write_db_trace()
        report = CheckRunner(self.env(db_checker, static_analysis=False)).run()
        fpath = os.path.join(self.tmp_dir, 'report.json')
        report.save(fpath, 'json')
        with open(fpath) as fd:
            data = json.load(fd)
        self.assertTrue(data['complete'])
        self.assertEqual(len(data['operations']), 7)
        self.assertEqual(data['vulnerabilities'][0]['kind'], 'ordering/durability')

if __name__ == '__main__':
    unittest.main()
