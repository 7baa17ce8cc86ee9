import os
import sys
import logging
import unittest

codebase_dir = os.path.abspath(os.path.join(os.path.dirname(__file__), "../../.."))
sys.path.append(codebase_dir)

from crashscope.utils.logger import setup_global_logger
from crashscope.trace_proc.trace_reader.trace_reader import TraceReader
from crashscope.persist_graph.persist_graph import PersistenceGraph, iter_bits
from crashscope.crash_plan.atomicity_policy import AtomicityPolicy, AtomicityUnit
from crashscope.crash_plan.crash_image_type import CrashImageType
from crashscope.crash_plan.crash_state_gen import CrashStateGenerator

def build(records, **kwargs):
    op_list = TraceReader.from_records({'main': records}).op_list
    graph = PersistenceGraph(op_list)
    return op_list, graph, CrashStateGenerator(op_list, graph, **kwargs)

DB_RECORDS = [
    {'token': 1, 'op': 'mkdir', 'path': 'db'},
    {'token': 2, 'op': 'creat', 'path': 'conf'},
    {'token': 3, 'op': 'append', 'path': 'conf', 'text': 'cache=on\n'},
    {'token': 4, 'op': 'creat', 'path': 'db/db'},
    {'token': 5, 'op': 'fsync', 'path': 'db/db'},
    {'token': 6, 'op': 'append', 'path': 'db/db', 'data': 'ab' * 30},
    {'token': 7, 'op': 'fsync', 'path': 'db/db'},
]

NO_SYNC_RECORDS = [
    {'token': 1, 'op': 'creat', 'path': 'a'},
    {'token': 2, 'op': 'append', 'path': 'a', 'text': 'hello'},
    {'token': 3, 'op': 'creat', 'path': 'b'},
    {'token': 4, 'op': 'append', 'path': 'b', 'text': 'world'},
]

class TestCrashStateGen(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        setup_global_logger(stm=sys.stderr, stm_lv=logging.ERROR)

    def test_policy_units(self):
        op_list, _, _ = build(DB_RECORDS)
        policy = AtomicityPolicy()
        units = policy.units_of(op_list[5])
        self.assertEqual(len(units), 6)
        self.assertEqual([u.kind for u in units[:2]], [AtomicityUnit.EXTEND, AtomicityUnit.DATA])
        self.assertEqual(sum(u.count for u in units if u.kind == AtomicityUnit.DATA), 30)
        self.assertTrue(policy.is_atomic(op_list[0]))

        self.assertTrue(AtomicityPolicy(split_mode='atomic').is_atomic(op_list[5]))
        self.assertTrue(AtomicityPolicy(atomic_write_bytes=64).is_atomic(op_list[5]))
        aligned = AtomicityPolicy(split_mode='aligned', block_size=8).units_of(op_list[5])
        self.assertEqual([u.count for u in aligned if u.kind == AtomicityUnit.DATA], [8, 8, 8, 6])

        with self.assertRaises(ValueError):
            AtomicityPolicy(split_mode='aligned')
        with self.assertRaises(ValueError):
            AtomicityPolicy(extend_fill='ones')

    def test_maximal_and_minimal_first(self):
        op_list, _, gen = build(DB_RECORDS)
        images = list(gen)
        self.assertEqual(images[0].type, CrashImageType.Maximal)
        self.assertEqual(images[0].image_id, 0)
        self.assertEqual(images[0].persisted, frozenset(range(len(op_list))))
        self.assertEqual(images[1].type, CrashImageType.Minimal)
        self.assertEqual(images[1].persisted, frozenset())
        self.assertEqual([image.image_id for image in images], list(range(len(images))))

    def test_images_are_downward_closed(self):
        _, graph, gen = build(DB_RECORDS)
        for image in gen:
            self.assertTrue(graph.is_downward_closed(image.persisted), str(image))
            for seq in image.persisted:
                self.assertLess(seq, image.cut)
            forced = set(iter_bits(gen.forced_mask(image.cut)))
            self.assertTrue(forced <= image.persisted, str(image))
            for seq in image.partial:
                self.assertNotIn(seq, image.persisted)

    def test_generation_is_restartable(self):
        _, _, gen = build(DB_RECORDS)
        first = [(i.image_id, i.type, i.cut, i.persisted, tuple(sorted(i.partial.items()))) for i in gen]
        second = [(i.image_id, i.type, i.cut, i.persisted, tuple(sorted(i.partial.items()))) for i in gen]
        self.assertEqual(first, second)
        self.assertEqual(gen.num_generated, len(first))

    def test_no_duplicate_states(self):
        _, _, gen = build(DB_RECORDS)
        keys = [(i.persisted, tuple(sorted(i.partial.items()))) for i in gen]
        self.assertEqual(len(keys), len(set(keys)))

    def test_torn_append_before_barrier(self):
        _, _, gen = build(DB_RECORDS)
        self.assertEqual(set(iter_bits(gen.forced_mask(6))), {0, 3, 4})

        torn = [i for i in gen if i.type == CrashImageType.Torn and i.cut == 6 and i.focus_seq == 5]
        # five torn prefixes and the loss of the first or second data piece
        self.assertEqual(len(torn), 7)
        units = gen.units_of(5)
        for image in torn:
            self.assertEqual(list(image.partial), [5])
            kept = image.partial[5]
            self.assertTrue(0 < len(kept) < 6)
            for i, unit in enumerate(units):
                # an extend is never lost while its data persists
                if unit.kind == AtomicityUnit.EXTEND and i not in kept:
                    self.assertNotIn(i + 1, kept, str(image))

        # the append is durable once the second fsync returned
        self.assertFalse([i for i in gen if i.cut == 7 and 5 not in i.persisted])

    def test_no_sync_trace_everything_droppable(self):
        op_list, _, gen = build(NO_SYNC_RECORDS)
        n = len(op_list)
        self.assertEqual(gen.forced_mask(n), 0)
        lost = {i.focus_seq for i in gen if i.type == CrashImageType.Reorder and i.cut == n}
        # losing the last write alone is the prefix image of cut 3
        self.assertIn(1, lost)
        self.assertNotIn(3, lost)
        self.assertGreater(gen.num_duplicated, 0)

    def test_stdout_is_mandatory(self):
        records = [
            {'token': 1, 'op': 'creat', 'path': 'a'},
            {'token': 2, 'op': 'stdout', 'text': 'committed'},
            {'token': 3, 'op': 'append', 'path': 'a', 'text': 'x'},
        ]
        _, _, gen = build(records)
        for image in gen:
            if image.cut > 1:
                self.assertIn(1, image.persisted, str(image))

    def test_prefix_only(self):
        op_list, _, gen = build(NO_SYNC_RECORDS, reorder=False, torn=False)
        images = list(gen)
        self.assertEqual(len(images), len(op_list) + 1)
        self.assertEqual([i.type for i in images[2:]], [CrashImageType.Prefix] * (len(op_list) - 1))

    def test_max_images(self):
        _, _, gen = build(DB_RECORDS, max_images=3)
        images = list(gen)
        self.assertEqual(len(images), 3)
        self.assertTrue(gen.limit_reached)

        _, _, gen = build(DB_RECORDS)
        list(gen)
        self.assertFalse(gen.limit_reached)

    def test_empty_trace(self):
        _, _, gen = build([])
        images = list(gen)
        self.assertEqual(len(images), 1)
        self.assertEqual(images[0].type, CrashImageType.Maximal)
        self.assertEqual(gen.num_duplicated, 1)

if __name__ == '__main__':
    unittest.main()
