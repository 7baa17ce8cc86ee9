import os
import time
import shutil
import tempfile
import concurrent.futures
from tqdm import tqdm

import crashscope.utils.logger as log
from crashscope.conf.check_env import CheckEnv
from crashscope.crash_plan.crash_image import CrashImage
from crashscope.crash_plan.crash_state_gen import CrashStateGenerator
from crashscope.executor.eval_result import EvalResult
from crashscope.executor.replayer import Replayer
from crashscope.executor.scratch_dir import ScratchDir
from crashscope.oracle.callback_oracle import CallbackOracle
from crashscope.oracle.oracle_base import OracleBase
from crashscope.oracle.oracle_verdict import OracleVerdict
from crashscope.oracle.process_oracle import ProcessOracle
from crashscope.persist_graph.persist_graph import PersistenceGraph
from crashscope.report.report import CheckReport
from crashscope.report.reporter import VulnerabilityReporter
from crashscope.trace_proc.snapshot.snapshot_index import SnapshotIndex
from crashscope.trace_proc.trace_reader.trace_reader import TraceReader
from crashscope.utils import utils as my_utils
from crashscope.utils.const_var import STDOUT_FILE_SUFFIX, SUBMIT_WINDOW_PER_WORKER, MIN_SCRATCH_SPACE_MIB
from crashscope.utils.exceptions import ReplayIOError, ResultStoreOPFailed

def timeit(func):
    """Decorator that prints the time a function takes to execute."""
    def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        result = func(*args, **kwargs)
        log.time_logger.info(f"elapsed_time.check.check_runner.{func.__name__}:{time.perf_counter() - start_time:.6f}")
        return result
    return wrapper

def build_oracle(env : CheckEnv) -> OracleBase:
    checker = env.CHECKER()
    if checker is None:
        raise ValueError("no checker configured")
    if callable(checker):
        return CallbackOracle(checker, env.RECOVERY(), ttl=env.ORACLE_TTL(),
                              pass_stdout_file=env.PASS_STDOUT_FILE())
    return ProcessOracle(checker, env.RECOVERY(), ttl=env.ORACLE_TTL(),
                         pass_stdout_file=env.PASS_STDOUT_FILE(),
                         consistent_codes=env.CONSISTENT_CODES(),
                         inconsistent_codes=env.INCONSISTENT_CODES())

class CheckRunner:
    """
    Drive one checking run: ingest the trace, build the persistence graph,
    evaluate every crash image with the oracle on a thread pool, and hand
    the results to the reporter.

    MalformedTrace and CyclicDependency raised while preparing end the run
    before anything is evaluated.
    """
    def __init__(self, env : CheckEnv, oracle : OracleBase = None, result_sink = None, rules : list = None):
        self.env = env
        self.oracle = oracle if oracle is not None else build_oracle(env)
        self.result_sink = result_sink
        self.rules = rules

        self.snapshot_index = None
        self.trace_reader = None
        self.graph = None
        self.generator = None
        self.replayer = None
        self.reporter = None

        self.num_workers = env.NUM_WORKERS()
        self.notes = []

    @timeit
    def prepare(self):
        self.snapshot_index = SnapshotIndex(self.env.INITIAL_SNAPSHOT())
        self.trace_reader = TraceReader(self.env.TRACES_DIR(), self.snapshot_index,
                                        self.env.WORKLOAD_DIR(), self.env.TRACE_PREFIX())
        op_list = self.trace_reader.op_list
        log.global_logger.info(str(self.trace_reader))

        self.graph = PersistenceGraph(op_list, self.rules)
        log.global_logger.info(str(self.graph))

        policy = self.env.ATOMICITY_POLICY()
        self.generator = CrashStateGenerator(op_list, self.graph, policy,
                                             max_images=self.env.MAX_IMAGES(),
                                             reorder=self.env.REORDER(), torn=self.env.TORN())
        self.replayer = Replayer(op_list, self.snapshot_index, policy)
        self.reporter = VulnerabilityReporter(op_list, self.graph, self.env.STATIC_ANALYSIS())
        self.num_workers = self.__effective_workers()

    def __effective_workers(self) -> int:
        ''' no more workers than the scratch space can hold snapshot copies for '''
        scratch_root = self.env.SCRATCH_DIR() or tempfile.gettempdir()
        if not my_utils.dirExists(scratch_root):
            my_utils.mkdirDirs(scratch_root, exist_ok=True)
        free_mib = my_utils.getMountPointFreeSpaceSizeMiB(scratch_root)
        if free_mib < MIN_SCRATCH_SPACE_MIB:
            log.global_logger.warning("only %.1f MiB free in %s" % (free_mib, scratch_root))

        per_worker_mib = max(2 * my_utils.getDirSizeMiB(self.snapshot_index.snapshot_dir), 1.0)
        workers = max(1, min(self.env.NUM_WORKERS(), int(free_mib // per_worker_mib)))
        if workers < self.env.NUM_WORKERS():
            log_msg = "lower the number of workers from %d to %d, %.1f MiB free in %s" \
                    % (self.env.NUM_WORKERS(), workers, free_mib, scratch_root)
            log.global_logger.warning(log_msg)
        return workers

    def evaluate_image(self, image : CrashImage) -> EvalResult:
        with ScratchDir(self.env.SCRATCH_DIR(), prefix='img%d-' % (image.image_id)) as scratch:
            crashed_dir = scratch.join('crashed')
            stdout_fpath = scratch.join('crashed' + STDOUT_FILE_SUFFIX)
            try:
                self.replayer.construct_crashed_dir(image, crashed_dir, stdout_fpath)
            except ReplayIOError as e:
                return EvalResult.skipped(image, str(e))

            oracle_result = self.oracle.check(crashed_dir, stdout_fpath)
            if oracle_result.verdict == OracleVerdict.Inconsistent and self.env.FAILED_IMAGES_DIR():
                self.__keep_failed_image(image, crashed_dir, stdout_fpath, oracle_result)
            return EvalResult.evaluated(image, oracle_result)

    def __keep_failed_image(self, image, crashed_dir, stdout_fpath, oracle_result):
        failed_dir = self.env.FAILED_IMAGES_DIR()
        my_utils.mkdirDirs(failed_dir, exist_ok=True)
        dest = os.path.join(failed_dir, 'image-%d' % (image.image_id))
        try:
            shutil.copytree(crashed_dir, dest, symlinks=True)
            if os.path.exists(stdout_fpath):
                shutil.copy(stdout_fpath, dest + STDOUT_FILE_SUFFIX)
            with open(dest + '.output', 'w') as fd:
                fd.write(str(image) + '\n')
                fd.write(str(oracle_result) + '\n')
                fd.write(oracle_result.recovery_output)
                fd.write(oracle_result.checker_output)
        except OSError as e:
            log.global_logger.warning("cannot keep the crashed directory of image %d, %s" % (image.image_id, e))

    def __publish(self, result : EvalResult):
        if self.result_sink is None:
            return
        try:
            self.result_sink.publish_eval(result)
        except ResultStoreOPFailed as e:
            log.global_logger.error("result store failed, stop publishing, %s" % (e))
            self.result_sink = None

    @timeit
    def evaluate_all(self) -> bool:
        ''' return False if the evaluation stopped before every image was evaluated '''
        complete = True
        deadline = self.env.DEADLINE()
        deadline_at = time.monotonic() + deadline if deadline else None
        window = self.num_workers * SUBMIT_WINDOW_PER_WORKER

        pbar = tqdm(desc='crash images', unit='img', disable=not self.env.PROGRESS())
        images = iter(self.generator)
        exhausted = False
        with concurrent.futures.ThreadPoolExecutor(max_workers=self.num_workers) as executor:
            in_flight = set()
            while True:
                while not exhausted and len(in_flight) < window:
                    if deadline_at is not None and time.monotonic() >= deadline_at:
                        log.global_logger.warning("deadline of %s seconds reached, stop submitting crash images" % (deadline))
                        self.notes.append('deadline of %s seconds reached, not every crash image was evaluated' % (deadline))
                        complete = False
                        exhausted = True
                        break
                    image = next(images, None)
                    if image is None:
                        exhausted = True
                        break
                    in_flight.add(executor.submit(self.evaluate_image, image))

                if not in_flight:
                    break

                done, in_flight = concurrent.futures.wait(in_flight, return_when=concurrent.futures.FIRST_COMPLETED)
                for future in done:
                    result = future.result()
                    self.reporter.consume(result)
                    self.__publish(result)
                    pbar.update(1)
        pbar.close()

        if self.generator.limit_reached:
            self.notes.append('crash image limit of %d reached, not every crash image was evaluated' % (self.env.MAX_IMAGES()))
            complete = False
        return complete

    def run(self) -> CheckReport:
        self.prepare()
        complete = self.evaluate_all()
        report = self.reporter.finalize(complete, self.notes)

        if self.result_sink is not None:
            try:
                self.result_sink.publish_report(report)
            except ResultStoreOPFailed as e:
                log.global_logger.error("cannot publish the report, %s" % (e))
        return report
