import os
import time
import shutil
import random

import crashscope.utils.logger as log
from crashscope.crash_plan.atomicity_policy import AtomicityPolicy, AtomicityUnit
from crashscope.crash_plan.crash_image import CrashImage
from crashscope.trace_proc.snapshot.snapshot_index import SnapshotIndex
from crashscope.trace_proc.trace_reader.logical_op import LogicalOperation
from crashscope.trace_proc.trace_reader.op_type import OpKind
from crashscope.utils.const_var import ROOT_INODE, INODE_STAGING_DIR
from crashscope.utils.exceptions import ReplayIOError

def timeit(func):
    """Decorator that prints the time a function takes to execute."""
    def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        result = func(*args, **kwargs)
        log.time_logger.info(f"elapsed_time.replay.replayer.{func.__name__}:{time.perf_counter() - start_time:.6f}")
        return result
    return wrapper

def garbage_bytes(seed : int, count : int) -> bytes:
    if count <= 0:
        return b''
    rng = random.Random(seed)
    return rng.getrandbits(8 * count).to_bytes(count, 'little')

class _ReplayState:
    """ Where things are while one crashed directory is being constructed. """

    def __init__(self, crashed_dir : str):
        self.crashed_dir = crashed_dir
        self.staging_dir = os.path.join(crashed_dir, INODE_STAGING_DIR)
        # directory inode -> current path, a removed directory lives in the staging dir
        self.dir_map = {ROOT_INODE: crashed_dir}

    def inode_file(self, inode : int, mode : int = None) -> str:
        fpath = os.path.join(self.staging_dir, str(inode))
        if not os.path.lexists(fpath):
            fd = os.open(fpath, os.O_CREAT | os.O_WRONLY, mode if mode is not None else 0o666)
            os.close(fd)
        return fpath

    def inode_dir(self, inode : int, mode : int = None) -> str:
        if inode not in self.dir_map:
            dpath = os.path.join(self.staging_dir, str(inode))
            os.mkdir(dpath, mode if mode is not None else 0o777)
            self.dir_map[inode] = dpath
        return self.dir_map[inode]

    def entry_path(self, parent_inode : int, name : str) -> str:
        return os.path.join(self.inode_dir(parent_inode), name)

    def move_dir(self, inode : int, new_path : str):
        old_path = self.dir_map[inode]
        os.rename(old_path, new_path)
        for dir_inode, dpath in list(self.dir_map.items()):
            if dpath == old_path:
                self.dir_map[dir_inode] = new_path
            elif dpath.startswith(old_path + os.sep):
                self.dir_map[dir_inode] = new_path + dpath[len(old_path):]

class Replayer:
    """
    Construct the workload directory a crash image stands for: a copy of
    the baseline snapshot with the persisted operations applied on top.
    """
    def __init__(self, op_list : list, snapshot_index : SnapshotIndex, policy : AtomicityPolicy = None):
        self.op_list = op_list
        self.snapshot_index = snapshot_index
        self.policy = policy if policy is not None else AtomicityPolicy()

    def units_for(self, image : CrashImage, op : LogicalOperation) -> list:
        ''' the atomicity units of op that persisted in image '''
        if op.seq >= image.cut:
            return []
        if op.seq in image.persisted:
            return self.policy.units_of(op)
        if op.seq in image.partial:
            units = self.policy.units_of(op)
            return [units[i] for i in sorted(image.partial[op.seq])]
        return []

    @timeit
    def construct_crashed_dir(self, image : CrashImage, crashed_dir : str, stdout_fpath : str = None):
        '''
        crashed_dir must not exist, its parent must.
        Raise ReplayIOError if the directory cannot be constructed.
        '''
        try:
            shutil.copytree(self.snapshot_index.snapshot_dir, crashed_dir, symlinks=True)
            state = _ReplayState(crashed_dir)
            self.__init_staging(state)

            stdout_fd = open(stdout_fpath, 'wb') if stdout_fpath else None
            try:
                for op in self.op_list[:image.cut]:
                    if op.kind == OpKind.kStdout:
                        if stdout_fd:
                            stdout_fd.write(op.data or b'')
                        continue
                    for unit in self.units_for(image, op):
                        self.__apply(state, op, unit)
            finally:
                if stdout_fd:
                    stdout_fd.close()

            shutil.rmtree(state.staging_dir)
        except OSError as e:
            err_msg = "cannot construct %s for image %s, %s" % (crashed_dir, str(image), str(e))
            log.global_logger.warning(err_msg)
            raise ReplayIOError(err_msg) from e

        if log.debug:
            log.global_logger.debug("constructed %s for image %s" % (crashed_dir, str(image)))

    def __init_staging(self, state : _ReplayState):
        os.mkdir(state.staging_dir)
        for relpath, entry in self.snapshot_index.entries.items():
            fpath = os.path.join(state.crashed_dir, relpath)
            if entry.is_dir:
                state.dir_map[entry.inode] = fpath
            else:
                staged = os.path.join(state.staging_dir, str(entry.inode))
                if not os.path.lexists(staged):
                    os.link(fpath, staged)

    def __apply(self, state : _ReplayState, op : LogicalOperation, unit : AtomicityUnit):
        kind = op.kind
        if kind == OpKind.kCreate:
            new_path = state.entry_path(op.parent_inode, op.name)
            if os.path.lexists(new_path):
                os.unlink(new_path)
            os.link(state.inode_file(op.inode, op.mode), new_path)
        elif kind == OpKind.kMkdir:
            state.inode_dir(op.inode, op.mode)
            state.move_dir(op.inode, state.entry_path(op.parent_inode, op.name))
        elif kind == OpKind.kLink:
            new_path = state.entry_path(op.dest_parent_inode, op.dest_name)
            if os.path.lexists(new_path):
                os.unlink(new_path)
            os.link(state.inode_file(op.inode), new_path)
        elif kind == OpKind.kUnlink:
            path = state.entry_path(op.parent_inode, op.name)
            if os.path.lexists(path):
                os.unlink(path)
        elif kind == OpKind.kRmdir:
            path = state.entry_path(op.parent_inode, op.name)
            if os.path.lexists(path):
                # a removed directory goes back to the staging dir
                state.move_dir(op.inode, os.path.join(state.staging_dir, str(op.inode)))
        elif kind == OpKind.kRename:
            self.__apply_rename(state, op, unit)
        elif kind in [OpKind.kAppend, OpKind.kOverwrite]:
            self.__apply_write(state, op, unit)
        elif kind == OpKind.kTruncate:
            os.truncate(state.inode_file(op.inode), op.final_size)
        # barriers change nothing in the image

    def __apply_rename(self, state : _ReplayState, op : LogicalOperation, unit : AtomicityUnit):
        src = state.entry_path(op.parent_inode, op.name)
        dest = state.entry_path(op.dest_parent_inode, op.dest_name)
        if unit.kind == AtomicityUnit.WHOLE:
            if op.is_dir:
                state.move_dir(op.inode, dest)
            else:
                os.rename(src, dest)
        elif unit.kind == AtomicityUnit.UNLINK_DEST:
            if os.path.lexists(dest):
                os.unlink(dest)
        elif unit.kind == AtomicityUnit.UNLINK_SRC:
            if os.path.lexists(src):
                os.unlink(src)
        elif unit.kind == AtomicityUnit.LINK_DEST:
            if os.path.lexists(dest):
                os.unlink(dest)
            os.link(state.inode_file(op.inode), dest)

    def __apply_write(self, state : _ReplayState, op : LogicalOperation, unit : AtomicityUnit):
        if unit.kind == AtomicityUnit.WHOLE:
            offset, count = op.offset, op.count
        else:
            offset, count = unit.offset, unit.count

        fd = os.open(state.inode_file(op.inode), os.O_WRONLY)
        try:
            if unit.kind == AtomicityUnit.EXTEND:
                size = os.fstat(fd).st_size
                end = offset + count
                if size >= end:
                    return
                if self.policy.extend_fill == 'zeros':
                    os.ftruncate(fd, end)
                else:
                    start = max(size, offset)
                    if start > size:
                        os.ftruncate(fd, start)
                    os.pwrite(fd, garbage_bytes(op.seq * 1000003 + unit.index, end - start), start)
            else:
                if op.data is None:
                    payload = b'\0' * count
                else:
                    payload = op.data[offset - op.offset:offset - op.offset + count]
                os.pwrite(fd, payload, offset)
        finally:
            os.close(fd)
