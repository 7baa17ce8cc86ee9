import os
import time
import shlex
import subprocess

from crashscope.shell_wrap.shell_cl_state import ShellCLState
from crashscope.utils.logger import global_logger

LOCAL_RUN_TTL = 10

def split_cmd(cmd) -> list:
    if isinstance(cmd, str):
        return shlex.split(cmd)
    return list(cmd)

def shell_cl_local_run(cmd, ttl = LOCAL_RUN_TTL, cwd = None, env = None) -> ShellCLState:
    '''
    Run a command without a shell, wait at most ttl seconds.
    On timeout the command and all its children are killed.
    '''
    cmd = split_cmd(cmd)
    cl_state = ShellCLState(cmd)
    start_msg = "going to run a local command, %s" % (cl_state.cmd_str())
    end_msg = "end of running a local command, %s" % (cl_state.cmd_str())
    global_logger.debug(start_msg)

    run_env = None
    if env:
        run_env = dict(os.environ)
        run_env.update(env)

    start_time = time.perf_counter()
    process = subprocess.Popen(cmd,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.PIPE,
                    cwd=cwd,
                    env=run_env,
                    start_new_session=True)
    cl_state.proc = process

    global_logger.debug("pid: %d" % (process.pid))

    try:
        cl_state.stdout, cl_state.stderr = process.communicate(timeout=ttl)
    except subprocess.TimeoutExpired:
        # kill the process and whatever it started
        cl_state.timed_out = True
        cl_state.kill()
        cl_state.stdout, cl_state.stderr = process.communicate()
        cl_state.elapsed = time.perf_counter() - start_time
        global_logger.warning(cl_state.msg("Timeout: "))
        global_logger.debug(end_msg)
        return cl_state

    cl_state.elapsed = time.perf_counter() - start_time
    cl_state.code = process.returncode
    if cl_state.code != 0:
        global_logger.debug(cl_state.msg())

    global_logger.debug(end_msg)
    return cl_state
