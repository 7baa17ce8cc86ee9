import psutil

from crashscope.utils.logger import global_logger

def is_process_running(pid) -> bool:
    try:
        process = psutil.Process(pid)
        return process.is_running() and process.status() != psutil.STATUS_ZOMBIE
    except psutil.NoSuchProcess:
        return False

def kill_process_tree(pid, ttw=5) -> bool:
    '''
    Kill a process and all of its descendants.
    Return False if some of them are still alive after ttw seconds.
    '''
    log_msg = "going to kill process tree of %d" % (pid)
    global_logger.debug(log_msg)

    try:
        parent = psutil.Process(pid)
    except psutil.NoSuchProcess:
        global_logger.debug("process %d has already exited" % (pid))
        return True

    try:
        procs = parent.children(recursive=True)
    except psutil.NoSuchProcess:
        procs = []
    procs.append(parent)

    for process in procs:
        try:
            process.kill()
        except psutil.NoSuchProcess:
            pass

    gone, alive = psutil.wait_procs(procs, timeout=ttw)
    if alive:
        global_logger.warning("timeout to kill processes, %s" % (str(alive)))
        return False
    return True
