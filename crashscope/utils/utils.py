import os
import shutil
import argparse
import psutil

from crashscope.utils.logger import global_logger

def alignToCeil(x : int, align : int) -> int:
    ''' if aleady aligned, return the next aligned address '''
    return (1 + (x // align)) * align

def str2bool(v) -> bool:
    if isinstance(v, bool):
        return v
    if v.lower() in ('yes', 'true', 't', 'y', '1', 'on'):
        return True
    elif v.lower() in ('no', 'false', 'f', 'n', '0', 'off'):
        return False
    else:
        raise argparse.ArgumentTypeError('Boolean value expected, got %s.' % (v))

def getMountPointFreeSpaceSizeMiB(path) -> float:
    available_space = psutil.disk_usage(path).free
    return available_space / 1024 / 1024

def getDirSizeMiB(dirname) -> float:
    total = 0
    for root, dirs, files in os.walk(dirname):
        for fname in files:
            fpath = os.path.join(root, fname)
            if not os.path.islink(fpath):
                total += os.path.getsize(fpath)
    return total / 1024 / 1024

def dirExists(dirname):
    return os.path.isdir(dirname)

def removeDir(dirname, force=False):
    if not force:
        try:
            os.rmdir(dirname)
        except OSError as e:
            err_msg = "error: os.rmdir(%s) failed: %s" % (dirname, e.strerror)
            global_logger.error(err_msg)
            return False
    else:
        try:
            shutil.rmtree(dirname)
        except OSError as e:
            err_msg = "error: shutil.rmtree(%s) failed: %s" % (dirname, e.strerror)
            global_logger.error(err_msg)
            return False
    return True

def mkdirDirs(dirname, mode=0o777, exist_ok=False):
    try:
        os.makedirs(dirname, mode=mode, exist_ok=exist_ok)
    except OSError as e:
        err_msg = "error: os.makedirs(%s) failed: %s" % (dirname, e.strerror)
        global_logger.error(err_msg)
        return False
    return True

def shortBytesRepr(buf, limit=16):
    if buf is None:
        return 'None'
    if len(buf) <= limit:
        return repr(bytes(buf))
    return repr(bytes(buf[:limit])) + '...(%d bytes)' % (len(buf))
