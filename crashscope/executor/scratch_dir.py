import os
import tempfile

from crashscope.utils.logger import global_logger
from crashscope.utils import utils as my_utils

class ScratchDir:
    """
    A scratch directory owned by one candidate evaluation.
    It is removed on every exit path of the with block.
    """
    def __init__(self, root : str = None, prefix : str = 'crashscope-'):
        self.root = root
        self.prefix = prefix
        self.path = None

    def __enter__(self):
        if self.root:
            my_utils.mkdirDirs(self.root, exist_ok=True)
        self.path = tempfile.mkdtemp(prefix=self.prefix, dir=self.root)
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        if self.path and os.path.exists(self.path):
            if not my_utils.removeDir(self.path, force=True):
                global_logger.warning("scratch directory %s is left behind" % (self.path))
        self.path = None
        return False

    def join(self, *names) -> str:
        return os.path.join(self.path, *names)
