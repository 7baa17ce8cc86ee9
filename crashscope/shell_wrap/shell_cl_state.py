"""Represent the return values from a shell running"""
from crashscope.utils.proc_state import is_process_running, kill_process_tree

class ShellCLState:
    """The command, its exit status and its outputs."""
    def __init__(self, cmd : list):
        self.cmd = cmd

        self.code = None
        self.stdout = b''
        self.stderr = b''
        self.timed_out = False
        self.elapsed = 0.0

        self.proc = None

    def cmd_str(self) -> str:
        return ' '.join(self.cmd)

    def msg(self, prefix="") -> str:
        return prefix + self.cmd_str() + ", " + str(self.code) \
                      + ", " + str(self.stdout) \
                      + ", " + str(self.stderr)

    def killed_by_signal(self) -> bool:
        return self.code is not None and self.code < 0

    def is_running(self) -> bool:
        if self.proc is None:
            return False
        return self.proc.poll() is None and is_process_running(self.proc.pid)

    def kill(self) -> bool:
        # return False if not killed.
        if self.proc is None:
            return True
        kill_process_tree(self.proc.pid)
        self.proc.wait()
        return not self.is_running()
