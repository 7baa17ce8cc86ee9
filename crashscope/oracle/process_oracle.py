from crashscope.oracle.oracle_base import OracleBase, StepOutcome
from crashscope.shell_wrap.shell_local_run import shell_cl_local_run, split_cmd
from crashscope.utils.const_var import ORACLE_TTL, ORACLE_CONSISTENT_CODES, ORACLE_INCONSISTENT_CODES
from crashscope.utils.exceptions import OracleError, OracleTimeout

def decode_output(cl_state) -> str:
    out = cl_state.stdout.decode('utf-8', errors='replace')
    err = cl_state.stderr.decode('utf-8', errors='replace')
    if err:
        return out + '\n[stderr]\n' + err
    return out

class ProcessOracle(OracleBase):
    """
    An oracle implemented by external commands. The crashed directory is
    appended to the command line, followed by the stdout file if
    pass_stdout_file is set.

    Exit statuses in consistent_codes mean consistent, those in
    inconsistent_codes mean inconsistent, anything else (including being
    killed by a signal) is an OracleError. The recovery command only needs
    to exit with 0, a non-zero exit makes the directory inconsistent.
    """
    def __init__(self, checker_cmd, recovery_cmd = None, ttl : float = ORACLE_TTL,
                 pass_stdout_file : bool = False,
                 consistent_codes = ORACLE_CONSISTENT_CODES,
                 inconsistent_codes = ORACLE_INCONSISTENT_CODES):
        super().__init__(ttl, pass_stdout_file)
        self.checker_cmd = split_cmd(checker_cmd)
        self.recovery_cmd = split_cmd(recovery_cmd) if recovery_cmd else None
        self.consistent_codes = tuple(consistent_codes)
        self.inconsistent_codes = tuple(inconsistent_codes)
        if set(self.consistent_codes) & set(self.inconsistent_codes):
            raise ValueError("an exit status cannot mean both consistent and inconsistent")

    def has_recovery(self) -> bool:
        return self.recovery_cmd is not None

    def __build_cmd(self, base_cmd : list, crashed_dir : str, stdout_fpath : str) -> list:
        cmd = base_cmd + [crashed_dir]
        if self.pass_stdout_file:
            cmd.append(stdout_fpath if stdout_fpath else '')
        return cmd

    def __run(self, base_cmd : list, crashed_dir : str, stdout_fpath : str):
        cmd = self.__build_cmd(base_cmd, crashed_dir, stdout_fpath)
        try:
            cl_state = shell_cl_local_run(cmd, ttl=self.ttl)
        except OSError as e:
            raise OracleError("cannot run %s, %s" % (' '.join(cmd), e)) from e
        if cl_state.timed_out:
            raise OracleTimeout("%s did not exit in %s seconds" % (cl_state.cmd_str(), self.ttl))
        if cl_state.killed_by_signal():
            raise OracleError("%s was killed by signal %d, %s" \
                    % (cl_state.cmd_str(), -cl_state.code, decode_output(cl_state)[-512:]))
        return cl_state

    def _run_recovery(self, crashed_dir : str, stdout_fpath : str) -> StepOutcome:
        cl_state = self.__run(self.recovery_cmd, crashed_dir, stdout_fpath)
        output = decode_output(cl_state)
        if cl_state.code == 0:
            return StepOutcome(True, output)
        return StepOutcome(False, output, 'exit status %d' % (cl_state.code))

    def _run_checker(self, crashed_dir : str, stdout_fpath : str) -> StepOutcome:
        cl_state = self.__run(self.checker_cmd, crashed_dir, stdout_fpath)
        output = decode_output(cl_state)
        if cl_state.code in self.consistent_codes:
            return StepOutcome(True, output)
        if cl_state.code in self.inconsistent_codes:
            return StepOutcome(False, output, 'exit status %d' % (cl_state.code))
        raise OracleError("%s exited with unexpected status %d, %s" \
                % (cl_state.cmd_str(), cl_state.code, output[-512:]))
