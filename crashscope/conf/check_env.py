import os

from crashscope.crash_plan.atomicity_policy import AtomicityPolicy
from crashscope.utils.const_var import TRACE_FILE_PREFIX, ORACLE_TTL, DEFAULT_NUM_WORKERS, \
        ORACLE_CONSISTENT_CODES, ORACLE_INCONSISTENT_CODES

class CheckEnv:
    """
    The configuration of one checking run.

    Built once by the command line (or by a caller embedding the checker)
    and read through the upper-case accessors. Assigning an attribute after
    construction raises AttributeError.
    """

    # name -> default value
    DEFAULTS = {
        'traces_dir'          : None,
        'trace_prefix'        : TRACE_FILE_PREFIX,
        'initial_snapshot'    : None,
        'workload_dir'        : None,
        'scratch_dir'         : None,
        'checker'             : None,
        'recovery'            : None,
        'oracle_ttl'          : ORACLE_TTL,
        'pass_stdout_file'    : False,
        'consistent_codes'    : ORACLE_CONSISTENT_CODES,
        'inconsistent_codes'  : ORACLE_INCONSISTENT_CODES,
        'num_workers'         : DEFAULT_NUM_WORKERS,
        'deadline'            : None,
        'max_images'          : None,
        'reorder'             : True,
        'torn'                : True,
        'static_analysis'     : True,
        'atomicity_policy'    : None,
        'report_file'         : None,
        'report_format'       : 'text',
        'failed_images_dir'   : None,
        'progress'            : False,
        'memcached_host'      : None,
        'memcached_port'      : 11211,
        'run_id'              : None,
    }

    def __init__(self, **kwargs):
        unknown = set(kwargs) - set(self.DEFAULTS)
        if unknown:
            raise TypeError("unknown configuration keys: %s" % (sorted(unknown)))
        values = dict(self.DEFAULTS)
        values.update(kwargs)
        if values['atomicity_policy'] is None:
            values['atomicity_policy'] = AtomicityPolicy()
        if values['report_format'] not in ['text', 'json']:
            raise ValueError("unknown report format %s" % (values['report_format']))
        if values['num_workers'] is None or values['num_workers'] < 1:
            raise ValueError("num_workers must be positive")
        overlap = set(values['consistent_codes']) & set(values['inconsistent_codes'])
        if overlap:
            raise ValueError("exit status %s cannot mean both consistent and inconsistent" % (sorted(overlap)))
        object.__setattr__(self, '_values', values)

    def __setattr__(self, name, value):
        raise AttributeError("CheckEnv is immutable after construction")

    def to_dict(self) -> dict:
        rst = dict(self._values)
        rst['atomicity_policy'] = str(rst['atomicity_policy'])
        return rst

    def __str__(self) -> str:
        return ', '.join('%s: %s' % (k, v) for k, v in sorted(self.to_dict().items()))

    def __repr__(self) -> str:
        return self.__str__()

    '''
    Below are the inputs of the run
    '''
    def TRACES_DIR(self) -> str:
        '''the directory holding <prefix>.<source> trace files'''
        return self._values['traces_dir']

    def TRACE_PREFIX(self) -> str:
        return self._values['trace_prefix']

    def INITIAL_SNAPSHOT(self) -> str:
        '''the workload directory as it was before the workload started'''
        return self._values['initial_snapshot']

    def WORKLOAD_DIR(self) -> str:
        '''the path the workload ran in, absolute paths of the trace are relative to it'''
        return self._values['workload_dir']

    def SCRATCH_DIR(self) -> str:
        '''where crashed directories are constructed, None for the system temp dir'''
        return self._values['scratch_dir']

    '''
    Below are the values for the oracle
    '''
    def CHECKER(self):
        '''a command (str or list) or a python callable'''
        return self._values['checker']

    def RECOVERY(self):
        '''a command or a python callable run before the checker, optional'''
        return self._values['recovery']

    def ORACLE_TTL(self) -> float:
        return self._values['oracle_ttl']

    def PASS_STDOUT_FILE(self) -> bool:
        '''give the stdout printed before the crash to the checker as its second argument'''
        return self._values['pass_stdout_file']

    def CONSISTENT_CODES(self) -> tuple:
        return tuple(self._values['consistent_codes'])

    def INCONSISTENT_CODES(self) -> tuple:
        return tuple(self._values['inconsistent_codes'])

    '''
    Below are the values for crash image generation and evaluation
    '''
    def NUM_WORKERS(self) -> int:
        return self._values['num_workers']

    def DEADLINE(self):
        '''seconds the whole evaluation may take, None for no limit'''
        return self._values['deadline']

    def MAX_IMAGES(self):
        return self._values['max_images']

    def REORDER(self) -> bool:
        return self._values['reorder']

    def TORN(self) -> bool:
        return self._values['torn']

    def ATOMICITY_POLICY(self) -> AtomicityPolicy:
        return self._values['atomicity_policy']

    def PROGRESS(self) -> bool:
        return self._values['progress']

    '''
    Below are the values for results
    '''
    def STATIC_ANALYSIS(self) -> bool:
        return self._values['static_analysis']

    def REPORT_FILE(self) -> str:
        return self._values['report_file']

    def REPORT_FORMAT(self) -> str:
        return self._values['report_format']

    def FAILED_IMAGES_DIR(self) -> str:
        '''copy inconsistent crashed directories here, None to not keep them'''
        return self._values['failed_images_dir']

    def MEMCACHED_HOST(self) -> str:
        return self._values['memcached_host']

    def MEMCACHED_PORT(self) -> int:
        return self._values['memcached_port']

    def RUN_ID(self) -> str:
        if self._values['run_id']:
            return self._values['run_id']
        return os.path.basename(os.path.normpath(self.TRACES_DIR() or 'run'))
