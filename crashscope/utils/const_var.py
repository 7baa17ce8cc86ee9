# The inode number given to the workload directory itself
ROOT_INODE = 1

# Name of the per-image directory holding files by inode during replay
INODE_STAGING_DIR = '.crashscope_inodes'

# Suffix of the file receiving the stdout printed before the crash point
STDOUT_FILE_SUFFIX = '.stdout'

# Default trace file prefix, traces are <prefix>.<source>
TRACE_FILE_PREFIX = 'trace'
BYTE_DUMP_INFIX = 'byte_dump'

# TTL for one oracle call (recovery or checker), in seconds
ORACLE_TTL = 60

# Exit statuses of an external checker
ORACLE_CONSISTENT_CODES = (0,)
# 101 is the status of a panicking checker
ORACLE_INCONSISTENT_CODES = (1, 101)

# Default number of pieces a non-atomic write is split into
DEFAULT_WRITE_SPLITS = 3

# Upper bound of torn variants generated for one operation
MAX_TORN_VARIANTS_PER_OP = 16

# Default number of concurrent candidate evaluations
DEFAULT_NUM_WORKERS = 4

# Candidates submitted ahead of completion per worker
SUBMIT_WINDOW_PER_WORKER = 2

# min free space in the scratch device, in MiB
MIN_SCRATCH_SPACE_MIB = 64
