import os
import stat

from crashscope.utils.logger import global_logger
from crashscope.utils.const_var import ROOT_INODE, INODE_STAGING_DIR
from crashscope.utils.exceptions import BadSnapshot

class SnapshotEntry:
    def __init__(self, relpath : str, inode : int, is_dir : bool, size : int):
        self.relpath = relpath
        self.inode = inode
        self.is_dir = is_dir
        self.size = size

    def __str__(self) -> str:
        return '%s, inode: %d, dir: %s, size: %d' % (self.relpath, self.inode, self.is_dir, self.size)

    def __repr__(self) -> str:
        return self.__str__()

class SnapshotIndex:
    """
    Logical inode numbers of the files in the baseline snapshot.

    The numbering is a sorted walk of the snapshot, so the trace reader and
    every replay see the same numbers. Hard links share one number.
    """

    def __init__(self, snapshot_dir : str):
        if snapshot_dir is None or not os.path.isdir(snapshot_dir):
            raise BadSnapshot("baseline snapshot %s is not a directory" % (snapshot_dir))

        self.snapshot_dir = os.path.abspath(snapshot_dir)
        # relative path -> SnapshotEntry, the root is not included
        self.entries = dict()
        self.max_inode = ROOT_INODE

        self.__build()

    def __build(self):
        ino_map = dict()
        for root, dirs, files in os.walk(self.snapshot_dir, onerror=self.__walk_error):
            dirs.sort()
            rel_root = os.path.relpath(root, self.snapshot_dir)
            if rel_root == '.':
                rel_root = ''
                if INODE_STAGING_DIR in dirs:
                    dirs.remove(INODE_STAGING_DIR)

            names = sorted(dirs + files)
            for name in names:
                fpath = os.path.join(root, name)
                relpath = os.path.join(rel_root, name) if rel_root else name
                try:
                    st = os.lstat(fpath)
                except OSError as e:
                    raise BadSnapshot("cannot stat %s, %s" % (fpath, e))
                if stat.S_ISLNK(st.st_mode):
                    global_logger.warning("symbolic link %s in the baseline snapshot is ignored" % (relpath))
                    continue

                is_dir = stat.S_ISDIR(st.st_mode)
                if not is_dir and st.st_ino in ino_map:
                    inode = ino_map[st.st_ino]
                else:
                    self.max_inode += 1
                    inode = self.max_inode
                    ino_map[st.st_ino] = inode

                size = 0 if is_dir else st.st_size
                self.entries[relpath] = SnapshotEntry(relpath, inode, is_dir, size)

            # symbolic links to directories are listed in dirs, do not descend
            dirs[:] = [d for d in dirs if not os.path.islink(os.path.join(root, d))]

    def __walk_error(self, err : OSError):
        raise BadSnapshot("cannot list %s, %s" % (err.filename, err))

    def size_of_inode(self) -> dict:
        rst = dict()
        for entry in self.entries.values():
            if not entry.is_dir:
                rst[entry.inode] = entry.size
        return rst

    def __str__(self) -> str:
        return 'snapshot: %s, %d entries' % (self.snapshot_dir, len(self.entries))

    def __repr__(self) -> str:
        return self.__str__()
