import os

from crashscope.trace_proc.snapshot.snapshot_index import SnapshotIndex
from crashscope.utils.const_var import ROOT_INODE

class InodeState:
    def __init__(self, inode : int, is_dir : bool, size : int = 0, nlink : int = 1):
        self.inode = inode
        self.is_dir = is_dir
        self.size = size
        self.nlink = nlink

    def __str__(self) -> str:
        return 'inode: %d, dir: %s, size: %d, nlink: %d' % (self.inode, self.is_dir, self.size, self.nlink)

    def __repr__(self) -> str:
        return self.__str__()

def normalize_relpath(path : str) -> str:
    ''' a normalized path relative to the workload directory, '' is the root '''
    path = os.path.normpath(path)
    if path == '.':
        return ''
    return path

def split_path(path : str) -> tuple:
    parent, name = os.path.split(path)
    return parent, name

class NamespaceTracker:
    """
    The directory tree of the workload directory as the workload sees it
    while the trace is being normalized.
    """

    def __init__(self, snapshot_index : SnapshotIndex = None):
        self.path_inode = {'': ROOT_INODE}
        self.inodes = {ROOT_INODE: InodeState(ROOT_INODE, True)}
        self.next_inode = ROOT_INODE + 1

        if snapshot_index:
            for relpath, entry in snapshot_index.entries.items():
                self.path_inode[relpath] = entry.inode
                if entry.inode in self.inodes:
                    self.inodes[entry.inode].nlink += 1
                else:
                    self.inodes[entry.inode] = InodeState(entry.inode, entry.is_dir, entry.size)
            self.next_inode = snapshot_index.max_inode + 1

    def lookup(self, path : str):
        return self.path_inode.get(path)

    def state(self, inode : int) -> InodeState:
        return self.inodes.get(inode)

    def alloc(self, is_dir : bool) -> InodeState:
        inode_state = InodeState(self.next_inode, is_dir, 0, 0)
        self.inodes[inode_state.inode] = inode_state
        self.next_inode += 1
        return inode_state

    def add_entry(self, path : str, inode : int):
        self.path_inode[path] = inode
        self.inodes[inode].nlink += 1

    def remove_entry(self, path : str) -> int:
        ''' return the number of links left '''
        inode = self.path_inode.pop(path)
        inode_state = self.inodes[inode]
        inode_state.nlink -= 1
        return inode_state.nlink

    def children(self, path : str) -> list:
        prefix = path + os.sep if path else ''
        return [p for p in self.path_inode if p and p.startswith(prefix) and p != path]

    def move(self, src : str, dest : str):
        ''' move an entry, every path under a moved directory moves along '''
        inode = self.path_inode.pop(src)
        moved = dict()
        if self.inodes[inode].is_dir:
            for child in self.children(src):
                moved[dest + child[len(src):]] = self.path_inode.pop(child)
        self.path_inode[dest] = inode
        self.path_inode.update(moved)

    def paths_of(self, inode : int) -> list:
        return sorted(p for p, i in self.path_inode.items() if i == inode)
