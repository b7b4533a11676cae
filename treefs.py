import argparse
import cmd
import json
import logging
import sys
from abc import ABC
from enum import Enum
from typing import Any, NamedTuple, Optional, Tuple, Union

BLOCK_SIZE = 8
SEPARATOR = "/"
NAME_DOT = "."
NAME_DOT_DOT = ".."
NAME_WIDTH = 16

logger = logging.getLogger("treefs")

def log_info(x):
    logger.info(x)

def log_fail(x):
    logger.error(x)

# errors
class FSError(Exception):
    reason = "Error"

    def __init__(self, path: str, op: str = "", reason: Optional[str] = None) -> None:
        super().__init__(path)
        self.path = path
        self.op = op
        if reason is not None:
            self.reason = reason

    def __str__(self) -> str:
        return ": ".join(part for part in (self.op, self.path, self.reason) if part)

class NotFound(FSError):
    reason = "No such file or directory"

class NotADirectory(FSError):
    reason = "Not a directory"

class AlreadyExists(FSError):
    reason = "File exists"

class CannotReadDirectory(FSError):
    reason = "Cannot read a directory"

class CannotWriteDirectory(FSError):
    reason = "Cannot write a directory"

class CannotTruncateDirectory(FSError):
    reason = "Cannot truncate a directory"

class CannotLinkDirectory(FSError):
    reason = "Cannot link a directory"

class InvalidArgument(FSError):
    reason = "Invalid argument"

class InternalInconsistency(FSError):
    reason = "Internal error"

# nodes
class NodeKind(Enum):
    DIRECTORY = "directory"
    FILE = "file"

class Block:
    """Fixed-capacity chunk; only data[:end] is file content."""

    def __init__(self, capacity: int) -> None:
        self.data: bytearray = bytearray(capacity)
        self.end = 0

    @property
    def spare(self) -> int:
        return len(self.data) - self.end

    def fill(self, data: bytes, offset: int) -> int:
        n = min(self.spare, len(data) - offset)
        self.data[self.end:self.end + n] = data[offset:offset + n]
        self.end += n
        return n

    def valid(self) -> bytes:
        return bytes(self.data[:self.end])

class Node(ABC):
    kind: NodeKind

    def __init__(self, parent: Optional["DirNode"]) -> None:
        # only the root is created without a parent, and it becomes its own
        self.parent: DirNode = parent if parent is not None else self
        self.nlink = 0

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {id(self):#x} nlink={self.nlink}>"

class DirNode(Node):
    kind = NodeKind.DIRECTORY

    def __init__(self, parent: Optional["DirNode"]) -> None:
        super().__init__(parent)
        self.children: dict[str, Node] = dict()

class FileNode(Node):
    kind = NodeKind.FILE

    def __init__(self, parent: DirNode) -> None:
        super().__init__(parent)
        self.blocks: list[Block] = list()

    @property
    def size(self) -> int:
        return sum(block.end for block in self.blocks)

    @property
    def nblock(self) -> int:
        return len(self.blocks)

def new_dir(parent: Optional[DirNode]) -> DirNode:
    return DirNode(parent)

def new_file(parent: DirNode) -> FileNode:
    return FileNode(parent)

def reverse_lookup(d: DirNode, desc: Node) -> Optional[str]:
    for name, dest in d.children.items():
        if dest is desc:
            return name
    return None

def project(desc: Node) -> dict[str, Any]:
    """Read-only view of a subtree, safe to dump as JSON.

    Only children are followed, never parent, so the root cycle is not walked.
    A file reached through several aliases shows up once per entry.
    """
    if isinstance(desc, DirNode):
        return {
            "type": desc.kind.value,
            "children": {name: project(child) for name, child in desc.children.items()},
        }
    assert isinstance(desc, FileNode)
    return {"type": desc.kind.value, "size": desc.size}

# working with blocks
class BlockStore:
    def __init__(self, block_size: int = BLOCK_SIZE) -> None:
        if block_size <= 0:
            raise ValueError(f"block size must be positive, got {block_size}")
        self.block_size = block_size

    def get_block_characters(self, d: FileNode) -> int:
        """Room left in the last block of d."""
        if not d.blocks:
            return 0
        return d.blocks[-1].spare

    def write(self, d: FileNode, data: bytes) -> int:
        offset = 0
        if self.get_block_characters(d):
            offset += d.blocks[-1].fill(data, offset)
        while offset < len(data):
            block = Block(self.block_size)
            offset += block.fill(data, offset)
            d.blocks.append(block)
        return offset

    def read(self, d: FileNode) -> bytes:
        return b"".join(block.valid() for block in d.blocks)

    def free_blocks(self, d: FileNode, size: int = 0) -> None:
        """Keep the first size bytes of d and drop the rest."""
        if size == 0:
            d.blocks = list()
            return
        kept: list[Block] = list()
        for block in d.blocks:
            if size == 0:
                break
            block.end = min(block.end, size)
            size -= block.end
            kept.append(block)
        d.blocks = kept

    def truncate(self, d: FileNode, size: int = 0) -> None:
        current = d.size
        if size < current:
            self.free_blocks(d, size)
        elif size > current:
            self.write(d, bytes(size - current))

class Stat(NamedTuple):
    kind: NodeKind
    nlink: int
    size: int
    nblock: int

def split_path(path: str) -> list[str]:
    return [comp for comp in path.split(SEPARATOR) if comp]

def entry_name(path: str) -> Optional[str]:
    """Final component of path if it names a directory entry."""
    comps = split_path(path)
    if not comps or comps[-1] in (NAME_DOT, NAME_DOT_DOT):
        return None
    return comps[-1]

class FS:
    def __init__(self, block_size: int = BLOCK_SIZE) -> None:
        self.store: BlockStore = BlockStore(block_size)
        self.rootdir: DirNode = new_dir(None)
        self.rootdir.nlink = 1
        self.cwd: DirNode = self.rootdir

    def start(self, path: str) -> DirNode:
        return self.rootdir if path.startswith(SEPARATOR) else self.cwd

    def walk(self, path: str, op: str, comps: list[str]) -> Tuple[Node, str]:
        desc: Node = self.start(path)
        name = SEPARATOR
        for comp in comps:
            if comp == NAME_DOT:
                continue
            if comp == NAME_DOT_DOT:
                desc = desc.parent
                continue
            if not isinstance(desc, DirNode):
                raise NotADirectory(path, op)
            if comp not in desc.children:
                raise NotFound(path, op)
            desc = desc.children[comp]
            name = comp
        return desc, name

    def lookup(self, path: str, op: str) -> Tuple[Node, str]:
        return self.walk(path, op, split_path(path))

    def lookup_parent(self, path: str, op: str) -> Tuple[DirNode, str]:
        """Resolve the directory holding the final component of path."""
        comps = split_path(path)
        pardir, _ = self.walk(path, op, comps[:-1])
        if not isinstance(pardir, DirNode):
            raise NotADirectory(path, op)
        return pardir, comps[-1]

    def attach(self, d: DirNode, name: str, desc: Node) -> Node:
        d.children[name] = desc
        desc.nlink += 1
        return desc

    def detach(self, d: DirNode, name: str) -> None:
        desc = d.children.pop(name)
        desc.nlink -= 1
        if desc.nlink:
            return
        if isinstance(desc, FileNode):
            self.store.free_blocks(desc, 0)
        else:
            # an unreachable directory drops its own entries too
            for child_name in list(desc.children):
                self.detach(desc, child_name)

    def lookup_file(self, path: str, op: str, error: type) -> FileNode:
        desc, _ = self.lookup(path, op)
        if not isinstance(desc, FileNode):
            raise error(path, op)
        return desc

    def ls(self, path: str = "") -> dict[str, NodeKind]:
        log_info(f"List for '{path}'")
        desc, name = self.lookup(path, "ls")
        if isinstance(desc, DirNode):
            return {child_name: child.kind for child_name, child in desc.children.items()}
        return {name: desc.kind}

    def touch(self, path: str) -> None:
        log_info(f"Create regular file '{path}'")
        if entry_name(path) is None:
            self.lookup(path, "touch")
            return
        pardir, name = self.lookup_parent(path, "touch")
        if name not in pardir.children:
            self.attach(pardir, name, new_file(pardir))

    def mkdir(self, path: str) -> None:
        log_info(f"Create directory '{path}'")
        name = entry_name(path)
        if name is None:
            self.lookup(path, "mkdir")
            raise AlreadyExists(path, "mkdir")
        desc: Node = self.start(path)
        for comp in split_path(path)[:-1]:
            if comp == NAME_DOT:
                continue
            if comp == NAME_DOT_DOT:
                desc = desc.parent
                continue
            if not isinstance(desc, DirNode):
                raise NotADirectory(path, "mkdir")
            child = desc.children.get(comp)
            if child is None:
                child = self.attach(desc, comp, new_dir(desc))
            desc = child
        if not isinstance(desc, DirNode):
            raise NotADirectory(path, "mkdir")
        if name in desc.children:
            raise AlreadyExists(path, "mkdir")
        self.attach(desc, name, new_dir(desc))

    def link(self, src: str, dst: str) -> None:
        log_info(f"Create link '{dst}' to '{src}'")
        dest, _ = self.lookup(src, "ln")
        if isinstance(dest, DirNode):
            raise CannotLinkDirectory(src, "ln")
        if entry_name(dst) is None:
            self.lookup(dst, "ln")
            raise AlreadyExists(dst, "ln")
        pardir, name = self.lookup_parent(dst, "ln")
        if name in pardir.children:
            raise AlreadyExists(dst, "ln")
        self.attach(pardir, name, dest)

    def remove(self, path: str) -> None:
        log_info(f"Unlink '{path}'")
        self.lookup(path, "rm")
        if entry_name(path) is None:
            raise InvalidArgument(path, "rm")
        pardir, name = self.lookup_parent(path, "rm")
        self.detach(pardir, name)

    def cd(self, path: str) -> None:
        log_info(f"Change directory to '{path}'")
        desc, _ = self.lookup(path, "cd")
        if not isinstance(desc, DirNode):
            raise NotADirectory(path, "cd")
        self.cwd = desc

    def pwd(self) -> str:
        log_info("Get CWD canonical absolute path")
        names: list[str] = list()
        desc: Node = self.cwd
        while desc.parent is not desc:
            name = reverse_lookup(desc.parent, desc)
            if name is None:
                raise InternalInconsistency(
                    "", "pwd", "Internal error: could not find name for node in parent")
            names.append(name)
            desc = desc.parent
        return SEPARATOR + SEPARATOR.join(reversed(names))

    def write(self, path: str, data: Union[bytes, str]) -> int:
        if isinstance(data, str):
            data = data.encode()
        log_info(f"Write {len(data)} bytes to '{path}'")
        desc = self.lookup_file(path, "write", CannotWriteDirectory)
        return self.store.write(desc, data)

    def read(self, path: str) -> bytes:
        log_info(f"Read '{path}'")
        desc = self.lookup_file(path, "read", CannotReadDirectory)
        return self.store.read(desc)

    def truncate(self, path: str, size: int = 0) -> None:
        log_info(f"Truncate file '{path}' size to {size}")
        desc = self.lookup_file(path, "truncate", CannotTruncateDirectory)
        if size < 0:
            raise InvalidArgument(path, "truncate")
        self.store.truncate(desc, size)

    def stat(self, path: str) -> Stat:
        log_info(f"File stat for '{path}'")
        desc, _ = self.lookup(path, "stat")
        if isinstance(desc, FileNode):
            return Stat(desc.kind, desc.nlink, desc.size, desc.nblock)
        return Stat(desc.kind, desc.nlink, 0, 0)

    def tree(self, path: str = "") -> dict[str, Any]:
        desc, _ = self.lookup(path, "debug")
        return project(desc)


class Shell(cmd.Cmd):
    intro = 'Welcome!  Type help or ? to list commands.\n'
    prompt = '> '

    def __init__(self, fs: Optional[FS] = None, **kwargs) -> None:
        super().__init__(**kwargs)
        self.fs: FS = fs if fs is not None else FS()

    def onecmd(self, line):
        try:
            return super().onecmd(line)
        except FSError as e:
            log_fail(e)
            return False

    def emptyline(self):
        return False

    def default(self, line):
        log_fail(f"unknown command: {parse(line)[0]}")

    def do_ls(self, arg):
        'List a directory, or a single file: LS [path]'
        args = parse(arg)
        entries = self.fs.ls(args[0] if args else "")
        for name, kind in entries.items():
            print(name + SEPARATOR if kind is NodeKind.DIRECTORY else name)

    def do_ln(self, arg):
        'Create hard link: LN src dst'
        args = parse(arg)
        if len(args) < 1:
            return log_fail('ln: Missing arguments <src> <dst>')
        if len(args) < 2:
            return log_fail('ln: Missing argument <dst>')
        self.fs.link(args[0], args[1])

    do_link = do_ln

    def do_mkdir(self, arg):
        'Create directory, with any missing parents: MKDIR path'
        args = parse(arg)
        if not args:
            return log_fail('mkdir: Missing argument <path>')
        self.fs.mkdir(args[0])

    def do_touch(self, arg):
        'Create empty file if it does not exist: TOUCH path'
        args = parse(arg)
        if not args:
            return log_fail('touch: Missing argument <path>')
        self.fs.touch(args[0])

    def do_rm(self, arg):
        'Remove directory entry: RM path'
        args = parse(arg)
        if not args:
            return log_fail('rm: Missing argument <path>')
        self.fs.remove(args[0])

    def do_cd(self, arg):
        'Change working directory: CD [path]'
        args = parse(arg)
        self.fs.cd(args[0] if args else SEPARATOR)

    def do_pwd(self, arg):
        'Print working directory'
        print(self.fs.pwd())

    def do_write(self, arg):
        'Append data to file: WRITE path data...'
        args = parse(arg)
        if len(args) < 1:
            return log_fail('write: Missing arguments <path> <data>')
        if len(args) < 2:
            return log_fail('write: Missing argument <data>')
        self.fs.write(args[0], " ".join(args[1:]).encode())

    def do_read(self, arg):
        'Print file contents: READ path'
        args = parse(arg)
        if not args:
            return log_fail('read: Missing argument <path>')
        print(self.fs.read(args[0]).decode(errors="replace"))

    def do_truncate(self, arg):
        'Change file size, empty by default: TRUNCATE path [size]'
        args = parse(arg)
        if not args:
            return log_fail('truncate: Missing argument <path>')
        size = 0
        if len(args) > 1:
            try:
                size = int(args[1])
            except ValueError:
                return log_fail(f"truncate: {args[1]}: Invalid size")
        self.fs.truncate(args[0], size)

    def do_stat(self, arg):
        'Provide information on file: STAT path'
        args = parse(arg)
        if not args:
            return log_fail('stat: Missing argument <path>')
        st = self.fs.stat(args[0])
        print(f"{args[0]: <{NAME_WIDTH}} type={st.kind.value} nlink={st.nlink} size={st.size} nblock={st.nblock}")

    def do_debug(self, arg):
        'Dump the working directory tree as JSON'
        args = parse(arg)
        print(json.dumps(self.fs.tree(args[0] if args else ""), indent=2))

    def do_exit(self, arg):
        'Leave the shell'
        print('Bye!')
        return True

    do_bye = do_exit
    do_EOF = do_exit

def parse(arg):
    'Split an argument line into a tuple of words'
    return tuple(arg.split())

def positive_int(value: str) -> int:
    n = int(value)
    if n <= 0:
        raise argparse.ArgumentTypeError(f"must be positive, got {value}")
    return n

def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="treefs", description="Interactive in-memory filesystem")
    parser.add_argument("-v", "--verbose", action="store_true", help="log every operation")
    parser.add_argument("--block-size", type=positive_int, default=BLOCK_SIZE,
                        help=f"file block capacity in bytes (default {BLOCK_SIZE})")
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING,
                        format="%(levelname)s: %(message)s")
    Shell(FS(args.block_size)).cmdloop()
    return 0

if __name__ == '__main__':
    sys.exit(main())
