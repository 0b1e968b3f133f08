import posixpath
from typing import Optional

from DAAS_Gateway.daas_shared import config
from DAAS_Gateway.daas_shared.types import FileTreeNode


def mime_type_for(path: str) -> str:
    ext = posixpath.splitext(path)[1].lower()
    return config.MIME_TYPES.get(ext, config.DEFAULT_MIME_TYPE)


def _new_root() -> FileTreeNode:
    return FileTreeNode(name="/", type="directory", path="/", children={})


def build_file_tree(files: dict[str, bytes]) -> FileTreeNode:
    """Build a nested directory tree; intermediate folders are created on first use."""
    root = _new_root()
    for file_path in sorted(files):
        parts = [p for p in file_path.split("/") if p]
        if not parts:
            continue

        current = root
        for part in parts[:-1]:
            child = current.children.get(part)
            if child is None or child.type != "directory":
                child = FileTreeNode(
                    name=part,
                    type="directory",
                    path=posixpath.join(current.path, part),
                    children={},
                )
                current.children[part] = child
            current = child

        name = parts[-1]
        current.children[name] = FileTreeNode(
            name=name,
            type="file",
            path=posixpath.join(current.path, name),
            size=len(files[file_path]),
            mime_type=mime_type_for(name),
        )
    return root


def count_files(node: FileTreeNode) -> int:
    if node.type == "file":
        return 1
    return sum(count_files(child) for child in (node.children or {}).values())


def detect_project_type(code_files: dict[str, bytes]) -> str:
    """Best effort guess from marker files at the project root. Never raises."""
    root_files = set()
    root_dirs = set()
    for path in code_files:
        head, sep, _ = path.partition("/")
        if sep:
            root_dirs.add(head)
        else:
            root_files.add(head)

    for dirs, files, project_type in config.PROJECT_TYPE_MARKERS:
        if all(d in root_dirs for d in dirs) and all(f in root_files for f in files):
            return project_type
    return config.UNKNOWN_PROJECT_TYPE


def find_node(tree: dict, path: str) -> Optional[dict]:
    """Walk a serialized tree (FileTreeNode.to_dict form) down to `path`."""
    node = tree
    for part in (p for p in path.split("/") if p):
        if node.get("type") != "directory":
            return None
        node = (node.get("children") or {}).get(part)
        if node is None:
            return None
    return node
