"""
Structural operations over a list of root nodes.

All functions take the root ``nodes`` list and mutate it in place where
noted. Lookups are depth-first, pre-order, and the first match wins when a
name appears more than once in the tree.
"""

import re
from typing import Iterable, Iterator, List, Optional, Tuple

from .errors import InvalidPathError, NotFoundError
from .models import EDITABLE_FIELDS, Node

_PATH_SEPARATORS = re.compile(r"[/\\]")

# Fields update() may copy from a partial node, in the order they are applied.
UPDATABLE_FIELDS = ("host", "port", "username", "password", "domain", "description", "protocol")


def split_path(path: str) -> List[str]:
    """Split a folder path on ``/`` and ``\\``, dropping empty segments."""
    return [part for part in _PATH_SEPARATORS.split(path or "") if part]


def find(nodes: List[Node], name: str) -> Node:
    """
    Find the first node called *name*.

    Raises:
        NotFoundError: If no node matches.
    """
    for _, node in walk(nodes):
        if node.name == name:
            return node
    raise NotFoundError(name)


def find_parent(nodes: List[Node], name: str) -> Optional[Node]:
    """
    Return the folder containing the first node called *name*, or None when
    that node sits at the root.

    Raises:
        NotFoundError: If no node matches.
    """
    found, parent = _locate(nodes, name, None)
    if found is None:
        raise NotFoundError(name)
    return parent


def _locate(nodes: List[Node], name: str, parent: Optional[Node]) -> Tuple[Optional[Node], Optional[Node]]:
    for node in nodes:
        if node.name == name:
            return node, parent
        if node.is_folder and node.children:
            found, owner = _locate(node.children, name, node)
            if found is not None:
                return found, owner
    return None, None


def delete(nodes: List[Node], name: str) -> bool:
    """Remove the first node called *name*. Returns whether anything was removed."""
    for index, node in enumerate(nodes):
        if node.name == name:
            del nodes[index]
            return True
        if node.is_folder and node.children and delete(node.children, name):
            return True
    return False


def ensure_folder_path(nodes: List[Node], path: str) -> Node:
    """
    Walk *path* from the root, creating any missing folder, and return the
    deepest folder.

    Raises:
        InvalidPathError: If the path has no segments.
    """
    parts = split_path(path)
    if not parts:
        raise InvalidPathError(f"invalid folder path {path!r}")

    current = nodes
    folder = None
    for part in parts:
        folder = next((n for n in current if n.is_folder and n.name == part), None)
        if folder is None:
            folder = Node.folder(part)
            current.append(folder)
        current = folder.children
    return folder


def add_to_folder_path(nodes: List[Node], path: Optional[str], node: Node) -> None:
    """
    Insert *node* under the folder at *path*, creating folders as needed.
    An empty path inserts at the root.
    """
    if not path:
        nodes.append(node)
        return
    ensure_folder_path(nodes, path).add_child(node)


def walk(nodes: List[Node], prefix: str = "") -> Iterator[Tuple[str, Node]]:
    """Yield ``(folder_path, node)`` for every node, pre-order."""
    for node in nodes:
        yield prefix, node
        if node.is_folder:
            child_prefix = f"{prefix}/{node.name}" if prefix else node.name
            yield from walk(node.children, child_prefix)


def list_leaves(nodes: List[Node]) -> List[Node]:
    """Flatten the tree into its connections, in order."""
    return [node for _, node in walk(nodes) if not node.is_folder]


def update(nodes: List[Node], name: str, partial: Node) -> Node:
    """
    Copy the non-empty fields of *partial* onto the first node called *name*.

    An empty string, a zero port or a missing protocol in *partial* means
    "leave unchanged"; use :func:`clear_fields` to blank a field. Build
    *partial* as ``Node(name="", ...)``, whose protocol is None, not with
    :meth:`Node.connection`, which fills in SSH.

    Raises:
        NotFoundError: If no node matches.
    """
    target = find(nodes, name)
    for key in UPDATABLE_FIELDS:
        value = getattr(partial, key)
        if value:
            setattr(target, key, value)
    return target


def clear_fields(nodes: List[Node], name: str, fields: Iterable[str]) -> Node:
    """
    Reset each of *fields* on the first node called *name* to its empty value.

    Raises:
        NotFoundError: If no node matches.
        ValueError: If a field is not clearable.
    """
    fields = list(fields)
    unknown = [f for f in fields if f not in EDITABLE_FIELDS]
    if unknown:
        raise ValueError(f"cannot clear field(s): {', '.join(unknown)}")

    target = find(nodes, name)
    blank = Node(name=target.name, type=target.type)
    for key in fields:
        setattr(target, key, getattr(blank, key))
    return target


def move(nodes: List[Node], name: str, folder_path: Optional[str]) -> Node:
    """
    Detach the first node called *name* and insert it under *folder_path*
    (the root when empty).

    Raises:
        NotFoundError: If no node matches.
        InvalidPathError: If a folder would be moved into its own subtree.
    """
    node = find(nodes, name)
    if node.is_folder and folder_path:
        # Resolve without creating anything so a refused move leaves no trace
        current = nodes
        for part in split_path(folder_path):
            folder = next((n for n in current if n.is_folder and n.name == part), None)
            if folder is None:
                break
            if folder is node:
                raise InvalidPathError(f"cannot move folder '{name}' into itself")
            current = folder.children

    parent = find_parent(nodes, name)
    siblings = parent.children if parent is not None else nodes
    siblings.remove(node)
    add_to_folder_path(nodes, folder_path, node)
    return node


def validate(nodes: List[Node]) -> None:
    """
    Check the structural invariant.

    Raises:
        ValueError: If a connection has children or a folder lacks a list.
    """
    for _, node in walk(nodes):
        if not isinstance(node.children, list):
            raise ValueError(f"node '{node.name}' has invalid children")
        if not node.is_folder and node.children:
            raise ValueError(f"connection '{node.name}' cannot have children")
