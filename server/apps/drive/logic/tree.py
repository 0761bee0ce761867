"""Read-side projections of an owner's folder hierarchy.

Nothing here touches the database: the functions work on folder rows
that were loaded in one query, so building a tree or an ancestor path
costs O(F) for F folders instead of one query per node.
"""

import logging
from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, final

from server.apps.drive.exceptions import HierarchyIntegrityError, NotFoundError
from server.apps.drive.models import File, Folder

logger = logging.getLogger(__name__)


@final
@dataclass(frozen=True, slots=True)
class TreeNode:
    """Folder plus its recursively assembled subfolders."""

    folder: Folder
    children: list['TreeNode'] = field(default_factory=list)

    def count(self) -> int:
        """Number of nodes in this subtree, including this one."""
        total = 0
        stack = [self]
        while stack:
            node = stack.pop()
            total += 1
            stack.extend(node.children)
        return total

    def as_dict(self) -> dict[str, Any]:
        """Nested plain representation of the subtree."""
        root = {**self.folder.as_dict(), 'subfolders': []}
        stack = [(self, root)]
        while stack:
            node, rendered = stack.pop()
            for child in node.children:
                child_rendered = {**child.folder.as_dict(), 'subfolders': []}
                rendered['subfolders'].append(child_rendered)
                stack.append((child, child_rendered))
        return root


@final
@dataclass(frozen=True, slots=True)
class PathSegment:
    """One step of a breadcrumb path."""

    id: int
    name: str

    def as_dict(self) -> dict[str, Any]:
        """Plain representation."""
        return {'id': self.id, 'name': self.name}


@final
@dataclass(frozen=True, slots=True)
class FolderView:
    """Folder with its parent and its direct children."""

    folder: Folder
    parent: Folder | None
    subfolders: list[Folder]
    files: list[File]

    def as_dict(self) -> dict[str, Any]:
        """Plain representation."""
        return {
            'folder': self.folder.as_dict(),
            'parent': self.parent.as_dict() if self.parent else None,
            'subfolders': [sub.as_dict() for sub in self.subfolders],
            'files': [child.as_dict() for child in self.files],
        }


def assemble_tree(folders: Iterable[Folder]) -> TreeNode:
    """Build the root-anchored tree from a flat set of folder rows.

    Folders are grouped by parent ID once, then nodes are expanded with
    an explicit stack, so deep hierarchies do not hit the recursion limit.
    Children keep the order of the input rows.

    Args:
        folders: Every folder of one owner.

    Returns:
        Root tree node.

    Raises:
        HierarchyIntegrityError: If there is no parentless folder or
            more than one.
    """
    by_parent: defaultdict[int | None, list[Folder]] = defaultdict(list)
    total = 0
    for folder in folders:
        by_parent[folder.parent_id].append(folder)
        total += 1

    roots = by_parent.get(None, [])
    if not roots:
        raise HierarchyIntegrityError('No root folder found')
    if len(roots) > 1:
        raise HierarchyIntegrityError(
            f'Found {len(roots)} folders without a parent',
        )

    root = TreeNode(roots[0])
    reached = 1
    stack = [root]
    while stack:
        node = stack.pop()
        for child in by_parent.get(node.folder.id, []):
            child_node = TreeNode(child)
            node.children.append(child_node)
            stack.append(child_node)
            reached += 1

    if reached != total:
        logger.warning(
            'Folder tree of root %d skips %d unreachable folders',
            root.folder.id,
            total - reached,
        )
    return root


def walk_ancestors(
    folders_by_id: Mapping[int, Folder],
    folder_id: int,
) -> list[PathSegment]:
    """Follow parent links from a folder up to the root.

    Args:
        folders_by_id: Every folder of one owner keyed by ID.
        folder_id: Folder to start from.

    Returns:
        Path segments ordered root first, ending with folder_id.

    Raises:
        NotFoundError: If folder_id is not among the owner's folders.
        HierarchyIntegrityError: If the chain is longer than the number
            of folders (a cycle) or a parent link leads nowhere.
    """
    current = folders_by_id.get(folder_id)
    if current is None:
        raise NotFoundError('folder', folder_id)

    max_hops = len(folders_by_id)
    chain = [PathSegment(current.id, current.name)]
    hops = 0
    while current.parent_id is not None:
        hops += 1
        if hops > max_hops:
            raise HierarchyIntegrityError(
                f'Cycle detected in parent chain of folder {folder_id}',
            )
        parent = folders_by_id.get(current.parent_id)
        if parent is None:
            raise HierarchyIntegrityError(
                f'Folder {current.id} points to missing parent '
                f'{current.parent_id}',
            )
        current = parent
        chain.append(PathSegment(current.id, current.name))

    chain.reverse()
    return chain
