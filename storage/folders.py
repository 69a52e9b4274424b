"""
Folder hierarchy for one account.

The parent pointers of an account's folders always form a forest: no
folder is its own ancestor and every parent belongs to the same account.
Traversals use an explicit stack, so deep trees cost heap, not recursion.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, Dict, List, Optional

from errors import Conflict, NotFound
from .file_manager import FileRegistry
from .index import AccountDocument, MetadataIndex
from .models import Folder, FolderNode, utcnow

logger = logging.getLogger(__name__)

KEEP = object()  # update(): leave the parent unchanged
MAX_NAME_LENGTH = 255
DEFAULT_MAX_DEPTH = 64


def _clean_name(name: str) -> str:
    name = (name or "").strip()
    if not name:
        raise ValueError("folder name cannot be empty")
    if len(name) > MAX_NAME_LENGTH:
        raise ValueError(f"folder name longer than {MAX_NAME_LENGTH} characters")
    return name


def descendants(doc: AccountDocument, folder_id: str) -> List[str]:
    """Ids of every folder below folder_id, parents before children."""
    children: Dict[Optional[str], List[str]] = {}
    for folder in doc.folders.values():
        children.setdefault(folder.parent_id, []).append(folder.folder_id)

    found: List[str] = []
    seen = {folder_id}
    stack = list(children.get(folder_id, []))
    while stack:
        current = stack.pop()
        if current in seen:
            continue
        seen.add(current)
        found.append(current)
        stack.extend(children.get(current, []))
    return found


class FolderTree:
    def __init__(
        self,
        index: MetadataIndex,
        files: FileRegistry,
        *,
        clock: Callable[[], datetime] = utcnow,
        max_depth: int = DEFAULT_MAX_DEPTH,
    ):
        self.index = index
        self.files = files
        self.clock = clock
        self.max_depth = max_depth

    @staticmethod
    def _folder(doc: AccountDocument, folder_id: str) -> Folder:
        folder = doc.folders.get(folder_id)
        if folder is None:
            raise NotFound(f"Folder {folder_id} not found")
        return folder

    @staticmethod
    def _check_sibling_name(
        doc: AccountDocument, name: str, parent_id: Optional[str], exclude: Optional[str] = None
    ) -> None:
        for sibling in doc.folders.values():
            if sibling.parent_id == parent_id and sibling.name == name and sibling.folder_id != exclude:
                raise Conflict(f"A folder named {name!r} already exists here")

    def get(self, folder_id: str, account_id: str) -> Folder:
        return self._folder(self.index.load(account_id), folder_id)

    def create(self, account_id: str, name: str, parent_id: Optional[str] = None) -> Folder:
        name = _clean_name(name)
        with self.index.transaction(account_id) as doc:
            if parent_id is not None:
                self._folder(doc, parent_id)
            self._check_sibling_name(doc, name, parent_id)
            folder = Folder.new(account_id, name, parent_id, self.clock())
            doc.folders[folder.folder_id] = folder
        logger.info("Created folder %s for account %s", folder.folder_id, account_id)
        return folder

    def update(
        self,
        folder_id: str,
        account_id: str,
        new_name: Optional[str] = None,
        new_parent_id=KEEP,
    ) -> Folder:
        """
        Rename and/or move a folder. Pass new_parent_id=None to move it to
        the root; leave it out to keep the current parent.
        """
        with self.index.transaction(account_id) as doc:
            folder = self._folder(doc, folder_id)
            parent_id = folder.parent_id

            if new_parent_id is not KEEP:
                if new_parent_id == folder_id:
                    raise Conflict("Cannot move a folder into itself")
                if new_parent_id is not None:
                    self._folder(doc, new_parent_id)
                    if new_parent_id in descendants(doc, folder_id):
                        raise Conflict("Cannot move a folder into its own descendant")
                parent_id = new_parent_id

            name = _clean_name(new_name) if new_name is not None else folder.name
            if name != folder.name or parent_id != folder.parent_id:
                self._check_sibling_name(doc, name, parent_id, exclude=folder_id)

            folder.name = name
            folder.parent_id = parent_id
            folder.updated_at = self.clock()
            return replace(folder)

    def delete(self, folder_id: str, account_id: str) -> int:
        """
        Delete a folder with all its subfolders. Files inside them are
        deleted through the file registry, so blobs and quota go too.
        Returns the number of folders removed.
        """
        doc = self.index.load(account_id)
        self._folder(doc, folder_id)
        doomed = [folder_id] + descendants(doc, folder_id)

        for record in self.files.list_in_folders(account_id, doomed):
            try:
                self.files.delete(record.file_id, account_id)
            except NotFound:
                logger.debug("File %s vanished during folder delete", record.file_id)

        with self.index.transaction(account_id) as doc:
            self._folder(doc, folder_id)
            doomed = [folder_id] + descendants(doc, folder_id)
            doomed_set = set(doomed)
            if any(f.folder_id in doomed_set and not f.deleted for f in doc.files.values()):
                raise Conflict("Folder received new files while it was being deleted")
            # deepest first
            for fid in reversed(doomed):
                doc.folders.pop(fid, None)

        logger.info("Deleted folder %s and %d subfolders", folder_id, len(doomed) - 1)
        return len(doomed)

    def list_children(self, account_id: str, parent_id: Optional[str] = None) -> List[Folder]:
        doc = self.index.load(account_id)
        if parent_id is not None:
            self._folder(doc, parent_id)
        return doc.children_of(parent_id)

    def tree(self, account_id: str, parent_id: Optional[str] = None) -> List[FolderNode]:
        """
        Nested folders (with their live files) below parent_id. Raises
        Conflict when the data is deeper than max_depth.
        """
        doc = self.index.load(account_id)
        if parent_id is not None:
            self._folder(doc, parent_id)
        now = self.clock()

        def _node(folder: Folder) -> FolderNode:
            files = sorted(
                (f for f in doc.files_in(folder.folder_id) if f.is_visible(now)),
                key=lambda f: f.created_at,
                reverse=True,
            )
            return FolderNode(folder=folder, files=files)

        roots = [_node(f) for f in doc.children_of(parent_id)]
        stack = [(node, 1) for node in roots]
        while stack:
            node, depth = stack.pop()
            if depth > self.max_depth:
                raise Conflict(f"Folder tree is deeper than {self.max_depth} levels")
            node.children = [_node(child) for child in doc.children_of(node.folder.folder_id)]
            stack.extend((child, depth + 1) for child in node.children)
        return roots
