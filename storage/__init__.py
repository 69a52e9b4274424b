"""Storage module for the encrypted vault.

Only the leaf modules are re-exported here; import the registry, folder
tree, links and engine from their own modules (accounts depends on this
package, and those modules depend on accounts).
"""

from .blobs import BlobStore
from .index import AccountDocument, MetadataIndex
from .locks import KeyedLocks
from .models import FileRecord, Folder, FolderNode

__all__ = [
    "BlobStore",
    "AccountDocument",
    "MetadataIndex",
    "KeyedLocks",
    "FileRecord",
    "Folder",
    "FolderNode",
]
