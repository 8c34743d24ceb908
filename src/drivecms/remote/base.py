"""Remote store interface, resource descriptors and common errors."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Any, Optional, Tuple

from ..utils.logging import get_logger


class ResourceKind(str, Enum):
    """Closed set of resource kinds the sync engine knows how to normalize."""

    CONTAINER = "container"
    STRUCTURED_TABLE = "structured_table"
    RICH_TEXT = "rich_text"
    UNRECOGNIZED = "unrecognized"


FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
SPREADSHEET_MIME_TYPE = "application/vnd.google-apps.spreadsheet"
DOCUMENT_MIME_TYPE = "application/vnd.google-apps.document"

_MIME_KINDS = {
    FOLDER_MIME_TYPE: ResourceKind.CONTAINER,
    SPREADSHEET_MIME_TYPE: ResourceKind.STRUCTURED_TABLE,
    DOCUMENT_MIME_TYPE: ResourceKind.RICH_TEXT,
}


def kind_for_mime_type(mime_type: Optional[str]) -> ResourceKind:
    """Map a Drive MIME type onto a resource kind."""
    return _MIME_KINDS.get(mime_type or "", ResourceKind.UNRECOGNIZED)


@dataclass(frozen=True)
class ResourceDescriptor:
    """One remote resource as reported by a listing call.

    ``version`` is kept as the raw value the remote returned; use
    ``parsed_version`` for comparisons.
    """

    id: str
    name: str
    kind: ResourceKind
    version: Optional[str] = None
    parents: Tuple[str, ...] = field(default_factory=tuple)
    mime_type: Optional[str] = None

    @property
    def parsed_version(self) -> Optional[int]:
        """Integer version, or None if the remote value is not an integer."""
        if self.version is None:
            return None
        try:
            return int(self.version)
        except (TypeError, ValueError):
            return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-ready dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind.value,
            "version": self.version,
            "parents": list(self.parents),
            "mimeType": self.mime_type
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceDescriptor":
        """Build a descriptor from ``to_dict`` output."""
        try:
            kind = ResourceKind(data.get("kind"))
        except ValueError:
            kind = kind_for_mime_type(data.get("mimeType"))
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            kind=kind,
            version=data.get("version"),
            parents=tuple(data.get("parents") or ()),
            mime_type=data.get("mimeType")
        )


class RemoteStore(ABC):
    """Abstract capability surface of the remote document store."""

    def __init__(self, **kwargs):
        self.logger = get_logger(self.__class__.__name__)

    @abstractmethod
    async def list_all(self, scope_id: Optional[str] = None) -> List[ResourceDescriptor]:
        """List every non-trashed resource.

        Args:
            scope_id: Optional shared drive to restrict the listing to

        Raises:
            RemoteListError: If the listing cannot be obtained
        """
        pass

    @abstractmethod
    async def fetch_container(self, folder_id: str) -> List[ResourceDescriptor]:
        """List the direct, non-trashed children of one folder."""
        pass

    @abstractmethod
    async def fetch_table(self, resource_id: str) -> List[Tuple[str, List[List[Any]]]]:
        """Fetch every sheet of a spreadsheet in one batch.

        Returns:
            ``(sheet_name, rows)`` pairs in sheet order
        """
        pass

    @abstractmethod
    async def fetch_rich_text(self, resource_id: str) -> str:
        """Export a document as HTML markup."""
        pass

    @abstractmethod
    async def fetch_sheet_range(self, resource_id: str, cell_range: str) -> List[List[Any]]:
        """Fetch the raw values of one A1 range of a spreadsheet."""
        pass


class DriveCMSError(Exception):
    """Base exception for Drive CMS errors."""
    pass


class RemoteListError(DriveCMSError):
    """Raised when the remote resource listing fails."""
    pass


class RemoteFetchError(DriveCMSError):
    """Raised when retrieving a single remote resource fails."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class UnsupportedResourceKind(DriveCMSError):
    """Raised when no fetch strategy exists for a resource kind."""

    def __init__(self, kind: Any, mime_type: Optional[str] = None):
        message = f"Unsupported resource kind: {getattr(kind, 'value', kind)}"
        if mime_type:
            message += f" (mime type {mime_type})"
        super().__init__(message)
        self.kind = kind
        self.mime_type = mime_type
