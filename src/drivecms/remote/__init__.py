"""Remote store package for the Google Drive integration."""

from .base import (
    RemoteStore,
    ResourceDescriptor,
    ResourceKind,
    kind_for_mime_type,
    DriveCMSError,
    RemoteListError,
    RemoteFetchError,
    UnsupportedResourceKind
)

from .google_drive import GoogleDriveStore, AuthenticationError

__all__ = [
    # Base classes and exceptions
    "RemoteStore",
    "ResourceDescriptor",
    "ResourceKind",
    "kind_for_mime_type",
    "DriveCMSError",
    "RemoteListError",
    "RemoteFetchError",
    "UnsupportedResourceKind",

    # Store implementations
    "GoogleDriveStore",
    "AuthenticationError"
]
