"""Google Drive and Sheets implementation of the remote store."""

import asyncio
import functools
import json
import os
from typing import List, Dict, Any, Optional, Tuple

import google_auth_httplib2
import httplib2
from google.oauth2 import service_account
from googleapiclient.discovery import build
import google.auth.exceptions

from .base import (
    RemoteStore,
    ResourceDescriptor,
    RemoteListError,
    RemoteFetchError,
    kind_for_mime_type
)
from ..performance import AsyncRateLimiter


class AuthenticationError(Exception):
    """Raised when Google API authentication fails."""
    pass


class GoogleDriveStore(RemoteStore):
    """Remote store backed by the Drive v3 and Sheets v4 APIs."""

    LIST_FIELDS = "nextPageToken, files(id, name, version, mimeType, parents)"

    def __init__(
        self,
        credentials_path: str,
        page_size: int = 100,
        rate_limit_calls: int = 100,
        rate_limit_window: float = 100.0,
        **kwargs
    ):
        """Initialize Google Drive store.

        Args:
            credentials_path: Path to service account credentials JSON file
            page_size: Files requested per listing page (Drive caps this at 1000)
            rate_limit_calls: Maximum API calls per window
            rate_limit_window: Rate limit window in seconds
        """
        super().__init__(**kwargs)
        self.credentials_path = credentials_path
        self.page_size = min(page_size, 1000)
        self.rate_limiter = AsyncRateLimiter(
            max_calls=rate_limit_calls,
            time_window=rate_limit_window
        )

        self.scopes = [
            "https://www.googleapis.com/auth/drive.readonly",
            "https://www.googleapis.com/auth/spreadsheets.readonly",
        ]
        self.credentials = None
        self.drive = None
        self.sheets = None
        self._authenticated = False

    async def authenticate(self) -> bool:
        """Load service account credentials and build the API services."""
        if not os.path.exists(self.credentials_path):
            self.logger.error(
                "Google credentials file not found",
                path=self.credentials_path
            )
            raise AuthenticationError(f"Credentials file not found: {self.credentials_path}")

        try:
            self.credentials = service_account.Credentials.from_service_account_file(
                self.credentials_path,
                scopes=self.scopes
            )
            self.drive = build("drive", "v3", credentials=self.credentials, cache_discovery=False)
            self.sheets = build("sheets", "v4", credentials=self.credentials, cache_discovery=False)

        except json.JSONDecodeError as e:
            error_msg = f"Invalid credentials file format: {e}"
            self.logger.error("Google authentication failed", error=error_msg)
            raise AuthenticationError(error_msg)

        except (google.auth.exceptions.GoogleAuthError, ValueError) as e:
            error_msg = f"Invalid credentials: {e}"
            self.logger.error("Google authentication failed", error=error_msg)
            raise AuthenticationError(error_msg)

        self._authenticated = True
        self.logger.info("Google authorization succeeded")
        return True

    async def list_all(self, scope_id: Optional[str] = None) -> List[ResourceDescriptor]:
        """List every non-trashed file, optionally restricted to a shared drive."""
        try:
            return await self._list("trashed != true", scope_id)
        except Exception as e:
            # Auth refresh and transport failures included
            self.logger.error("Error listing Drive files", scope_id=scope_id, error=str(e))
            raise RemoteListError(f"Error listing files: {e}") from e

    async def fetch_container(self, folder_id: str) -> List[ResourceDescriptor]:
        """List the direct children of one folder."""
        try:
            return await self._list(f"'{folder_id}' in parents and trashed != true")
        except Exception as e:
            raise RemoteFetchError(f"Error listing folder {folder_id}: {e}", cause=e) from e

    async def fetch_table(self, resource_id: str) -> List[Tuple[str, List[List[Any]]]]:
        """Fetch every sheet of a spreadsheet with a single batchGet call."""
        try:
            await self._ensure_authenticated()
            metadata = await self._execute(
                self.sheets.spreadsheets().get(
                    spreadsheetId=resource_id,
                    fields="sheets(properties(title))"
                )
            )
            # One range per sheet title covers the whole sheet
            titles = [
                sheet["properties"]["title"]
                for sheet in metadata.get("sheets", [])
            ]
            if not titles:
                return []

            result = await self._execute(
                self.sheets.spreadsheets().values().batchGet(
                    spreadsheetId=resource_id,
                    ranges=titles
                )
            )
        except Exception as e:
            raise RemoteFetchError(f"Error fetching spreadsheet {resource_id}: {e}", cause=e) from e

        # valueRanges come back in request order
        value_ranges = result.get("valueRanges", [])
        return [
            (title, value_range.get("values", []))
            for title, value_range in zip(titles, value_ranges)
        ]

    async def fetch_rich_text(self, resource_id: str) -> str:
        """Export a Google Doc as HTML."""
        try:
            await self._ensure_authenticated()
            data = await self._execute(
                self.drive.files().export(fileId=resource_id, mimeType="text/html")
            )
        except Exception as e:
            raise RemoteFetchError(f"Error exporting document {resource_id}: {e}", cause=e) from e

        # Export media comes back as raw bytes
        if isinstance(data, bytes):
            return data.decode("utf-8")
        return data or ""

    async def fetch_sheet_range(self, resource_id: str, cell_range: str) -> List[List[Any]]:
        """Fetch the raw values of one range."""
        try:
            await self._ensure_authenticated()
            result = await self._execute(
                self.sheets.spreadsheets().values().get(
                    spreadsheetId=resource_id,
                    range=cell_range
                )
            )
        except Exception as e:
            raise RemoteFetchError(
                f"Error fetching range {cell_range} of {resource_id}: {e}", cause=e
            ) from e
        return result.get("values", [])

    async def _list(self, query: str, drive_id: Optional[str] = None) -> List[ResourceDescriptor]:
        """Run a paged files.list query."""
        await self._ensure_authenticated()

        params: Dict[str, Any] = {
            "q": query,
            "orderBy": "name",
            "pageSize": self.page_size,
            "fields": self.LIST_FIELDS,
        }
        # Shared drives need their own corpus and the all-drives flags
        if drive_id:
            params.update({
                "corpora": "drive",
                "driveId": drive_id,
                "includeItemsFromAllDrives": True,
                "supportsAllDrives": True,
            })

        descriptors: List[ResourceDescriptor] = []
        page_token = None
        while True:
            result = await self._execute(
                self.drive.files().list(pageToken=page_token, **params)
            )
            for file_data in result.get("files", []):
                descriptors.append(self._to_descriptor(file_data))

            # Break if no more pages
            page_token = result.get("nextPageToken")
            if not page_token:
                break

        self.logger.debug("Listed Drive files", query=query, count=len(descriptors))
        return descriptors

    def _to_descriptor(self, file_data: Dict[str, Any]) -> ResourceDescriptor:
        """Convert Drive file data to a resource descriptor."""
        mime_type = file_data.get("mimeType")
        version = file_data.get("version")
        return ResourceDescriptor(
            id=file_data["id"],
            name=file_data.get("name", ""),
            kind=kind_for_mime_type(mime_type),
            version=str(version) if version is not None else None,
            parents=tuple(file_data.get("parents", [])),
            mime_type=mime_type
        )

    async def _ensure_authenticated(self):
        if not self._authenticated:
            await self.authenticate()

    def _new_http(self) -> google_auth_httplib2.AuthorizedHttp:
        """Authorized transport for a single request.

        httplib2.Http is not thread-safe, so requests running in the thread
        pool never share the one the services were built with.
        """
        return google_auth_httplib2.AuthorizedHttp(self.credentials, http=httplib2.Http())

    async def _execute(self, request):
        """Execute a Google API request in the thread pool under the rate limit."""
        async with self.rate_limiter.limit():
            # Run in thread pool to avoid blocking the event loop
            return await asyncio.get_running_loop().run_in_executor(
                None,
                functools.partial(request.execute, http=self._new_http())
            )
