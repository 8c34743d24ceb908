"""Shared test fixtures: an in-memory remote store."""

import asyncio
import sys
import os
from typing import Dict, List, Optional

import pytest

# Add src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from drivecms.remote import (
    RemoteStore,
    ResourceDescriptor,
    ResourceKind,
    RemoteFetchError
)


def descriptor(resource_id, kind, version="1", name=None, parents=()):
    """Build a descriptor with sensible defaults."""
    return ResourceDescriptor(
        id=resource_id,
        name=name or resource_id,
        kind=kind,
        version=version,
        parents=tuple(parents)
    )


class FakeRemoteStore(RemoteStore):
    """Remote store serving canned data and recording calls."""

    def __init__(self):
        super().__init__()
        self.descriptors: List[ResourceDescriptor] = []
        self.tables: Dict[str, list] = {}
        self.docs: Dict[str, str] = {}
        self.ranges: Dict[tuple, list] = {}
        self.failing: set = set()
        self.list_error: Optional[Exception] = None
        self.delay = 0.0
        self.calls: List[tuple] = []

    async def list_all(self, scope_id=None):
        self.calls.append(("list_all", scope_id))
        if self.list_error:
            raise self.list_error
        return list(self.descriptors)

    async def fetch_container(self, folder_id):
        self.calls.append(("fetch_container", folder_id))
        return [d for d in self.descriptors if folder_id in d.parents]

    async def fetch_table(self, resource_id):
        self.calls.append(("fetch_table", resource_id))
        await asyncio.sleep(self.delay)
        if resource_id in self.failing:
            raise RemoteFetchError(f"boom {resource_id}", cause=RuntimeError("boom"))
        return self.tables[resource_id]

    async def fetch_rich_text(self, resource_id):
        self.calls.append(("fetch_rich_text", resource_id))
        await asyncio.sleep(self.delay)
        if resource_id in self.failing:
            raise RemoteFetchError(f"boom {resource_id}", cause=RuntimeError("boom"))
        return self.docs[resource_id]

    async def fetch_sheet_range(self, resource_id, cell_range):
        self.calls.append(("fetch_sheet_range", resource_id, cell_range))
        if resource_id in self.failing:
            raise RemoteFetchError(f"boom {resource_id}")
        return self.ranges[(resource_id, cell_range)]

    def fetched_ids(self):
        return [call[1] for call in self.calls if call[0] in ("fetch_table", "fetch_rich_text")]


@pytest.fixture
def store():
    """In-memory remote store with one folder, one sheet and one doc."""
    fake = FakeRemoteStore()
    fake.descriptors = [
        descriptor("folder_1", ResourceKind.CONTAINER, version="3", name="Site"),
        descriptor("sheet_1", ResourceKind.STRUCTURED_TABLE, version="7", name="Menu", parents=["folder_1"]),
        descriptor("doc_1", ResourceKind.RICH_TEXT, version="12", name="About", parents=["folder_1"]),
    ]
    fake.tables["sheet_1"] = [
        ("Food", [["item", "price"], ["tea", "2"], ["cake", "4"]]),
        ("Hours", [["day", "open"], ["mon", "9"]]),
    ]
    fake.docs["doc_1"] = (
        '<p>About us</p><img src="https://lh3.googleusercontent.com/abc123?sz=w100">'
    )
    return fake
