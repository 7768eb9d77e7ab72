"""
Storage Services Package

Provides abstract interfaces and concrete implementations for ledger storage.
Google Sheets is the durable backend; the in-memory stores back the tests
and unconfigured installs.
"""

from bookkeeper.services.storage.interface import (
    DuplicateError,
    EntryStoreInterface,
    PartyStoreInterface,
    RecordNotFoundError,
    StorageError,
    StoreUnavailableError,
)
from bookkeeper.services.storage.memory import (
    InMemoryEntryStore,
    InMemoryPartyStore,
)
from bookkeeper.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsEntryStore,
    GoogleSheetsPartyStore,
)

__all__ = [
    # Interfaces
    "EntryStoreInterface",
    "PartyStoreInterface",
    # Exceptions
    "DuplicateError",
    "RecordNotFoundError",
    "StorageError",
    "StoreUnavailableError",
    # In-memory implementation
    "InMemoryEntryStore",
    "InMemoryPartyStore",
    # Google Sheets implementation
    "GoogleSheetsClient",
    "GoogleSheetsEntryStore",
    "GoogleSheetsPartyStore",
]
