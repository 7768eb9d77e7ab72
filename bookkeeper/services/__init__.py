"""Services package."""

from bookkeeper.services.storage import (
    DuplicateError,
    EntryStoreInterface,
    GoogleSheetsClient,
    GoogleSheetsEntryStore,
    GoogleSheetsPartyStore,
    InMemoryEntryStore,
    InMemoryPartyStore,
    PartyStoreInterface,
    RecordNotFoundError,
    StorageError,
    StoreUnavailableError,
)

__all__ = [
    # Storage services
    "DuplicateError",
    "EntryStoreInterface",
    "GoogleSheetsClient",
    "GoogleSheetsEntryStore",
    "GoogleSheetsPartyStore",
    "InMemoryEntryStore",
    "InMemoryPartyStore",
    "PartyStoreInterface",
    "RecordNotFoundError",
    "StorageError",
    "StoreUnavailableError",
]
