"""Storage adapters: the contract and two implementations."""

from .base import Listing, ResourceAdapter
from .memory import InMemoryAdapter
from .remote import RemoteAdapter

__all__ = ["InMemoryAdapter", "Listing", "RemoteAdapter", "ResourceAdapter"]
