from slotbook.storage.base import SlotStore
from slotbook.storage.memory import InMemorySlotStore

__all__ = ["SlotStore", "InMemorySlotStore"]
