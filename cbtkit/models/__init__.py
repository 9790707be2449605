"""
Data model shared by assembly, multistage and adaptive components.
"""

from .pool import Item, ItemId, ItemPool, generate_item_pool

__all__ = [
    "Item",
    "ItemId",
    "ItemPool",
    "generate_item_pool",
]
