# ==============================================
# Category (Enum)
# ==============================================
#
# PURPOSE:
#   The closed set of item categories the framework buffers.
#   Every buffer, consumer, normalizer and cache key prefix is
#   keyed by one of these members.
#
# MEMBERS:
# --------
#   MESSAGES, CHATS, GROUPS, CONTACTS, RECEIPTS, REACTIONS
#
#   - value is the lowercase name ("messages", ...) used on the wire
#     and in environment variable names.
#   - is_event: True for categories whose records describe events
#     (messages, receipts, reactions). Only these are swept by the
#     max-age retention pass; the others describe current state.
#
# ==============================================

from enum import Enum
from typing import Union

from batchcache.exceptions import UnknownCategoryError


class Category(str, Enum):
    MESSAGES = "messages"
    CHATS = "chats"
    GROUPS = "groups"
    CONTACTS = "contacts"
    RECEIPTS = "receipts"
    REACTIONS = "reactions"

    @classmethod
    def parse(cls, value: Union["Category", str]) -> "Category":
        """
        Resolve a member from itself or its string value.

        Raises:
            UnknownCategoryError: if the value names no category.
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            raise UnknownCategoryError(value) from None

    @property
    def is_event(self) -> bool:
        return self in (Category.MESSAGES, Category.RECEIPTS, Category.REACTIONS)

    def __str__(self) -> str:
        return self.value
