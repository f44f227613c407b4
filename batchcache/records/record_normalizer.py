import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from batchcache.categories import Category
from batchcache.exceptions import RecordNormalizationError
from .field_normalizer import FieldNormalizer
from .type_coercion import TypeCoercer


CACHE_PREFIXES: Dict[Category, str] = {
    Category.MESSAGES: "msg:",
    Category.CHATS: "chat:",
    Category.GROUPS: "group:",
    Category.CONTACTS: "contact:",
    Category.RECEIPTS: "receipt:",
    Category.REACTIONS: "reaction:",
}

# Where message text can live, checked in order (keys already snake_case)
TEXT_PATHS = [
    ("conversation",),
    ("extended_text_message", "text"),
    ("image_message", "caption"),
    ("video_message", "caption"),
    ("document_message", "caption"),
    ("view_once_message_v2", "message", "image_message", "caption"),
    ("view_once_message_v2", "message", "video_message", "caption"),
    ("view_once_message", "message", "image_message", "caption"),
    ("view_once_message", "message", "video_message", "caption"),
    ("document_with_caption_message", "message", "document_message", "caption"),
    ("buttons_response_message", "selected_button_id"),
    ("list_response_message", "single_select_reply", "selected_row_id"),
    ("template_button_reply_message", "selected_id"),
]

GROUP_SUFFIX = "@g.us"


@dataclass
class NormalizedRecord:
    """A normalized item, keyed by its category-specific identity."""

    category: Category
    key: str
    data: Dict[str, Any] = field(default_factory=dict)
    processed_at: float = 0.0

    @property
    def cache_key(self) -> str:
        return f"{CACHE_PREFIXES[self.category]}{self.key}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category.value,
            "record_key": self.key,
            "processed_at": self.processed_at,
            **self.data,
        }


def _dig(value: Any, path: tuple) -> Any:
    current = value
    for part in path:
        if not isinstance(current, dict) or current.get(part) is None:
            return None
        current = current[part]
    return current


def extract_text(message: Optional[dict]) -> Optional[str]:
    if not isinstance(message, dict):
        return None
    for path in TEXT_PATHS:
        text = _dig(message, path)
        if isinstance(text, str) and text:
            return text
    return None


def detect_message_type(message: Optional[dict]) -> str:
    if not isinstance(message, dict) or not message:
        return "unknown"
    if message.get("conversation"):
        return "text"
    if "extended_text_message" in message:
        return "text_extended"
    if "image_message" in message:
        return "image"
    if "video_message" in message:
        return "video"
    if "audio_message" in message:
        return "audio"
    if "document_message" in message or "document_with_caption_message" in message:
        return "document"
    if "sticker_message" in message:
        return "sticker"
    protocol = message.get("protocol_message")
    if isinstance(protocol, dict) and TypeCoercer.to_int(protocol.get("type")) == 0:
        return "revoked"
    return "unknown"


class RecordNormalizer:
    def __init__(
        self,
        field_normalizer: Optional[FieldNormalizer] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.field_normalizer = field_normalizer or FieldNormalizer()
        self._clock = clock
        self._handlers = {
            Category.MESSAGES: self._normalize_message,
            Category.CHATS: self._normalize_chat,
            Category.GROUPS: self._normalize_group,
            Category.CONTACTS: self._normalize_contact,
            Category.RECEIPTS: self._normalize_receipt,
            Category.REACTIONS: self._normalize_reaction,
        }

    def normalize(self, category: Category, raw_item: Any) -> NormalizedRecord:
        if not isinstance(raw_item, dict):
            raise RecordNormalizationError(category.value, "item must be a dictionary")

        item = self.field_normalizer.normalize_keys(raw_item)
        key, data = self._handlers[category](item)
        return NormalizedRecord(category=category, key=key, data=data, processed_at=self._clock())

    # ======================================
    # Per-category normalizers
    # ======================================
    def _normalize_message(self, item: dict):
        msg_key = self._require_key(Category.MESSAGES, item)
        remote_jid = msg_key["remote_jid"]
        message_id = msg_key["id"]
        content = item.get("message")

        data = {
            "key": msg_key,
            "remote_jid": remote_jid,
            "message_id": message_id,
            "participant": msg_key.get("participant"),
            "from_me": TypeCoercer.to_bool(msg_key.get("from_me")),
            "push_name": item.get("push_name"),
            "message_timestamp": TypeCoercer.to_timestamp(item.get("message_timestamp")),
            "message_type": item.get("message_content_type") or detect_message_type(content),
            "text": extract_text(content),
            "message": content,
        }
        return f"{remote_jid}:{message_id}", data

    def _normalize_chat(self, item: dict):
        chat_id = self._require_id(Category.CHATS, item)
        mute_end = TypeCoercer.to_timestamp(item.get("mute_end_time"), 0)

        data = {
            "id": chat_id,
            "name": item.get("name"),
            "unread_count": TypeCoercer.to_int(item.get("unread_count"), 0),
            "last_message_timestamp": TypeCoercer.to_timestamp(
                item.get("conversation_timestamp") or item.get("last_message_timestamp")
            ),
            "is_group": chat_id.endswith(GROUP_SUFFIX),
            "pinned": TypeCoercer.to_int(item.get("pinned"), 0),
            "archived": TypeCoercer.to_bool(item.get("archived") or item.get("archive")),
            "muted": mute_end > self._clock(),
        }
        return chat_id, data

    def _normalize_group(self, item: dict):
        group_id = self._require_id(Category.GROUPS, item)
        participants = item.get("participants") or []

        data = {
            "id": group_id,
            "subject": item.get("subject"),
            "owner": item.get("owner"),
            "creation": TypeCoercer.to_timestamp(item.get("creation")),
            "description": item.get("desc") or item.get("description"),
            "participants": participants,
            "participant_count": len(participants),
            "restrict": TypeCoercer.to_bool(item.get("restrict")),
            "announce": TypeCoercer.to_bool(item.get("announce")),
            "profile_picture_url": item.get("profile_picture_url"),
        }
        return group_id, data

    def _normalize_contact(self, item: dict):
        contact_id = self._require_id(Category.CONTACTS, item)

        data = {
            "id": contact_id,
            "name": item.get("name") or item.get("notify"),
            "notify": item.get("notify"),
            "verified_name": item.get("verified_name"),
            "status": item.get("status"),
            "profile_picture_url": item.get("profile_picture_url") or item.get("img_url"),
        }
        return contact_id, data

    def _normalize_receipt(self, item: dict):
        msg_key = self._require_key(Category.RECEIPTS, item)
        user_jid = item.get("user_jid")
        receipt_type = item.get("type")
        if not user_jid or not receipt_type:
            raise RecordNormalizationError("receipts", "receipt requires 'userJid' and 'type'")

        data = {
            "message_key": msg_key,
            "remote_jid": msg_key["remote_jid"],
            "message_id": msg_key["id"],
            "user_jid": user_jid,
            "type": receipt_type,
            "timestamp": TypeCoercer.to_timestamp(item.get("timestamp")),
        }
        key = f"{msg_key['remote_jid']}:{msg_key['id']}:{user_jid}:{receipt_type}"
        return key, data

    def _normalize_reaction(self, item: dict):
        msg_key = self._require_key(Category.REACTIONS, item)
        reaction = item.get("reaction")
        if not isinstance(reaction, dict):
            raise RecordNormalizationError("reactions", "reaction requires a 'reaction' object")
        text = reaction.get("text") or ""

        data = {
            "message_key": msg_key,
            "remote_jid": msg_key["remote_jid"],
            "message_id": msg_key["id"],
            "reaction": reaction,
            "text": text,
            "sender": msg_key.get("participant") or reaction.get("sender"),
        }
        return f"{msg_key['remote_jid']}:{msg_key['id']}:{text}", data

    # ======================================
    # Derived conversation summaries
    # ======================================
    def chat_from_message(self, existing: Optional[dict], message: NormalizedRecord) -> NormalizedRecord:
        """
        Advance a conversation summary with one message.

        Last activity moves to the max of current and new; the unread
        count grows unless the message is self-authored.
        """
        existing = existing or {}
        chat_id = message.data["remote_jid"]
        sender = message.data.get("participant") or chat_id
        timestamp = message.data.get("message_timestamp") or int(self._clock())
        unread = existing.get("unread_count") or 0

        data = {
            **existing,
            "id": chat_id,
            "name": existing.get("name") or message.data.get("push_name") or sender.split("@")[0],
            "last_message_timestamp": max(existing.get("last_message_timestamp") or 0, timestamp),
            "unread_count": unread if message.data.get("from_me") else unread + 1,
            "is_group": chat_id.endswith(GROUP_SUFFIX),
        }
        return NormalizedRecord(Category.CHATS, chat_id, data, self._clock())

    def chat_from_group(self, existing: Optional[dict], group: NormalizedRecord) -> NormalizedRecord:
        existing = existing or {}
        creation = group.data.get("creation") or 0

        data = {
            **existing,
            "id": group.key,
            "name": group.data.get("subject") or existing.get("name"),
            "is_group": True,
            "last_message_timestamp": max(existing.get("last_message_timestamp") or 0, creation),
            "unread_count": existing.get("unread_count") or 0,
        }
        return NormalizedRecord(Category.CHATS, group.key, data, self._clock())

    # ======================================
    # Validation helpers
    # ======================================
    @staticmethod
    def _require_key(category: Category, item: dict) -> dict:
        msg_key = item.get("key")
        if not isinstance(msg_key, dict):
            raise RecordNormalizationError(
                category.value, "item requires 'key' with 'remoteJid' and 'id'"
            )
        for field_name in ("remote_jid", "id"):
            value = msg_key.get(field_name)
            if not isinstance(value, str) or not value:
                raise RecordNormalizationError(
                    category.value, f"key.{field_name} must be a non-empty string, got {value!r}"
                )
        participant = msg_key.get("participant")
        if participant is not None and not isinstance(participant, str):
            raise RecordNormalizationError(
                category.value, f"key.participant must be a string, got {participant!r}"
            )
        return msg_key

    @staticmethod
    def _require_id(category: Category, item: dict) -> str:
        item_id = item.get("id")
        if not isinstance(item_id, str) or not item_id:
            raise RecordNormalizationError(category.value, "item requires a non-empty 'id'")
        return item_id
