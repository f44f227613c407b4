# ==============================================
# Tests for Records normalization
# ==============================================
#
# FieldNormalizer, TypeCoercer and the per-category
# RecordNormalizer (keys, fields, derived chat summaries).
# ==============================================

from datetime import datetime, timezone

import pytest

from batchcache.categories import Category
from batchcache.exceptions import RecordNormalizationError
from batchcache.records import FieldNormalizer, RecordNormalizer, TypeCoercer
from batchcache.records.record_normalizer import detect_message_type, extract_text


@pytest.fixture
def normalizer(clock):
    return RecordNormalizer(clock=clock)


# ==============================================
# Field names
# ==============================================

class TestFieldNormalizer:

    @pytest.mark.parametrize("raw, expected", [
        ("remoteJid", "remote_jid"),
        ("PushName", "push_name"),
        ("ID", "id"),
        ("userJID", "user_jid"),
        ("from_me", "from_me"),
        ("viewOnceMessageV2", "view_once_message_v2"),
        ("mute-end time", "mute_end_time"),
    ])
    def test_normalize(self, raw, expected):
        assert FieldNormalizer().normalize(raw) == expected

    def test_normalize_keys_recurses_into_lists(self):
        raw = {"key": {"remoteJid": "x"}, "participants": [{"isAdmin": True}]}

        assert FieldNormalizer().normalize_keys(raw) == {
            "key": {"remote_jid": "x"},
            "participants": [{"is_admin": True}],
        }

    def test_similar_names(self):
        normalizer = FieldNormalizer()
        assert normalizer.are_similar("pushName", "push_name")
        assert not normalizer.are_similar("pushName", "name")

    def test_mappings_are_memoised(self):
        normalizer = FieldNormalizer()
        normalizer.normalize("remoteJid")
        assert normalizer.get_mappings() == {"remoteJid": "remote_jid"}


# ==============================================
# Value coercion
# ==============================================

class TestTypeCoercer:

    @pytest.mark.parametrize("value, expected", [
        (True, True), ("yes", True), ("1", True), (1, True),
        (False, False), ("no", False), ("0", False), (0, False),
        (None, False), ("null", False),
    ])
    def test_to_bool(self, value, expected):
        assert TypeCoercer.to_bool(value) is expected

    @pytest.mark.parametrize("value, expected", [
        (5, 5), ("7", 7), ("7.9", 7), (3.2, 3), ("abc", None), (True, None), (None, None),
    ])
    def test_to_int(self, value, expected):
        assert TypeCoercer.to_int(value) == expected

    def test_to_timestamp_variants(self):
        expected = 1_700_000_000
        iso = datetime.fromtimestamp(expected, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

        assert TypeCoercer.to_timestamp(expected) == expected
        assert TypeCoercer.to_timestamp(str(expected)) == expected
        assert TypeCoercer.to_timestamp(float(expected) + 0.5) == expected
        assert TypeCoercer.to_timestamp(iso) == expected
        assert TypeCoercer.to_timestamp({"low": expected, "high": 0}) == expected
        assert TypeCoercer.to_timestamp(datetime.fromtimestamp(expected, tz=timezone.utc)) == expected

    def test_to_timestamp_fallback(self):
        assert TypeCoercer.to_timestamp("not a date") is None
        assert TypeCoercer.to_timestamp(None, 0) == 0
        assert TypeCoercer.to_timestamp(True) is None


# ==============================================
# Message content
# ==============================================

class TestMessageContent:

    @pytest.mark.parametrize("message, expected", [
        ({"conversation": "hi"}, "text"),
        ({"extended_text_message": {"text": "hi"}}, "text_extended"),
        ({"image_message": {}}, "image"),
        ({"video_message": {}}, "video"),
        ({"protocol_message": {"type": 0}}, "revoked"),
        ({"protocol_message": {"type": 14}}, "unknown"),
        ({}, "unknown"),
        (None, "unknown"),
    ])
    def test_detect_message_type(self, message, expected):
        assert detect_message_type(message) == expected

    @pytest.mark.parametrize("message, expected", [
        ({"conversation": "plain"}, "plain"),
        ({"extended_text_message": {"text": "quoted"}}, "quoted"),
        ({"image_message": {"caption": "photo"}}, "photo"),
        ({"view_once_message_v2": {"message": {"video_message": {"caption": "once"}}}}, "once"),
        ({"image_message": {}}, None),
        (None, None),
    ])
    def test_extract_text(self, message, expected):
        assert extract_text(message) == expected


# ==============================================
# Per-category normalizers
# ==============================================

class TestRecordNormalizer:

    def test_message(self, normalizer, message_item, clock):
        record = normalizer.normalize(Category.MESSAGES, message_item)

        assert record.category is Category.MESSAGES
        assert record.key == "5511900000001@s.whatsapp.net:MSG1"
        assert record.cache_key == "msg:5511900000001@s.whatsapp.net:MSG1"
        assert record.processed_at == clock.now
        assert record.data["from_me"] is False
        assert record.data["push_name"] == "Alice"
        assert record.data["message_timestamp"] == 1_700_000_000
        assert record.data["message_type"] == "text"
        assert record.data["text"] == "hello"

    def test_message_with_split_timestamp(self, normalizer, make_message):
        item = make_message("MSG9", timestamp={"low": 1_700_000_123, "high": 0, "unsigned": True})
        record = normalizer.normalize(Category.MESSAGES, item)
        assert record.data["message_timestamp"] == 1_700_000_123

    def test_message_without_key_is_rejected(self, normalizer):
        with pytest.raises(RecordNormalizationError) as excinfo:
            normalizer.normalize(Category.MESSAGES, {"message": {"conversation": "x"}})
        assert excinfo.value.category == "messages"

    @pytest.mark.parametrize("key", [
        {"remoteJid": 5511900000001, "id": "A1"},
        {"remoteJid": "5511900000001@s.whatsapp.net", "id": 42},
        {"remoteJid": "120363040000000000@g.us", "id": "A1", "participant": 5511},
    ])
    def test_non_string_key_fields_are_rejected(self, normalizer, key):
        with pytest.raises(RecordNormalizationError, match="must be"):
            normalizer.normalize(Category.MESSAGES, {"key": key, "message": {"conversation": "x"}})

    def test_non_dict_is_rejected(self, normalizer):
        with pytest.raises(RecordNormalizationError):
            normalizer.normalize(Category.CHATS, "not a dict")

    def test_chat(self, normalizer, chat_item, clock):
        chat_item["muteEndTime"] = clock.now + 3600
        record = normalizer.normalize(Category.CHATS, chat_item)

        assert record.key == chat_item["id"]
        assert record.cache_key.startswith("chat:")
        assert record.data["unread_count"] == 2
        assert record.data["last_message_timestamp"] == 1_700_000_000
        assert record.data["is_group"] is False
        assert record.data["muted"] is True

    def test_group(self, normalizer, group_item):
        record = normalizer.normalize(Category.GROUPS, group_item)

        assert record.key == "120363040000000000@g.us"
        assert record.data["description"] == "Planning"
        assert record.data["participant_count"] == 2
        assert record.data["restrict"] is True
        assert record.data["announce"] is False

    def test_contact_falls_back_to_notify(self, normalizer, contact_item):
        record = normalizer.normalize(Category.CONTACTS, contact_item)

        assert record.cache_key == "contact:5511900000002@s.whatsapp.net"
        assert record.data["name"] == "Bobby"
        assert record.data["status"] == "available"

    def test_contact_without_id_is_rejected(self, normalizer):
        with pytest.raises(RecordNormalizationError):
            normalizer.normalize(Category.CONTACTS, {"name": "nobody"})

    def test_receipt_key(self, normalizer, receipt_item):
        record = normalizer.normalize(Category.RECEIPTS, receipt_item)

        assert record.key == (
            "120363040000000000@g.us:MSG1:5511900000002@s.whatsapp.net:read"
        )
        assert record.data["timestamp"] == 1_700_000_100

    def test_receipt_without_type_is_rejected(self, normalizer, receipt_item):
        del receipt_item["type"]
        with pytest.raises(RecordNormalizationError):
            normalizer.normalize(Category.RECEIPTS, receipt_item)

    def test_reaction_key(self, normalizer, reaction_item):
        record = normalizer.normalize(Category.REACTIONS, reaction_item)

        assert record.key == "120363040000000000@g.us:MSG1:👍"
        assert record.cache_key.startswith("reaction:")
        assert record.data["sender"] == "5511900000002@s.whatsapp.net"

    def test_to_dict_carries_identity(self, normalizer, contact_item):
        record = normalizer.normalize(Category.CONTACTS, contact_item)
        document = record.to_dict()

        assert document["category"] == "contacts"
        assert document["record_key"] == record.key
        assert document["notify"] == "Bobby"


# ==============================================
# Derived chat summaries
# ==============================================

class TestChatSummaries:

    def test_new_chat_from_incoming_message(self, normalizer, message_item):
        message = normalizer.normalize(Category.MESSAGES, message_item)
        chat = normalizer.chat_from_message(None, message)

        assert chat.category is Category.CHATS
        assert chat.key == "5511900000001@s.whatsapp.net"
        assert chat.data["unread_count"] == 1
        assert chat.data["last_message_timestamp"] == 1_700_000_000
        assert chat.data["name"] == "Alice"

    def test_self_authored_message_does_not_count(self, normalizer, make_message):
        message = normalizer.normalize(Category.MESSAGES, make_message("M2", from_me=True))
        chat = normalizer.chat_from_message({"unread_count": 4}, message)

        assert chat.data["unread_count"] == 4

    def test_last_activity_never_moves_back(self, normalizer, make_message):
        older = normalizer.normalize(Category.MESSAGES, make_message("M3", timestamp=100))
        chat = normalizer.chat_from_message({"last_message_timestamp": 500, "name": "Kept"}, older)

        assert chat.data["last_message_timestamp"] == 500
        assert chat.data["name"] == "Kept"

    def test_chat_from_group(self, normalizer, group_item):
        group = normalizer.normalize(Category.GROUPS, group_item)
        chat = normalizer.chat_from_group({"unread_count": 3}, group)

        assert chat.key == group.key
        assert chat.data["name"] == "Weekend plans"
        assert chat.data["is_group"] is True
        assert chat.data["unread_count"] == 3
