# ==============================================
# Tests for RecordStore
# ==============================================
#
# Consumers, derived chat summaries, cache mirroring,
# lookup fallback, retention and sink forwarding.
# ==============================================

from unittest.mock import Mock

import pytest

from batchcache.buffering import FlushStatus
from batchcache.caching import ExpiringCache
from batchcache.categories import Category
from batchcache.config import RetentionConfig
from batchcache.exceptions import SinkError
from batchcache.records import RecordStore

ALICE = "5511900000001@s.whatsapp.net"
GROUP = "120363040000000000@g.us"


@pytest.fixture
def store(app_config, clock):
    return RecordStore(app_config, clock=clock)


class TestConsumers:

    @pytest.mark.asyncio
    async def test_message_is_stored_and_cached(self, store, message_item):
        assert store.add_message(message_item) is True
        await store.flush()

        record = store.get_message(ALICE, "MSG1")
        assert record is not None
        assert record.data["text"] == "hello"
        assert store.cache.has(f"msg:{ALICE}:MSG1")

    @pytest.mark.asyncio
    async def test_size_trigger_runs_consumer(self, store, make_message):
        for index in range(3):
            store.add_message(make_message(f"M{index}"))
        await store.coordinator.drain()

        assert len(store.records(Category.MESSAGES)) == 3
        assert store.coordinator.buffer_depths()["messages"] == 0

    @pytest.mark.asyncio
    async def test_messages_update_chat_summary(self, store, make_message):
        store.add_message(make_message("M1", timestamp=100))
        store.add_message(make_message("M2", timestamp=300))
        store.add_message(make_message("M3", timestamp=200, from_me=True))
        await store.coordinator.drain()

        chat = store.get_chat(ALICE)
        assert chat.data["unread_count"] == 2
        assert chat.data["last_message_timestamp"] == 300
        assert store.cache.has(f"chat:{ALICE}")

    @pytest.mark.asyncio
    async def test_group_writes_chat_summary(self, store, group_item):
        store.add_group(group_item)
        await store.flush()

        assert store.get_group(GROUP).data["subject"] == "Weekend plans"
        chat = store.get_chat(GROUP)
        assert chat.data["is_group"] is True
        assert chat.data["name"] == "Weekend plans"

    @pytest.mark.asyncio
    async def test_every_category_is_consumed(
        self, store, chat_item, contact_item, receipt_item, reaction_item
    ):
        store.add_chat(chat_item)
        store.add_contact(contact_item)
        store.add_receipt(receipt_item)
        store.add_reaction(reaction_item)
        results = await store.flush()

        assert all(result.ok for result in results.values())
        stats = store.stats()
        assert stats["records"]["contacts"] == 1
        assert stats["records"]["receipts"] == 1
        assert stats["records"]["reactions"] == 1
        assert store.get_contact(contact_item["id"]).data["name"] == "Bobby"

    @pytest.mark.asyncio
    async def test_malformed_item_is_rejected_rest_stored(self, store, contact_item):
        store.add_contact({"name": "missing id"})
        store.add_contact(contact_item)
        results = await store.flush()

        assert results[Category.CONTACTS].status is FlushStatus.SUCCESS
        stats = store.stats()
        assert stats["records"]["contacts"] == 1
        assert stats["rejected"]["contacts"] == 1
        assert stats["processed"]["contacts"] == 1

    def test_generic_add_rejects_unknown_category(self, store):
        assert store.add("bogus", {"id": "x"}) is False

    @pytest.mark.asyncio
    async def test_later_record_supersedes_earlier(self, store, contact_item):
        store.add_contact(contact_item)
        await store.flush()
        store.add_contact({"id": contact_item["id"], "name": "Robert"})
        await store.flush()

        record = store.get_contact(contact_item["id"])
        assert record.data["name"] == "Robert"
        assert record.data["status"] is None


class TestLookup:

    @pytest.mark.asyncio
    async def test_get_falls_back_to_map_and_repopulates(self, store, contact_item):
        store.add_contact(contact_item)
        await store.flush()
        cache_key = f"contact:{contact_item['id']}"
        store.cache.delete(cache_key)

        record = store.get(Category.CONTACTS, contact_item["id"])

        assert record is not None
        assert store.cache.has(cache_key)

    @pytest.mark.asyncio
    async def test_no_repopulation_when_disabled(self, app_config, clock, contact_item):
        app_config.retention = RetentionConfig(repopulate_cache_on_miss=False)
        store = RecordStore(app_config, clock=clock)
        store.add_contact(contact_item)
        await store.flush()
        cache_key = f"contact:{contact_item['id']}"
        store.cache.delete(cache_key)

        assert store.get("contacts", contact_item["id"]) is not None
        assert not store.cache.has(cache_key)

    def test_missing_record(self, store):
        assert store.get_chat("nobody@s.whatsapp.net") is None

    @pytest.mark.asyncio
    async def test_category_ttl_applies_to_cache_entry(self, app_config, contact_item):
        cache_clock = Mock(return_value=0.0)
        cache = ExpiringCache(clock=cache_clock, use_timers=False)
        store = RecordStore(app_config, cache=cache)
        store.add_contact(contact_item)
        await store.flush()

        cache_key = f"contact:{contact_item['id']}"
        cache_clock.return_value = 301.0

        assert not cache.has(cache_key)
        # The authoritative map still serves it
        assert store.get_contact(contact_item["id"]) is not None


class TestRetention:

    @pytest.mark.asyncio
    async def test_cleanup_removes_old_event_records(self, store, clock, make_message, chat_item):
        now = int(clock.now)
        store.add_message(make_message("OLD", timestamp=now - 90_000))
        store.add_message(make_message("NEW", timestamp=now - 60))
        store.add_chat(chat_item)
        await store.flush()

        removed = store.cleanup_old_data()

        assert removed == 1
        assert store.get_message(ALICE, "OLD") is None
        assert store.get_message(ALICE, "NEW") is not None
        assert store.get_chat(chat_item["id"]) is not None

    @pytest.mark.asyncio
    async def test_cleanup_uses_processed_time_without_timestamp(self, store, clock, reaction_item):
        store.add_reaction(reaction_item)
        await store.flush()

        assert store.cleanup_old_data(now=clock.now + 3600) == 0
        assert store.cleanup_old_data(now=clock.now + 86_401) == 1


class TestSinks:

    @pytest.mark.asyncio
    async def test_batches_are_forwarded_to_sinks(self, app_config, clock, group_item):
        sink = Mock()
        sink.write_batch.return_value = 1
        store = RecordStore(app_config, clock=clock, sinks=[sink])

        store.add_group(group_item)
        await store.flush()

        categories = [call.args[0] for call in sink.write_batch.call_args_list]
        assert categories == [Category.GROUPS, Category.CHATS]
        records = sink.write_batch.call_args_list[0].args[1]
        assert records[0].key == group_item["id"]

    @pytest.mark.asyncio
    async def test_sink_failure_requeues_without_double_counting(self, app_config, clock, message_item):
        sink = Mock()
        sink.write_batch.side_effect = [RuntimeError("database down"), 1, 1]
        store = RecordStore(app_config, clock=clock, sinks=[sink])

        store.add_message(message_item)
        first = await store.flush()
        assert first[Category.MESSAGES].status is FlushStatus.ERROR
        assert isinstance(first[Category.MESSAGES].error, SinkError)
        assert store.coordinator.buffer_depths()["messages"] == 1

        second = await store.flush()
        assert second[Category.MESSAGES].status is FlushStatus.SUCCESS

        chat = store.get_chat(ALICE)
        assert chat.data["unread_count"] == 1
        assert store.coordinator.stats()["errors"] == 1

        # Redelivery still writes the conversation summary
        categories = [call.args[0] for call in sink.write_batch.call_args_list]
        assert categories == [Category.MESSAGES, Category.MESSAGES, Category.CHATS]
        assert sink.write_batch.call_args_list[2].args[1][0].key == ALICE

    @pytest.mark.asyncio
    async def test_failed_chat_write_is_retried_with_the_messages(self, app_config, clock, message_item):
        sink = Mock()
        sink.write_batch.side_effect = [1, SinkError("mongo", "timeout"), 1, 1]
        store = RecordStore(app_config, clock=clock, sinks=[sink])

        store.add_message(message_item)
        first = await store.flush()
        second = await store.flush()

        assert first[Category.MESSAGES].status is FlushStatus.ERROR
        assert second[Category.MESSAGES].status is FlushStatus.SUCCESS
        categories = [call.args[0] for call in sink.write_batch.call_args_list]
        assert categories == [Category.MESSAGES, Category.CHATS, Category.MESSAGES, Category.CHATS]
        assert store.get_chat(ALICE).data["unread_count"] == 1

    @pytest.mark.asyncio
    async def test_message_with_numeric_jid_is_rejected_not_retried(self, store, message_item):
        store.add_message({"key": {"remoteJid": 5511, "id": "A1"}, "message": {"conversation": "x"}})
        store.add_message(message_item)

        results = await store.flush()

        assert results[Category.MESSAGES].status is FlushStatus.SUCCESS
        assert store.stats()["rejected"]["messages"] == 1
        assert store.coordinator.buffer_depths()["messages"] == 0
        assert store.get_message(ALICE, "MSG1") is not None


class TestLifecycle:

    @pytest.mark.asyncio
    async def test_context_manager_flushes_on_exit(self, app_config, clock, contact_item):
        async with RecordStore(app_config, clock=clock) as store:
            store.add_contact(contact_item)
            assert store.coordinator.buffer_depths()["contacts"] == 1

        assert store.get_contact(contact_item["id"]) is not None
        assert store.coordinator.buffer_depths()["contacts"] == 0

    @pytest.mark.asyncio
    async def test_start_and_stop_with_metrics(self, app_config, clock, contact_item):
        app_config.metrics.enabled = True
        store = RecordStore(app_config, clock=clock)

        await store.start()
        store.add_contact(contact_item)
        results = await store.stop()

        assert results[Category.CONTACTS].status is FlushStatus.SUCCESS
        snapshot = store.get_metrics()
        assert snapshot.total_processed == 1
        assert snapshot.cache.sets >= 1

    @pytest.mark.asyncio
    async def test_clear_drops_everything(self, store, contact_item, chat_item):
        store.add_contact(contact_item)
        await store.flush()
        store.add_chat(chat_item)

        store.clear()

        assert store.get_contact(contact_item["id"]) is None
        assert store.coordinator.buffer_depths()["chats"] == 0
        assert len(store.cache) == 0

    def test_stats_shape(self, store):
        stats = store.stats()

        assert stats["instance_id"] == "test"
        assert set(stats["records"]) == {c.value for c in Category}
        assert "hit_rate" in stats["cache"]
        assert stats["batch"]["total_processed"] == 0
