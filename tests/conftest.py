# ==============================================
# Pytest Configuration and Fixtures
# ==============================================
#
# Shared fixtures for all tests.
#
# FIXTURES:
# ---------
# - clock            → FakeClock, advanced by hand for TTL / staleness tests
# - batch_config     → every category, batch of 3, long flush interval
# - app_config       → AppConfig around batch_config, metrics off
# - message_item / chat_item / group_item / contact_item /
#   receipt_item / reaction_item → raw camelCase items as they
#   arrive from the event source
#
# NOTES:
# ------
# - Async tests are marked with @pytest.mark.asyncio
# - Timing tests use real intervals of tens of milliseconds
# ==============================================

import pytest

from batchcache.categories import Category
from batchcache.config import AppConfig, BatchConfig, CategoryConfig, MetricsConfig

GROUP_JID = "120363040000000000@g.us"
ALICE_JID = "5511900000001@s.whatsapp.net"
BOB_JID = "5511900000002@s.whatsapp.net"


class FakeClock:
    """Callable clock whose time only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def batch_config():
    return BatchConfig(
        categories={
            category: CategoryConfig(batch_size=3, flush_interval_seconds=60.0, cache_ttl_seconds=300.0)
            for category in Category
        },
        retry_delay_seconds=60.0,
    )


@pytest.fixture
def app_config(batch_config):
    return AppConfig(batch=batch_config, metrics=MetricsConfig(enabled=False), instance_id="test")


def _make_message(message_id: str, remote_jid: str = ALICE_JID, from_me: bool = False,
                 timestamp=1_700_000_000, text: str = "hello", participant=None) -> dict:
    key = {"remoteJid": remote_jid, "id": message_id, "fromMe": from_me}
    if participant:
        key["participant"] = participant
    return {
        "key": key,
        "pushName": "Alice",
        "messageTimestamp": timestamp,
        "message": {"conversation": text},
    }


@pytest.fixture
def message_item():
    return _make_message("MSG1")


@pytest.fixture
def chat_item():
    return {
        "id": ALICE_JID,
        "name": "Alice",
        "unreadCount": 2,
        "conversationTimestamp": 1_700_000_000,
        "archived": False,
        "muteEndTime": 0,
    }


@pytest.fixture
def group_item():
    return {
        "id": GROUP_JID,
        "subject": "Weekend plans",
        "owner": ALICE_JID,
        "creation": 1_699_000_000,
        "desc": "Planning",
        "participants": [{"id": ALICE_JID, "admin": "superadmin"}, {"id": BOB_JID}],
        "announce": False,
        "restrict": True,
    }


@pytest.fixture
def contact_item():
    return {"id": BOB_JID, "notify": "Bobby", "status": "available"}


@pytest.fixture
def receipt_item():
    return {
        "key": {"remoteJid": GROUP_JID, "id": "MSG1"},
        "userJid": BOB_JID,
        "type": "read",
        "timestamp": 1_700_000_100,
    }


@pytest.fixture
def reaction_item():
    return {
        "key": {"remoteJid": GROUP_JID, "id": "MSG1", "participant": BOB_JID},
        "reaction": {"text": "👍"},
    }


@pytest.fixture
def make_message():
    """Factory for raw message items: make_message(id, remote_jid=..., from_me=...)."""
    return _make_message
