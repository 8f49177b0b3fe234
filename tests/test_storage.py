from datetime import datetime, timedelta, timezone

from billing_copilot.core.types import AuditStatus, MessageRole
from billing_copilot.storage.audit_repo import AuditRepository
from billing_copilot.storage.conversation_repo import ConversationRepository
from billing_copilot.storage.models import DEFAULT_CONVERSATION_TITLE, text_block
from billing_copilot.storage.pending_repo import PendingToolCallRepository
from billing_copilot.storage.usage_repo import UsageRepository, period_key, period_label
from tests.fakes import USER_ID


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


START = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


async def test_db_init_creates_tables(db):
    cursor = await db.conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
    tables = {row["name"] for row in await cursor.fetchall()}
    assert {
        "conversations",
        "messages",
        "pending_tool_calls",
        "usage_stats",
        "audit_log",
        "clients",
        "products",
        "documents",
    }.issubset(tables)


async def test_pending_call_is_consumed_once(db):
    repo = PendingToolCallRepository(db, clock=FakeClock(START))
    created = await repo.create(USER_ID, "conv-1", "create_client", "Créer le client Jean", {"display_name": "Jean"})

    consumed = await repo.consume(USER_ID, created.id)
    again = await repo.consume(USER_ID, created.id)

    assert consumed is not None
    assert consumed.tool_name == "create_client"
    assert consumed.arguments == {"display_name": "Jean"}
    assert consumed.expires_at == START + timedelta(minutes=30)
    assert again is None


async def test_pending_call_is_scoped_to_its_user(db):
    repo = PendingToolCallRepository(db, clock=FakeClock(START))
    created = await repo.create(USER_ID, "conv-1", "create_client", "Créer", {})

    assert await repo.consume("someone-else", created.id) is None
    assert await repo.consume(USER_ID, created.id) is not None


async def test_pending_call_is_only_consumed_from_its_conversation(db):
    repo = PendingToolCallRepository(db, clock=FakeClock(START))
    created = await repo.create(USER_ID, "conv-1", "create_client", "Créer", {})

    assert await repo.consume(USER_ID, created.id, "conv-2") is None
    found = await repo.get(USER_ID, created.id)
    assert found is not None
    assert found.conversation_id == "conv-1"
    assert await repo.get("someone-else", created.id) is None

    consumed = await repo.consume(USER_ID, created.id, "conv-1")

    assert consumed is not None
    assert await repo.get(USER_ID, created.id) is None


async def test_expired_pending_call_cannot_be_consumed(db):
    clock = FakeClock(START)
    repo = PendingToolCallRepository(db, ttl=timedelta(minutes=5), clock=clock)
    created = await repo.create(USER_ID, "conv-1", "create_client", "Créer", {})

    clock.now = START + timedelta(minutes=6)

    assert await repo.get_active(USER_ID, "conv-1") is None
    assert await repo.get(USER_ID, created.id) is None
    assert await repo.consume(USER_ID, created.id) is None
    assert await repo.consume(USER_ID, "unknown") is None


async def test_get_active_returns_newest_pending_call(db):
    clock = FakeClock(START)
    repo = PendingToolCallRepository(db, clock=clock)
    await repo.create(USER_ID, "conv-1", "create_client", "Premier", {})
    clock.now = START + timedelta(seconds=10)
    newest = await repo.create(USER_ID, "conv-1", "create_product", "Second", {})

    active = await repo.get_active(USER_ID, "conv-1")

    assert active is not None
    assert active.id == newest.id
    assert await repo.get_active(USER_ID, "conv-2") is None


async def test_purge_expired_removes_stale_rows(db):
    clock = FakeClock(START)
    repo = PendingToolCallRepository(db, ttl=timedelta(minutes=1), clock=clock)
    await repo.create(USER_ID, "conv-1", "create_client", "Ancien", {})
    clock.now = START + timedelta(minutes=2)
    fresh = await repo.create(USER_ID, "conv-1", "create_client", "Récent", {})

    assert await repo.purge_expired() == 1
    assert await repo.consume(USER_ID, fresh.id) is not None


async def test_usage_counts_and_locks_at_limit(db):
    repo = UsageRepository(db, monthly_limit=2, clock=FakeClock(START))

    await repo.increment(USER_ID, message_count=1, tool_invocations=2, tokens=120)
    summary = await repo.get_usage(USER_ID)
    assert (summary.used, summary.remaining, summary.locked) == (1, 1, False)
    assert summary.period_label == "octobre 2026"

    await repo.increment(USER_ID, message_count=1)
    summary = await repo.get_usage(USER_ID)
    assert summary.locked is True
    assert summary.remaining == 0
    assert await repo.counters(USER_ID) == {"message_count": 2, "tool_invocation_count": 2, "token_count": 120}


async def test_usage_period_rolls_over(db):
    clock = FakeClock(START)
    repo = UsageRepository(db, monthly_limit=1, clock=clock)
    await repo.increment(USER_ID, message_count=1)
    assert (await repo.get_usage(USER_ID)).locked is True

    clock.now = datetime(2026, 11, 1, tzinfo=timezone.utc)

    summary = await repo.get_usage(USER_ID)
    assert summary.used == 0
    assert summary.locked is False


def test_period_helpers():
    assert period_key(START) == "2026-10"
    assert period_label(datetime(2027, 2, 1)) == "février 2027"


async def test_ensure_conversation_creates_and_reuses(db):
    repo = ConversationRepository(db)
    created = await repo.ensure_conversation(USER_ID)

    same = await repo.ensure_conversation(USER_ID, created.id)
    foreign = await repo.ensure_conversation("other-user", created.id)

    assert same.id == created.id
    assert created.title == DEFAULT_CONVERSATION_TITLE
    assert foreign.id != created.id


async def test_messages_keep_append_order_and_metadata(db):
    repo = ConversationRepository(db)
    conversation = await repo.ensure_conversation(USER_ID)
    await repo.append_message(USER_ID, conversation.id, MessageRole.USER, [text_block("Bonjour")])
    await repo.append_message(
        USER_ID,
        conversation.id,
        MessageRole.TOOL,
        [text_block("Client créé")],
        tool_name="create_client",
        tool_call_id="call-1",
        metadata={"data": {"client_id": "c-1"}},
    )

    history = await repo.load_messages(USER_ID, conversation.id)

    assert [message.role for message in history] == [MessageRole.USER, MessageRole.TOOL]
    assert history[1].metadata == {"data": {"client_id": "c-1"}}
    assert history[1].tool_call_id == "call-1"
    assert await repo.append_message(USER_ID, conversation.id, MessageRole.ASSISTANT, []) is None


async def test_title_is_only_replaced_once(db):
    repo = ConversationRepository(db)
    conversation = await repo.ensure_conversation(USER_ID)

    await repo.touch_conversation_title(USER_ID, conversation.id, "  " + "Facture " * 20)
    await repo.touch_conversation_title(USER_ID, conversation.id, "Autre titre")

    reloaded = await repo.ensure_conversation(USER_ID, conversation.id)
    assert reloaded.title.startswith("Facture Facture")
    assert len(reloaded.title) == 80


async def test_recent_tool_messages_newest_first(db):
    repo = ConversationRepository(db)
    conversation = await repo.ensure_conversation(USER_ID)
    for index in range(3):
        await repo.append_message(
            USER_ID,
            conversation.id,
            MessageRole.TOOL,
            [text_block(f"résultat {index}")],
            tool_name="create_client",
            metadata={"index": index},
        )
    await repo.append_message(
        USER_ID, conversation.id, MessageRole.TOOL, [text_block("autre")], tool_name="create_product", metadata={}
    )

    recent = await repo.recent_tool_messages(USER_ID, conversation.id, "create_client", limit=2)

    assert [message.metadata["index"] for message in recent] == [2, 1]


async def test_audit_entries_are_recorded(db):
    repo = AuditRepository(db)
    await repo.log_audit(
        tool_name="create_client",
        action_label="Créer un client",
        user_id=USER_ID,
        conversation_id="conv-1",
        payload={"display_name": "Jean"},
        result=None,
        status=AuditStatus.ERROR,
        error_message="Un client avec l'adresse jean@example.tn existe déjà.",
    )

    entries = await repo.list_entries(USER_ID)

    assert entries == [
        {
            "tool_name": "create_client",
            "action_label": "Créer un client",
            "status": "ERROR",
            "error_message": "Un client avec l'adresse jean@example.tn existe déjà.",
            "payload": {"display_name": "Jean"},
            "result": None,
        }
    ]
