"""Tests for session creation, adoption and replacement."""

from __future__ import annotations

import asyncio

import pytest

from chatsync.api.models import Customer, Session
from chatsync.errors import ServerError, SessionError
from chatsync.session import NoticeKind, SessionLifecycle, SessionNotice, SessionState
from tests.fakes import make_client, settle


def lifecycle_for(client, customer_id: str | None = None) -> tuple[SessionLifecycle, list[SessionNotice]]:
    lifecycle = SessionLifecycle(client, "agent-1", customer_id)
    notices: list[SessionNotice] = []
    lifecycle.subscribe(notices.append)
    return lifecycle, notices


@pytest.fixture
def client():
    client = make_client()
    client.create_session.return_value = Session(id="session-1", agent_id="agent-1")
    client.ensure_customer.return_value = Customer(id="cust-42", name="alice")
    return client


# ====================================================================
# Creation
# ====================================================================


class TestCreateSession:

    @pytest.mark.asyncio
    async def test_guest_session_is_anonymous(self, client) -> None:
        lifecycle, notices = lifecycle_for(client, "guest")

        session_id = await lifecycle.create_session()

        assert session_id == "session-1"
        assert lifecycle.state is SessionState.ACTIVE
        client.ensure_customer.assert_not_awaited()
        client.create_session.assert_awaited_once_with(
            agent_id="agent-1", customer_id=None, title=None,
        )
        assert [n.kind for n in notices] == [NoticeKind.CREATED]
        assert notices[0].session_id == "session-1"

    @pytest.mark.asyncio
    async def test_empty_customer_is_anonymous(self, client) -> None:
        lifecycle, _ = lifecycle_for(client, "  ")
        await lifecycle.create_session()
        client.ensure_customer.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_customer_is_bound(self, client) -> None:
        lifecycle, _ = lifecycle_for(client, "alice")

        await lifecycle.create_session(title="Support")

        client.ensure_customer.assert_awaited_once_with("alice")
        client.create_session.assert_awaited_once_with(
            agent_id="agent-1", customer_id="cust-42", title="Support",
        )

    @pytest.mark.asyncio
    async def test_customer_lookup_failure_falls_back_to_guest(self, client) -> None:
        client.ensure_customer.side_effect = ServerError("HTTP 500: {}", 500)
        lifecycle, _ = lifecycle_for(client, "alice")

        session_id = await lifecycle.create_session()

        assert session_id == "session-1"
        assert client.create_session.await_args.kwargs["customer_id"] is None

    @pytest.mark.asyncio
    async def test_first_message_is_posted(self, client) -> None:
        lifecycle, _ = lifecycle_for(client)

        await lifecycle.create_session(first_message="Hello")

        client.create_event.assert_awaited_once_with("session-1", "Hello")

    @pytest.mark.asyncio
    async def test_first_message_failure_keeps_session(self, client) -> None:
        client.create_event.side_effect = ServerError("HTTP 500: {}", 500)
        lifecycle, _ = lifecycle_for(client)

        assert await lifecycle.create_session(first_message="Hello") == "session-1"
        assert lifecycle.state is SessionState.ACTIVE

    @pytest.mark.asyncio
    async def test_failure_publishes_and_raises(self, client) -> None:
        client.create_session.side_effect = ServerError('HTTP 500: {"detail": "down"}', 500)
        lifecycle, notices = lifecycle_for(client)

        with pytest.raises(ServerError):
            await lifecycle.create_session()

        assert lifecycle.state is SessionState.IDLE
        assert lifecycle.session_id is None
        assert lifecycle.error == 'Failed to create session: HTTP 500: {"detail": "down"}'
        assert notices[-1].kind is NoticeKind.FAILED
        assert notices[-1].error == lifecycle.error

    @pytest.mark.asyncio
    async def test_retry_after_failure(self, client) -> None:
        client.create_session.side_effect = [
            ServerError("HTTP 500: {}", 500),
            Session(id="session-2"),
        ]
        lifecycle, _ = lifecycle_for(client)

        with pytest.raises(ServerError):
            await lifecycle.create_session()
        assert await lifecycle.create_session() == "session-2"
        assert lifecycle.error == ""

    @pytest.mark.asyncio
    async def test_concurrent_create_returns_none(self, client) -> None:
        gate = asyncio.Event()

        async def slow_create(**kwargs):
            await gate.wait()
            return Session(id="session-1")

        client.create_session.side_effect = slow_create
        lifecycle, _ = lifecycle_for(client)

        first = asyncio.create_task(lifecycle.create_session())
        await settle()
        assert lifecycle.is_creating

        assert await lifecycle.create_session() is None
        gate.set()
        assert await first == "session-1"
        assert client.create_session.await_count == 1

    @pytest.mark.asyncio
    async def test_replaced_while_creating_discards_session(self, client) -> None:
        gate = asyncio.Event()

        async def slow_create(**kwargs):
            await gate.wait()
            return Session(id="stale-session")

        client.create_session.side_effect = slow_create
        lifecycle, notices = lifecycle_for(client)

        pending = asyncio.create_task(lifecycle.create_session())
        await settle()
        assert lifecycle.replace_context(agent_id="agent-2") is True
        gate.set()

        assert await pending is None
        assert lifecycle.session_id is None
        assert lifecycle.state is SessionState.IDLE
        assert [n.kind for n in notices] == [NoticeKind.REPLACED]

    @pytest.mark.asyncio
    async def test_cancelled_creation_allows_retry(self, client) -> None:
        gate = asyncio.Event()

        async def hanging_create(**kwargs):
            await gate.wait()
            return Session(id="never")

        client.create_session.side_effect = hanging_create
        lifecycle, notices = lifecycle_for(client)

        pending = asyncio.create_task(lifecycle.create_session())
        await settle()
        assert lifecycle.is_creating
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending

        assert lifecycle.state is SessionState.IDLE
        assert notices == []

        client.create_session.side_effect = None
        client.create_session.return_value = Session(id="session-2")
        assert await lifecycle.create_session() == "session-2"
        assert lifecycle.state is SessionState.ACTIVE

    @pytest.mark.asyncio
    async def test_cancelled_during_customer_lookup_allows_retry(self, client) -> None:
        gate = asyncio.Event()

        async def hanging_lookup(identifier):
            await gate.wait()
            return Customer(id="cust-42", name=identifier)

        client.ensure_customer.side_effect = hanging_lookup
        lifecycle, _ = lifecycle_for(client, customer_id="alice")

        pending = asyncio.create_task(lifecycle.create_session())
        await settle()
        pending.cancel()
        with pytest.raises(asyncio.CancelledError):
            await pending

        assert lifecycle.state is SessionState.IDLE
        client.create_session.assert_not_awaited()

        client.ensure_customer.side_effect = None
        assert await lifecycle.create_session() == "session-1"

    @pytest.mark.asyncio
    async def test_closed_lifecycle_refuses_creation(self, client) -> None:
        lifecycle, _ = lifecycle_for(client)
        lifecycle.close()

        with pytest.raises(SessionError):
            await lifecycle.create_session()


# ====================================================================
# Adoption, replacement, close
# ====================================================================


class TestTransitions:

    def test_adopt_existing_session(self, client) -> None:
        lifecycle, notices = lifecycle_for(client)

        lifecycle.adopt("existing-1")

        assert lifecycle.session_id == "existing-1"
        assert lifecycle.state is SessionState.ACTIVE
        assert notices[0].kind is NoticeKind.ADOPTED
        assert lifecycle.key == 0

    def test_adopt_same_session_is_noop(self, client) -> None:
        lifecycle, notices = lifecycle_for(client)
        lifecycle.adopt("existing-1")
        lifecycle.adopt("existing-1")
        assert len(notices) == 1

    def test_adopt_other_session_bumps_key(self, client) -> None:
        lifecycle, notices = lifecycle_for(client)
        lifecycle.adopt("existing-1")
        lifecycle.adopt("existing-2")

        assert lifecycle.key == 1
        assert notices[-1].key == 1
        assert notices[-1].session_id == "existing-2"

    def test_adopt_empty_id_raises(self, client) -> None:
        lifecycle, _ = lifecycle_for(client)
        with pytest.raises(SessionError):
            lifecycle.adopt("")

    def test_replace_context_unchanged(self, client) -> None:
        lifecycle, notices = lifecycle_for(client, "alice")
        lifecycle.adopt("existing-1")

        assert lifecycle.replace_context(agent_id="agent-1", customer_id="alice") is False
        assert lifecycle.session_id == "existing-1"
        assert len(notices) == 1

    def test_replace_context_invalidates_session(self, client) -> None:
        lifecycle, notices = lifecycle_for(client, "alice")
        lifecycle.adopt("existing-1")

        assert lifecycle.replace_context(customer_id="bob") is True

        assert lifecycle.session_id is None
        assert lifecycle.state is SessionState.IDLE
        assert lifecycle.customer_id == "bob"
        assert lifecycle.agent_id == "agent-1"
        assert notices[-1] == SessionNotice(NoticeKind.REPLACED, None, 1)

    def test_replace_context_without_session(self, client) -> None:
        lifecycle, notices = lifecycle_for(client)
        assert lifecycle.replace_context(agent_id="agent-2") is True
        assert notices == []
        assert lifecycle.key == 0

    def test_close_is_terminal(self, client) -> None:
        lifecycle, notices = lifecycle_for(client)
        lifecycle.adopt("existing-1")

        lifecycle.close()
        lifecycle.close()

        assert lifecycle.state is SessionState.CLOSED
        assert lifecycle.session_id is None
        assert [n.kind for n in notices] == [NoticeKind.ADOPTED, NoticeKind.CLOSED]
        with pytest.raises(SessionError):
            lifecycle.adopt("existing-2")

    def test_unsubscribe(self, client) -> None:
        lifecycle = SessionLifecycle(client, "agent-1")
        seen: list = []
        unsubscribe = lifecycle.subscribe(seen.append)
        unsubscribe()
        lifecycle.adopt("existing-1")
        assert seen == []

    def test_failing_observer_does_not_block_others(self, client) -> None:
        lifecycle = SessionLifecycle(client, "agent-1")
        seen: list = []

        def broken(notice) -> None:
            raise RuntimeError("observer bug")

        lifecycle.subscribe(broken)
        lifecycle.subscribe(seen.append)
        lifecycle.adopt("existing-1")

        assert len(seen) == 1


# ====================================================================
# Session directory
# ====================================================================


class TestSessionDirectory:

    @pytest.mark.asyncio
    async def test_list_sessions_for_guest(self, client) -> None:
        lifecycle, _ = lifecycle_for(client, "guest")
        await lifecycle.list_sessions()
        client.list_sessions.assert_awaited_once_with(None)

    @pytest.mark.asyncio
    async def test_list_sessions_for_customer(self, client) -> None:
        lifecycle, _ = lifecycle_for(client, "alice")
        await lifecycle.list_sessions()
        client.list_sessions.assert_awaited_once_with("alice")

    @pytest.mark.asyncio
    async def test_delete_active_session_replaces_it(self, client) -> None:
        lifecycle, notices = lifecycle_for(client)
        lifecycle.adopt("existing-1")

        await lifecycle.delete_session("existing-1")

        client.delete_session.assert_awaited_once_with("existing-1")
        assert lifecycle.session_id is None
        assert notices[-1].kind is NoticeKind.REPLACED

    @pytest.mark.asyncio
    async def test_delete_other_session_keeps_active(self, client) -> None:
        lifecycle, _ = lifecycle_for(client)
        lifecycle.adopt("existing-1")

        await lifecycle.delete_session("old-session")

        assert lifecycle.session_id == "existing-1"
