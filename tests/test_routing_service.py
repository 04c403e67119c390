from unittest.mock import AsyncMock, Mock

import pytest

from mira.services.routing_service import ForwardTicket, ForwardTicketStore, Router
from mira.services.staff_directory import StaffDirectoryCache, StaffMember
from tests.conftest import CLIENT, STAFF, FakeClock, FakeTransport, make_message

STAFF_2 = "94770000009@s.whatsapp.net"


def make_router(members, transport=None, clock=None):
    clock = clock or FakeClock()
    directory = Mock(spec=StaffDirectoryCache)
    directory.members = AsyncMock(return_value=members)
    tickets = ForwardTicketStore(clock=clock)
    ids = iter(f"msg_{i}" for i in range(100))
    router = Router(directory, tickets, transport or FakeTransport(), clock=clock, id_factory=lambda: next(ids))
    return router, tickets


def make_ticket(ticket_id, created_at, staff_id=STAFF, text="Need invoice for May"):
    return ForwardTicket(
        id=ticket_id,
        client_id=CLIENT,
        staff_id=staff_id,
        staff_name="Nimal",
        department="Accounts",
        client_display_name="Client",
        original_text=text,
        created_at=created_at,
    )


class TestRoute:
    @pytest.mark.asyncio
    async def test_forwards_to_every_member_with_fresh_ids(self):
        transport = FakeTransport()
        router, tickets = make_router(
            [StaffMember("Nimal", STAFF), StaffMember("Saman", STAFF_2)], transport=transport
        )

        routed = await router.route(make_message("Need invoice for May", display_name="Ruwan"), "Accounts", "Need invoice for May")

        assert routed is True
        assert len(tickets) == 2
        assert {t.id for t in tickets.export()} == {"msg_0", "msg_1"}
        forward = transport.texts_to(STAFF)[0]
        assert "NEW ACCOUNTS REQUEST" in forward
        assert "Ruwan" in forward
        assert "Need invoice for May" in forward

    @pytest.mark.asyncio
    async def test_no_members(self):
        router, tickets = make_router([])
        assert await router.route(make_message("hi"), "Marketing", "hi") is False
        assert len(tickets) == 0

    @pytest.mark.asyncio
    async def test_ticket_only_for_successful_sends(self):
        transport = FakeTransport()
        transport.failing_recipients.add(STAFF_2)
        router, tickets = make_router([StaffMember("Nimal", STAFF), StaffMember("Saman", STAFF_2)], transport=transport)

        assert await router.route(make_message("x"), "Accounts", "Need invoice for May") is True
        assert [t.staff_id for t in tickets.export()] == [STAFF]

    @pytest.mark.asyncio
    async def test_all_sends_fail(self):
        router, tickets = make_router([StaffMember("Nimal", STAFF)], transport=FakeTransport(ok=False))
        assert await router.route(make_message("x"), "Accounts", "Need invoice for May") is False
        assert len(tickets) == 0


class TestCorrelateReply:
    @pytest.mark.asyncio
    async def test_reply_forwarded_once(self):
        transport = FakeTransport()
        router, tickets = make_router([StaffMember("Nimal", STAFF)], transport=transport)
        await router.route(make_message("Need invoice for May"), "Accounts", "Need invoice for May")
        forward = transport.texts_to(STAFF)[0]

        reply = make_message("Sent to your email", sender=STAFF, has_quote=True, quoted_text=forward)
        assert await router.correlate_reply(reply) is True
        relayed = transport.texts_to(CLIENT)
        assert len(relayed) == 1
        assert "Sent to your email" in relayed[0]
        assert "RESPONSE FROM ACCOUNTS DEPARTMENT" in relayed[0]

        assert await router.correlate_reply(reply) is None
        assert len(transport.texts_to(CLIENT)) == 1
        assert len(tickets) == 0

    @pytest.mark.asyncio
    async def test_undelivered_reply_keeps_ticket_open(self):
        transport = FakeTransport()
        router, tickets = make_router([StaffMember("Nimal", STAFF)], transport=transport)
        await router.route(make_message("Need invoice for May"), "Accounts", "Need invoice for May")
        forward = transport.texts_to(STAFF)[0]
        reply = make_message("Sent to your email", sender=STAFF, has_quote=True, quoted_text=forward)

        transport.failing_recipients.add(CLIENT)
        assert await router.correlate_reply(reply) is False
        assert [t.id for t in tickets.export()] == ["msg_0"]

        transport.failing_recipients.clear()
        assert await router.correlate_reply(reply) is True
        assert len(transport.texts_to(CLIENT)) == 1
        assert len(tickets) == 0

    @pytest.mark.asyncio
    async def test_transport_error_restores_ticket(self):
        transport = FakeTransport()
        router, tickets = make_router([StaffMember("Nimal", STAFF)], transport=transport)
        await router.route(make_message("Need invoice for May"), "Accounts", "Need invoice for May")
        forward = transport.texts_to(STAFF)[0]
        transport.send_text = AsyncMock(side_effect=RuntimeError("socket closed"))

        with pytest.raises(RuntimeError):
            await router.correlate_reply(make_message("ok", sender=STAFF, has_quote=True, quoted_text=forward))
        assert len(tickets) == 1

    @pytest.mark.asyncio
    async def test_requires_quote(self):
        router, tickets = make_router([])
        tickets.add(make_ticket("msg_a", FakeClock().now))
        assert await router.correlate_reply(make_message("ok", sender=STAFF)) is None

    @pytest.mark.asyncio
    async def test_other_staff_cannot_claim(self):
        router, tickets = make_router([])
        tickets.add(make_ticket("msg_a", FakeClock().now))
        reply = make_message("ok", sender=STAFF_2, has_quote=True, quoted_text="Need invoice for May")
        assert await router.correlate_reply(reply) is None
        assert len(tickets) == 1


class TestForwardTicketStore:
    def test_newest_match_first(self):
        clock = FakeClock()
        store = ForwardTicketStore(clock=clock)
        store.add(make_ticket("older", clock.now))
        clock.advance(10)
        store.add(make_ticket("newer", clock.now))

        assert store.find_for_reply(STAFF, "> Need invoice for May").id == "newer"

    def test_restore_keeps_creation_order(self):
        clock = FakeClock()
        store = ForwardTicketStore(clock=clock)
        older = make_ticket("older", clock.now)
        store.add(older)
        clock.advance(10)
        store.add(make_ticket("newer", clock.now))

        store.remove("older")
        store.restore(older)

        assert [t.id for t in store.export()] == ["older", "newer"]
        assert store.find_for_reply(STAFF, "> Need invoice for May").id == "newer"

    def test_prefix_of_fifty_chars(self):
        store = ForwardTicketStore(clock=FakeClock())
        long_text = "A" * 50 + " tail that is not quoted"
        store.add(make_ticket("t1", FakeClock().now, text=long_text))
        assert store.find_for_reply(STAFF, "A" * 50).id == "t1"

    def test_cleanup_after_ttl(self):
        clock = FakeClock()
        store = ForwardTicketStore(ttl_seconds=24 * 60 * 60, clock=clock)
        store.add(make_ticket("old", clock.now))
        clock.advance(24 * 60 * 60 + 1)
        store.add(make_ticket("new", clock.now))

        assert store.cleanup() == 1
        assert [t.id for t in store.export()] == ["new"]

    def test_load_keeps_creation_order(self):
        clock = FakeClock()
        first = make_ticket("first", clock.now)
        clock.advance(5)
        second = make_ticket("second", clock.now)

        store = ForwardTicketStore(clock=clock)
        store.load([second, first])
        assert [t.id for t in store.export()] == ["first", "second"]
