import secrets
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Callable, Iterable, Optional

from mira.logging_config import get_logger, mask_sender
from mira.services.message_service import format_forward_message, format_staff_reply
from mira.services.staff_directory import StaffDirectoryCache
from mira.services.transport.base import Transport

if TYPE_CHECKING:
    from mira.services.pipeline import InboundMessage

logger = get_logger("routing_service")

DEFAULT_TICKET_TTL_SECONDS = 24 * 60 * 60
CORRELATION_PREFIX_CHARS = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_ticket_id() -> str:
    return f"msg_{int(time.time() * 1000)}_{secrets.token_hex(5)}"


@dataclass
class ForwardTicket:
    id: str
    client_id: str
    staff_id: str
    staff_name: str
    department: str
    client_display_name: str
    original_text: str
    created_at: datetime

    def matches_reply(self, staff_id: str, quoted_text: str) -> bool:
        return self.staff_id == staff_id and self.original_text[:CORRELATION_PREFIX_CHARS] in quoted_text


class ForwardTicketStore:
    """Open forwards keyed by ticket id, in creation order."""

    def __init__(self, ttl_seconds: float = DEFAULT_TICKET_TTL_SECONDS, clock: Callable[[], datetime] = _utcnow):
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock
        self._tickets: dict[str, ForwardTicket] = {}
        self._lock = threading.RLock()

    def add(self, ticket: ForwardTicket) -> None:
        with self._lock:
            self._tickets[ticket.id] = ticket

    def find_for_reply(self, staff_id: str, quoted_text: str) -> Optional[ForwardTicket]:
        """Newest open ticket for this staff member whose message prefix is quoted."""
        with self._lock:
            for ticket in reversed(list(self._tickets.values())):
                if ticket.matches_reply(staff_id, quoted_text):
                    return replace(ticket)
        return None

    def restore(self, ticket: ForwardTicket) -> None:
        """Put a claimed ticket back in creation order."""
        with self._lock:
            self._tickets[ticket.id] = ticket
            ordered = sorted(self._tickets.values(), key=lambda t: t.created_at)
            self._tickets = {t.id: t for t in ordered}

    def remove(self, ticket_id: str) -> bool:
        with self._lock:
            return self._tickets.pop(ticket_id, None) is not None

    def cleanup(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [tid for tid, ticket in self._tickets.items() if now - ticket.created_at > self.ttl]
            for tid in expired:
                del self._tickets[tid]

        if expired:
            logger.info("Cleaned expired forward tickets", extra={"context": {"removed": len(expired)}})
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tickets)

    def export(self) -> list[ForwardTicket]:
        with self._lock:
            return [replace(ticket) for ticket in self._tickets.values()]

    def load(self, tickets: Iterable[ForwardTicket]) -> None:
        with self._lock:
            ordered = sorted(tickets, key=lambda t: t.created_at)
            self._tickets = {ticket.id: ticket for ticket in ordered}


class Router:
    """Forwards client requests to department staff and relays their quoted replies back."""

    def __init__(
        self,
        directory: StaffDirectoryCache,
        tickets: ForwardTicketStore,
        transport: Transport,
        tz_name: str = "Asia/Colombo",
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = generate_ticket_id,
    ):
        self.directory = directory
        self.tickets = tickets
        self.transport = transport
        self.tz_name = tz_name
        self._clock = clock
        self._id_factory = id_factory

    async def route(self, message: "InboundMessage", department: str, text: str) -> bool:
        members = await self.directory.members(department)
        if not members:
            logger.warning("No staff found for department", extra={"context": {"department": department}})
            return False

        client_number = message.sender.split("@")[0]
        client_name = message.display_name or "Client"
        delivered = 0

        for member in members:
            ticket_id = self._id_factory()
            now = self._clock()
            body = format_forward_message(
                department=department,
                client_name=client_name,
                client_number=client_number,
                ticket_id=ticket_id,
                text=text,
                sent_at=now,
                tz_name=self.tz_name,
            )
            if not await self.transport.send_text(member.number, body):
                logger.warning(
                    "Failed to forward to staff member",
                    extra={"context": {"department": department, "staff": member.name}},
                )
                continue

            self.tickets.add(
                ForwardTicket(
                    id=ticket_id,
                    client_id=message.sender,
                    staff_id=member.number,
                    staff_name=member.name,
                    department=department,
                    client_display_name=client_name,
                    original_text=text,
                    created_at=now,
                )
            )
            delivered += 1
            logger.info(
                "Forwarded to staff member",
                extra={"context": {"department": department, "staff": member.name, "ticket_id": ticket_id}},
            )

        return delivered > 0

    async def correlate_reply(self, message: "InboundMessage") -> Optional[bool]:
        """Relay a staff member's quoted reply to the client it answers.

        Returns None when the message answers no open ticket, otherwise whether the
        client received the reply. A ticket is consumed only by a delivered reply.
        """
        if not message.has_quote or not message.quoted_text:
            return None

        ticket = self.tickets.find_for_reply(message.sender, message.quoted_text)
        if ticket is None:
            return None

        # Claim before sending so a concurrent duplicate reply cannot reuse the ticket.
        if not self.tickets.remove(ticket.id):
            return None

        body = format_staff_reply(
            department=ticket.department,
            staff_name=ticket.staff_name,
            reply_text=message.text,
            sent_at=self._clock(),
            tz_name=self.tz_name,
        )
        sent = False
        try:
            sent = await self.transport.send_text(ticket.client_id, body)
        finally:
            if not sent:
                self.tickets.restore(ticket)

        if not sent:
            logger.warning(
                "Staff reply not delivered, ticket kept open",
                extra={"context": {"ticket_id": ticket.id, "client": mask_sender(ticket.client_id)}},
            )
            return False

        logger.info(
            "Staff reply relayed",
            extra={
                "context": {
                    "ticket_id": ticket.id,
                    "client": mask_sender(ticket.client_id),
                    "staff": ticket.staff_name,
                }
            },
        )
        return True
