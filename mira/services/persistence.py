"""Snapshot repository: durable copies of the in-memory stores.

Each flush replaces one table's content inside a single transaction, so a
reader (or a restart) sees either the previous snapshot or the new one.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mira.errors import PersistenceFailure
from mira.logging_config import get_logger
from mira.models import AnalyticsSnapshotRecord, DedupEntry, ForwardTicketRecord, UserStateRecord
from mira.services.analytics_service import AnalyticsService
from mira.services.conversation_service import ConversationStateController, UserState
from mira.services.dedup_service import DedupCache
from mira.services.routing_service import ForwardTicket, ForwardTicketStore

if TYPE_CHECKING:
    from mira.services.pipeline import BotContext

logger = get_logger("persistence")

ANALYTICS_SNAPSHOT_ID = 1


def _ensure_timezone(dt):
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


class StateRepository:
    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def _replace_table(self, table: str, model, rows: list) -> int:
        db = self.session_factory()
        try:
            db.query(model).delete(synchronize_session=False)
            db.add_all(rows)
            db.commit()
            return len(rows)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Snapshot flush failed", extra={"context": {"table": table, "error": str(e)}})
            raise PersistenceFailure(f"Failed to flush {table}: {e}") from e
        finally:
            db.close()

    def flush_dedup(self, cache: DedupCache) -> int:
        rows = [
            DedupEntry(sender=sender, content_hash=content_hash, first_seen_at=seen)
            for sender, content_hash, seen in cache.export()
        ]
        return self._replace_table("dedup_entries", DedupEntry, rows)

    def flush_users(self, conversations: ConversationStateController) -> int:
        rows = [
            UserStateRecord(
                sender=user.sender,
                first_seen_at=user.first_seen_at,
                last_seen_at=user.last_seen_at,
                message_count=user.message_count,
                last_welcome_at=user.last_welcome_at,
                active=user.active,
                last_bot_response_at=user.last_bot_response_at,
                ignored_count=user.ignored_count,
            )
            for user in conversations.export()
        ]
        return self._replace_table("user_states", UserStateRecord, rows)

    def flush_tickets(self, tickets: ForwardTicketStore) -> int:
        rows = [
            ForwardTicketRecord(
                id=ticket.id,
                client_id=ticket.client_id,
                staff_id=ticket.staff_id,
                staff_name=ticket.staff_name,
                department=ticket.department,
                client_display_name=ticket.client_display_name,
                original_text=ticket.original_text,
                created_at=ticket.created_at,
            )
            for ticket in tickets.export()
        ]
        return self._replace_table("forward_tickets", ForwardTicketRecord, rows)

    def flush_analytics(self, analytics: AnalyticsService) -> int:
        row = AnalyticsSnapshotRecord(
            id=ANALYTICS_SNAPSHOT_ID,
            payload=AnalyticsService.state_to_dict(analytics.export()),
            saved_at=datetime.now(timezone.utc),
        )
        return self._replace_table("analytics_snapshots", AnalyticsSnapshotRecord, [row])

    def flush_all(self, context: "BotContext") -> dict:
        """Flush every store. A failing table is logged and skipped; the others still flush."""
        results = {}
        for name, flush, store in (
            ("dedup_entries", self.flush_dedup, context.dedup),
            ("user_states", self.flush_users, context.conversations),
            ("forward_tickets", self.flush_tickets, context.tickets),
            ("analytics_snapshots", self.flush_analytics, context.analytics),
        ):
            try:
                results[name] = flush(store)
            except PersistenceFailure:
                results[name] = None
        logger.info("State flushed", extra={"context": results})
        return results

    def load_all(self, context: "BotContext") -> dict:
        """Reload every store from the last snapshot. Missing tables or rows mean empty stores."""
        db = self.session_factory()
        try:
            dedup = [
                (row.sender, row.content_hash, _ensure_timezone(row.first_seen_at))
                for row in db.query(DedupEntry).all()
            ]
            users = [
                UserState(
                    sender=row.sender,
                    first_seen_at=_ensure_timezone(row.first_seen_at),
                    last_seen_at=_ensure_timezone(row.last_seen_at),
                    message_count=row.message_count or 0,
                    last_welcome_at=_ensure_timezone(row.last_welcome_at),
                    active=bool(row.active),
                    last_bot_response_at=_ensure_timezone(row.last_bot_response_at),
                    ignored_count=row.ignored_count or 0,
                )
                for row in db.query(UserStateRecord).all()
            ]
            tickets = [
                ForwardTicket(
                    id=row.id,
                    client_id=row.client_id,
                    staff_id=row.staff_id,
                    staff_name=row.staff_name,
                    department=row.department,
                    client_display_name=row.client_display_name or "",
                    original_text=row.original_text,
                    created_at=_ensure_timezone(row.created_at),
                )
                for row in db.query(ForwardTicketRecord).all()
            ]
            snapshot = db.get(AnalyticsSnapshotRecord, ANALYTICS_SNAPSHOT_ID)
        except SQLAlchemyError as e:
            logger.error("Snapshot load failed", extra={"context": {"error": str(e)}})
            raise PersistenceFailure(f"Failed to load state: {e}") from e
        finally:
            db.close()

        context.dedup.load(dedup)
        context.conversations.load(users)
        context.tickets.load(tickets)
        if snapshot is not None:
            context.analytics.load(AnalyticsService.state_from_dict(snapshot.payload or {}))

        counts = {"dedup_entries": len(dedup), "user_states": len(users), "forward_tickets": len(tickets)}
        logger.info("State loaded", extra={"context": counts})
        return counts
