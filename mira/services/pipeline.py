import asyncio
import time
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Callable, Optional

from sqlalchemy.orm import Session

from mira.config import Settings
from mira.errors import ValidationFailure
from mira.logging_config import LoggerAdapter, get_logger, mask_sender
from mira.services.alert_service import alert_error
from mira.services.analytics_service import AnalyticsService
from mira.services.conversation_service import ConversationStateController
from mira.services.dedup_service import DedupCache, build_content_hash
from mira.services.drive_service import DriveClient
from mira.services.intent_service import EntitySet, Intent, IntentClassifier, is_unmute_command
from mira.services.message_service import (
    MSG_BOT_ACTIVATED,
    MSG_BOT_MUTED,
    MSG_CONNECTING,
    MSG_DEPARTMENT_PROMPT,
    MSG_ERROR,
    MSG_FETCHING_ELEVATION,
    MSG_FETCHING_FACTORY,
    MSG_FETCHING_REPORT,
    MSG_GENERAL_NUDGE,
    MSG_IRRELEVANT,
    MSG_RATE_LIMITED,
    MSG_REPORT_SENT,
    MSG_ROUTE_FAILED,
    MSG_ROUTED,
    build_contact_info,
    build_status_message,
    build_welcome_message,
    sanitize_input,
)
from mira.services.persistence import StateRepository
from mira.services.query_service import QueryService, require_sale_number, validate_factory_request
from mira.services.rate_limiter import RateLimiter
from mira.services.result import Result
from mira.services.routing_service import ForwardTicketStore, Router
from mira.services.sheets_service import SheetsClient
from mira.services.staff_directory import StaffDirectoryCache
from mira.services.state_machine import BotState
from mira.services.transport.base import Transport
from mira.services.transport.chatflow import ChatFlowTransport

logger = get_logger("pipeline")

RATE_LIMIT_WARNING_EVERY = 5


@dataclass
class InboundMessage:
    sender: str
    text: str
    timestamp: Optional[int] = None
    message_id: Optional[str] = None
    has_quote: bool = False
    quoted_text: Optional[str] = None
    is_group: bool = False
    is_self: bool = False
    display_name: Optional[str] = None


@dataclass
class PipelineOutcome:
    status: str  # handled, silent, ignored, duplicate, muted, rate_limited, error
    intent: Optional[str] = None
    success: bool = True
    replies: int = 0


@dataclass
class BotContext:
    """Everything one running bot instance owns. Built once at startup; tests build their own."""

    settings: Settings
    transport: Transport
    rate_limiter: RateLimiter
    dedup: DedupCache
    classifier: IntentClassifier
    conversations: ConversationStateController
    directory: StaffDirectoryCache
    tickets: ForwardTicketStore
    router: Router
    analytics: AnalyticsService
    queries: QueryService
    repository: Optional[StateRepository] = None
    started_at: float = field(default_factory=time.time)
    background_tasks: set = field(default_factory=set)

    def store_sizes(self) -> dict:
        return {
            "rate_limiter_active_users": self.rate_limiter.active_senders(),
            "dedup_entries": len(self.dedup),
            "user_states": len(self.conversations),
            "forward_tickets": len(self.tickets),
        }


def build_context(
    settings: Settings,
    *,
    transport: Optional[Transport] = None,
    sheets: Optional[SheetsClient] = None,
    drive: Optional[DriveClient] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> BotContext:
    transport = transport or ChatFlowTransport(
        settings.chatflow_token, settings.chatflow_instance_id, base_url=settings.chatflow_api_url
    )
    sheets = sheets or SheetsClient(settings.google_api_key)
    drive = drive or DriveClient(settings.google_api_key, settings.drive_folder_id)
    repository = StateRepository(session_factory) if session_factory else None

    directory = StaffDirectoryCache(
        sheets,
        settings.staff_sheet_id,
        settings.staff_sheet_name,
        settings.staff_jid_suffix,
        ttl_seconds=settings.staff_directory_ttl_seconds,
    )
    tickets = ForwardTicketStore(ttl_seconds=settings.ticket_ttl_seconds)
    analytics = AnalyticsService(flush_every=settings.analytics_flush_every)

    context = BotContext(
        settings=settings,
        transport=transport,
        rate_limiter=RateLimiter(settings.rate_limit_max_requests, settings.rate_limit_window_seconds),
        dedup=DedupCache(ttl_seconds=settings.dedup_ttl_seconds),
        classifier=IntentClassifier(),
        conversations=ConversationStateController(
            welcome_interval_seconds=settings.welcome_interval_seconds,
            general_cooldown_seconds=settings.general_cooldown_seconds,
        ),
        directory=directory,
        tickets=tickets,
        router=Router(directory, tickets, transport, tz_name=settings.display_timezone),
        analytics=analytics,
        queries=QueryService(
            sheets,
            drive,
            transport,
            factory_sheet_id=settings.factory_sheet_id,
            factory_sheet_name=settings.factory_sheet_name,
            elevation_sheet_id=settings.sheet_id,
            elevation_sheet_name=settings.sheet_name,
            comparison_sheet_id=settings.elevation_avg_sheet_id,
            comparison_sheet_name=settings.elevation_avg_sheet_name,
        ),
        repository=repository,
    )
    if repository is not None:
        analytics.on_flush = lambda: _schedule_analytics_flush(context)
    return context


def _schedule_analytics_flush(context: BotContext) -> None:
    """Persist telemetry from a worker thread so the event loop never waits on the database."""
    if any(not task.done() for task in context.background_tasks):
        return
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        context.repository.flush_analytics(context.analytics)
        return

    task = loop.create_task(asyncio.to_thread(context.repository.flush_analytics, context.analytics))
    context.background_tasks.add(task)
    task.add_done_callback(lambda done: _background_task_done(context, done))


def _background_task_done(context: BotContext, task: asyncio.Task) -> None:
    context.background_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error("Analytics flush failed", extra={"context": {"error": str(error)}})


class _Turn:
    """Bookkeeping for one inbound message: timing and reply count."""

    def __init__(self, message: InboundMessage, text: str):
        self.message = message
        self.text = text
        self.started = time.monotonic()
        self.replies = 0

    @property
    def elapsed_ms(self) -> float:
        return (time.monotonic() - self.started) * 1000


class MessagePipeline:
    def __init__(self, context: BotContext):
        self.context = context
        self._sender_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def handle(self, message: InboundMessage) -> PipelineOutcome:
        if message.is_group or message.is_self or "@g.us" in (message.sender or ""):
            return PipelineOutcome(status="ignored")

        # One message at a time per sender, in arrival order.
        async with self._sender_locks[message.sender]:
            return await self._handle(message)

    async def _handle(self, message: InboundMessage) -> PipelineOutcome:
        ctx = self.context
        sender = message.sender
        turn = _Turn(message, sanitize_input(message.text, ctx.settings.max_input_chars))
        log = LoggerAdapter(logger, {"sender": mask_sender(sender), "message_id": message.message_id})

        try:
            if not ctx.rate_limiter.admit(sender):
                return await self._rate_limited(turn, log)

            content_hash = build_content_hash(sender, turn.text, message.timestamp)
            if ctx.dedup.is_duplicate(sender, content_hash):
                log.info("Duplicate message dropped")
                return PipelineOutcome(status="duplicate")

            ctx.conversations.record_interaction(sender)

            relayed = await ctx.router.correlate_reply(message)
            if relayed is not None:
                log.info("Staff reply processed", context={"delivered": relayed})
                return self._finish(turn, "staff_reply", success=relayed)

            intent = ctx.classifier.classify(turn.text)
            entities = ctx.classifier.extract_entities(turn.text)
            log.info(
                "Message classified",
                context={"intent": intent.value, "entities": entities.as_dict(), "preview": turn.text[:50]},
            )

            if not ctx.conversations.is_active(sender) and not (
                intent == Intent.BOT_CONTROL and is_unmute_command(turn.text)
            ):
                ignored = ctx.conversations.increment_ignored(sender)
                log.info("Bot muted for sender, ignoring message", context={"ignored_count": ignored})
                return PipelineOutcome(status="muted", intent=intent.value)

            return await self._dispatch(turn, intent, entities)
        except Exception as e:
            log.exception("Error handling message", context={"error": str(e)})
            outcome = self._finish(turn, "error", success=False)
            try:
                await alert_error("Message handling failed", {"sender": mask_sender(sender), "error": str(e)})
            except Exception as alert_failure:
                log.error("Failed to send alert", context={"error": str(alert_failure)})
            try:
                await self._send(turn, MSG_ERROR.format(phone=ctx.settings.support_phone))
            except Exception as send_error:
                log.error("Failed to send apology", context={"error": str(send_error)})
            outcome.replies = turn.replies
            outcome.status = "error"
            return outcome

    async def _rate_limited(self, turn: _Turn, log: LoggerAdapter) -> PipelineOutcome:
        ctx = self.context
        sender = turn.message.sender
        violations = ctx.rate_limiter.violations(sender)
        log.warning("Rate limit exceeded", context={"violations": violations})
        if violations % RATE_LIMIT_WARNING_EVERY == 1:
            await self._send(turn, MSG_RATE_LIMITED.format(seconds=ctx.rate_limiter.remaining_time(sender)))
        outcome = self._finish(turn, "rate_limited", success=False)
        outcome.status = "rate_limited"
        return outcome

    async def _dispatch(self, turn: _Turn, intent: Intent, entities: EntitySet) -> PipelineOutcome:
        ctx = self.context
        sender = turn.message.sender
        settings = ctx.settings

        if intent == Intent.BOT_CONTROL:
            state = ctx.conversations.handle_bot_control(sender, turn.text)
            if state is None:
                return PipelineOutcome(status="silent", intent=intent.value)
            await self._reply(turn, MSG_BOT_MUTED if state == BotState.MUTED else MSG_BOT_ACTIVATED)
            return self._finish(turn, intent.value, success=True)

        if intent == Intent.IRRELEVANT:
            if not ctx.conversations.should_respond_to_general(sender):
                return PipelineOutcome(status="silent", intent=intent.value)
            await self._reply(turn, MSG_IRRELEVANT.format(phone=settings.support_phone, email=settings.support_email))
            return self._finish(turn, intent.value, success=True)

        if intent == Intent.CASUAL_CONVERSATION:
            return PipelineOutcome(status="silent", intent=intent.value)

        if intent == Intent.HELP:
            await self._reply(turn, build_welcome_message())
            return self._finish(turn, intent.value, success=True)

        if intent == Intent.CONTACT:
            await self._reply(turn, build_contact_info(settings.support_email))
            return self._finish(turn, intent.value, success=True)

        if intent == Intent.STATUS:
            await self._reply(turn, build_status_message(ctx.analytics.snapshot()))
            return self._finish(turn, intent.value, success=True)

        if intent == Intent.FACTORY_QUERY:
            result = await self._factory_query(turn, entities)
        elif intent == Intent.ELEVATION_QUERY:
            result = await self._elevation_query(turn, entities)
        elif intent == Intent.MARKET_REPORT:
            result = await self._market_report(turn, entities)
        elif intent == Intent.DEPARTMENT_CONTACT:
            result = await self._department_contact(turn, entities)
        else:
            return await self._general(turn)

        await self._reply(turn, result.value if result.ok else result.error)
        return self._finish(turn, intent.value, success=result.ok)

    async def _factory_query(self, turn: _Turn, entities: EntitySet) -> Result[str]:
        try:
            codes = validate_factory_request(turn.text)
        except ValidationFailure as e:
            return Result.from_error(e)

        await self._send(turn, MSG_FETCHING_FACTORY.format(codes=", ".join(codes)))
        return await self.context.queries.factory_report(codes, entities.sale_number)

    async def _elevation_query(self, turn: _Turn, entities: EntitySet) -> Result[str]:
        try:
            sale_no = require_sale_number(entities.sale_number, "elevation sale 38")
        except ValidationFailure as e:
            return Result.from_error(e)

        await self._send(turn, MSG_FETCHING_ELEVATION)
        return await self.context.queries.elevation_averages(sale_no)

    async def _market_report(self, turn: _Turn, entities: EntitySet) -> Result[str]:
        try:
            sale_no = require_sale_number(entities.sale_number, "market report sale 38")
        except ValidationFailure as e:
            return Result.from_error(e)

        await self._send(turn, MSG_FETCHING_REPORT)
        result = await self.context.queries.send_market_report(turn.message.sender, sale_no)
        return Result.success(MSG_REPORT_SENT) if result.ok else result

    async def _department_contact(self, turn: _Turn, entities: EntitySet) -> Result[str]:
        settings = self.context.settings
        department = entities.department
        if not department:
            return Result.failure(MSG_DEPARTMENT_PROMPT, "department_missing")

        await self._send(turn, MSG_CONNECTING.format(department=department))
        if await self.context.router.route(turn.message, department, turn.text):
            return Result.success(MSG_ROUTED.format(department=department))
        return Result.failure(
            MSG_ROUTE_FAILED.format(department=department, phone=settings.support_phone, email=settings.support_email),
            "route_failed",
        )

    async def _general(self, turn: _Turn) -> PipelineOutcome:
        conversations = self.context.conversations
        sender = turn.message.sender
        if conversations.should_send_welcome(sender):
            await self._reply(turn, build_welcome_message())
        elif conversations.should_respond_to_general(sender):
            await self._reply(turn, MSG_GENERAL_NUDGE)
        else:
            return PipelineOutcome(status="silent", intent=Intent.GENERAL.value)
        return self._finish(turn, Intent.GENERAL.value, success=True)

    async def _send(self, turn: _Turn, text: str) -> bool:
        sent = await self.context.transport.send_text(turn.message.sender, text)
        turn.replies += 1
        return sent

    async def _reply(self, turn: _Turn, text: str) -> bool:
        """Final answer for this turn; stamps the general-response cooldown."""
        sent = await self._send(turn, text)
        self.context.conversations.record_bot_response(turn.message.sender)
        return sent

    def _finish(self, turn: _Turn, intent: str, success: bool) -> PipelineOutcome:
        elapsed = turn.elapsed_ms
        self.context.analytics.record(turn.message.sender, intent, elapsed, success)
        logger.info(
            "Request completed",
            extra={
                "context": {
                    "sender": mask_sender(turn.message.sender),
                    "intent": intent,
                    "success": success,
                    "duration_ms": round(elapsed, 2),
                }
            },
        )
        return PipelineOutcome(status="handled", intent=intent, success=success, replies=turn.replies)
