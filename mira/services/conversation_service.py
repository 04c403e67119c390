import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable, Optional

from mira.logging_config import get_logger, mask_sender
from mira.services.intent_service import is_mute_command, is_unmute_command
from mira.services.state_machine import BotState, can_transition, mute, state_of, unmute

logger = get_logger("conversation_service")

WELCOME_INTERVAL_SECONDS = 24 * 60 * 60
GENERAL_COOLDOWN_SECONDS = 5 * 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class UserState:
    sender: str
    first_seen_at: datetime
    last_seen_at: datetime
    message_count: int = 0
    last_welcome_at: Optional[datetime] = None
    active: bool = True
    last_bot_response_at: Optional[datetime] = None
    ignored_count: int = 0

    @property
    def state(self) -> BotState:
        return state_of(self.active)


class ConversationStateController:
    """Per-sender lifecycle: active/muted, welcome and general-response throttling."""

    def __init__(
        self,
        welcome_interval_seconds: float = WELCOME_INTERVAL_SECONDS,
        general_cooldown_seconds: float = GENERAL_COOLDOWN_SECONDS,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.welcome_interval = timedelta(seconds=welcome_interval_seconds)
        self.general_cooldown = timedelta(seconds=general_cooldown_seconds)
        self._clock = clock
        self._users: dict[str, UserState] = {}
        self._lock = threading.RLock()

    def _get_or_create(self, sender: str) -> UserState:
        user = self._users.get(sender)
        if user is None:
            now = self._clock()
            user = UserState(sender=sender, first_seen_at=now, last_seen_at=now)
            self._users[sender] = user
        return user

    def get(self, sender: str) -> Optional[UserState]:
        with self._lock:
            user = self._users.get(sender)
            return replace(user) if user else None

    def record_interaction(self, sender: str) -> UserState:
        with self._lock:
            user = self._get_or_create(sender)
            user.last_seen_at = self._clock()
            user.message_count += 1
            return replace(user)

    def is_active(self, sender: str) -> bool:
        with self._lock:
            user = self._users.get(sender)
            return True if user is None else user.active

    def set_active(self, sender: str, active: bool) -> None:
        with self._lock:
            user = self._get_or_create(sender)
            user.active = active
            if active:
                user.ignored_count = 0

    def increment_ignored(self, sender: str) -> int:
        with self._lock:
            user = self._get_or_create(sender)
            user.ignored_count += 1
            return user.ignored_count

    def handle_bot_control(self, sender: str, text: str) -> Optional[BotState]:
        """Apply a mute/unmute command. Processed even while muted.

        Returns the resulting state, or None when the text carries no control verb.
        """
        if is_unmute_command(text):
            target = BotState.ACTIVE
        elif is_mute_command(text):
            target = BotState.MUTED
        else:
            return None

        with self._lock:
            user = self._get_or_create(sender)
            current = user.state
            if can_transition(current, target):
                new_state = unmute(current) if target == BotState.ACTIVE else mute(current)
                self.set_active(sender, new_state == BotState.ACTIVE)
                logger.info(
                    "Bot state changed",
                    extra={"context": {"sender": mask_sender(sender), "from": current.value, "to": new_state.value}},
                )
            return target

    def should_send_welcome(self, sender: str) -> bool:
        """True iff no welcome went out within the interval; stamps the welcome when True."""
        now = self._clock()
        with self._lock:
            user = self._get_or_create(sender)
            if user.last_welcome_at is None or now - user.last_welcome_at > self.welcome_interval:
                user.last_welcome_at = now
                return True
            return False

    def should_respond_to_general(self, sender: str) -> bool:
        now = self._clock()
        with self._lock:
            user = self._users.get(sender)
            if user is None or user.last_bot_response_at is None:
                return True
            return now - user.last_bot_response_at > self.general_cooldown

    def record_bot_response(self, sender: str) -> None:
        with self._lock:
            user = self._users.get(sender)
            if user is not None:
                user.last_bot_response_at = self._clock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._users)

    def export(self) -> list[UserState]:
        with self._lock:
            return [replace(user) for user in self._users.values()]

    def load(self, users: Iterable[UserState]) -> None:
        with self._lock:
            self._users = {user.sender: user for user in users}
