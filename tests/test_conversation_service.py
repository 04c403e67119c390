from mira.services.conversation_service import ConversationStateController
from mira.services.state_machine import BotState
from tests.conftest import FakeClock

SENDER = "94771234567@s.whatsapp.net"


def make_controller(clock=None):
    return ConversationStateController(
        welcome_interval_seconds=24 * 60 * 60, general_cooldown_seconds=300, clock=clock or FakeClock()
    )


class TestInteractions:
    def test_created_lazily_and_counted(self):
        controller = make_controller()
        assert controller.get(SENDER) is None

        controller.record_interaction(SENDER)
        user = controller.record_interaction(SENDER)

        assert user.message_count == 2
        assert user.active is True
        assert len(controller) == 1

    def test_unknown_sender_is_active(self):
        assert make_controller().is_active(SENDER) is True

    def test_get_returns_copy(self):
        controller = make_controller()
        controller.record_interaction(SENDER)
        controller.get(SENDER).message_count = 99
        assert controller.get(SENDER).message_count == 1


class TestBotControl:
    def test_mute_then_unmute(self):
        controller = make_controller()
        assert controller.handle_bot_control(SENDER, "mute bot") == BotState.MUTED
        assert controller.is_active(SENDER) is False

        assert controller.handle_bot_control(SENDER, "unmute bot") == BotState.ACTIVE
        assert controller.is_active(SENDER) is True

    def test_no_control_verb(self):
        controller = make_controller()
        assert controller.handle_bot_control(SENDER, "hello bot") is None
        assert controller.is_active(SENDER) is True

    def test_repeated_mute_stays_muted(self):
        controller = make_controller()
        controller.handle_bot_control(SENDER, "mute bot")
        assert controller.handle_bot_control(SENDER, "stop bot") == BotState.MUTED
        assert controller.is_active(SENDER) is False

    def test_reactivation_resets_ignored_count(self):
        controller = make_controller()
        controller.set_active(SENDER, False)
        controller.increment_ignored(SENDER)
        assert controller.increment_ignored(SENDER) == 2

        controller.set_active(SENDER, True)
        assert controller.get(SENDER).ignored_count == 0


class TestThrottling:
    def test_welcome_once_per_interval(self):
        clock = FakeClock()
        controller = make_controller(clock)
        assert controller.should_send_welcome(SENDER) is True
        assert controller.should_send_welcome(SENDER) is False

        clock.advance(24 * 60 * 60 + 1)
        assert controller.should_send_welcome(SENDER) is True

    def test_general_cooldown(self):
        clock = FakeClock()
        controller = make_controller(clock)
        controller.record_interaction(SENDER)
        assert controller.should_respond_to_general(SENDER) is True

        controller.record_bot_response(SENDER)
        clock.advance(60)
        assert controller.should_respond_to_general(SENDER) is False

        clock.advance(300)
        assert controller.should_respond_to_general(SENDER) is True

    def test_export_and_load(self):
        controller = make_controller()
        controller.record_interaction(SENDER)
        controller.set_active(SENDER, False)

        restored = make_controller()
        restored.load(controller.export())
        assert restored.is_active(SENDER) is False
        assert restored.get(SENDER).message_count == 1
