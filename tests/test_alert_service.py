from unittest.mock import AsyncMock, MagicMock, Mock, patch

import httpx
import pytest

from mira.services.alert_service import alert_critical, alert_error, alert_warning, send_alert


def mock_async_client(mock_client_class, status_code=200):
    mock_client = MagicMock()
    mock_client.post = AsyncMock(return_value=Mock(status_code=status_code))
    mock_client_class.return_value.__aenter__.return_value = mock_client
    return mock_client


class TestSendAlert:
    @pytest.mark.asyncio
    @patch("mira.services.alert_service.ALERT_BOT_TOKEN", None)
    @patch("mira.services.alert_service.ALERT_CHAT_ID", None)
    async def test_returns_false_when_not_configured(self):
        assert await send_alert("ERROR", "Test message") is False

    @pytest.mark.asyncio
    @patch("mira.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("mira.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("mira.services.alert_service.httpx.AsyncClient")
    async def test_sends_alert_to_telegram(self, mock_client_class):
        mock_client = mock_async_client(mock_client_class)

        result = await send_alert("ERROR", "Test error message", {"sender": "9477****567"})

        assert result is True
        call_args = mock_client.post.call_args
        assert "api.telegram.org" in call_args[0][0]
        json_data = call_args[1]["json"]
        assert json_data["chat_id"] == "test-chat"
        assert "ERROR" in json_data["text"]
        assert "9477****567" in json_data["text"]

    @pytest.mark.asyncio
    @patch("mira.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("mira.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("mira.services.alert_service.httpx.AsyncClient")
    async def test_returns_false_on_telegram_error(self, mock_client_class):
        mock_async_client(mock_client_class, status_code=400)
        assert await send_alert("ERROR", "Test message") is False

    @pytest.mark.asyncio
    @patch("mira.services.alert_service.ALERT_BOT_TOKEN", "test-token")
    @patch("mira.services.alert_service.ALERT_CHAT_ID", "test-chat")
    @patch("mira.services.alert_service.httpx.AsyncClient")
    async def test_returns_false_on_network_error(self, mock_client_class):
        mock_client_class.return_value.__aenter__.side_effect = httpx.ConnectError("Network error")
        assert await send_alert("ERROR", "Test message") is False


class TestShortcuts:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "shortcut,level", [(alert_error, "ERROR"), (alert_critical, "CRITICAL"), (alert_warning, "WARNING")]
    )
    async def test_shortcut_levels(self, shortcut, level):
        with patch("mira.services.alert_service.send_alert", new=AsyncMock(return_value=True)) as mock_send:
            assert await shortcut("Test", {"k": "v"}) is True
        mock_send.assert_awaited_once_with(level, "Test", {"k": "v"})
