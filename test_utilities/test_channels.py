"""Test the LINE and Discord notification channels without network access."""
import sys
import io
from pathlib import Path

# Fix Windows console encoding (only if not already wrapped)
if sys.platform == 'win32':
    if not isinstance(sys.stdout, io.TextIOWrapper) or (hasattr(sys.stdout, 'encoding') and sys.stdout.encoding != 'utf-8'):
        sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding='utf-8', errors='replace')
    if not isinstance(sys.stderr, io.TextIOWrapper) or (hasattr(sys.stderr, 'encoding') and sys.stderr.encoding != 'utf-8'):
        sys.stderr = io.TextIOWrapper(sys.stderr.buffer, encoding='utf-8', errors='replace')

# Add project root and src to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))
sys.path.insert(0, str(project_root / "src"))

import requests

import notification_channel
from notification_channel import DiscordWebhookChannel, LinePushChannel
from errors import NotificationFailure

WEBHOOK_URL = "https://discord.com/api/webhooks/123456789/abcdefghijklmnop"


class FakeResponse:
    def __init__(self, status_code=204):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.exceptions.HTTPError(f"{self.status_code} Client Error")


class FakeSession:
    def __init__(self, status_code=204, error=None):
        self.status_code = status_code
        self.error = error
        self.calls = []

    def post(self, url, json=None, timeout=None):
        self.calls.append({'url': url, 'json': json, 'timeout': timeout})
        if self.error:
            raise self.error
        return FakeResponse(self.status_code)


class FakeMessagingApi:
    def __init__(self, error=None):
        self.error = error
        self.requests = []

    def push_message(self, push_message_request, _request_timeout=None):
        self.requests.append((push_message_request, _request_timeout))
        if self.error:
            raise self.error


def test_discord_channel():
    print("Testing notification channels...")
    print("=" * 60)

    session = FakeSession()
    channel = DiscordWebhookChannel(timeout=3, session=session)
    assert channel.send(WEBHOOK_URL, "x" * 2500) is True
    call = session.calls[0]
    assert call['url'] == WEBHOOK_URL
    assert len(call['json']['content']) == 2000, "content truncated to Discord limit"
    assert call['timeout'] == 3
    print("[OK] Discord post")

    for bad_session in (FakeSession(status_code=429),
                        FakeSession(error=requests.exceptions.ConnectionError("down"))):
        try:
            DiscordWebhookChannel(session=bad_session).send(WEBHOOK_URL, "hi")
            raise AssertionError("failed post should raise")
        except NotificationFailure:
            pass

    try:
        channel.send("", "hi")
        raise AssertionError("empty URL should raise")
    except NotificationFailure:
        pass
    print("[OK] Discord failures mapped to NotificationFailure")


def test_line_channel():
    api = FakeMessagingApi()
    channel = LinePushChannel(messaging_api=api, timeout=4)
    assert channel.send("U0123456789abcdef", "提醒") is True
    request, timeout = api.requests[0]
    assert request.to == "U0123456789abcdef"
    assert request.messages[0].text == "提醒"
    assert timeout == 4
    print("[OK] LINE push")

    failing = LinePushChannel(messaging_api=FakeMessagingApi(error=RuntimeError("401 Unauthorized")))
    try:
        failing.send("U1", "hi")
        raise AssertionError("push error should raise")
    except NotificationFailure:
        pass

    try:
        channel.send("  ", "hi")
        raise AssertionError("empty target should raise")
    except NotificationFailure:
        pass

    try:
        LinePushChannel()
        raise AssertionError("token required without a client")
    except ValueError:
        pass
    print("[OK] LINE failures mapped to NotificationFailure")


def test_create_channel():
    channel = notification_channel.create_channel({'notify_channel': 'discord', 'notify_timeout_seconds': 5})
    assert isinstance(channel, DiscordWebhookChannel)
    assert channel.timeout == 5.0

    api = FakeMessagingApi()
    channel = notification_channel.create_channel({'notify_channel': 'LINE'}, messaging_api=api)
    assert isinstance(channel, LinePushChannel)
    assert channel.messaging_api is api

    try:
        notification_channel.create_channel({'notify_channel': 'pager'})
        raise AssertionError("unknown channel should raise")
    except ValueError:
        pass
    print("[OK] create_channel")


def test_mask_destination():
    masked = notification_channel._mask_destination(WEBHOOK_URL)
    assert "abcdefghijklmnop" not in masked
    assert notification_channel._mask_destination("") == "(empty)"
    print("[OK] Destinations masked in logs")


if __name__ == "__main__":
    test_discord_channel()
    test_line_channel()
    test_create_channel()
    test_mask_destination()
    print("\n" + "=" * 60)
    print("All tests passed!")
