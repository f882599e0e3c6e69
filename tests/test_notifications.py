#!/usr/bin/env python3
"""
Notification Backend Tests
"""

from accounts.notifications import (
    LogNotifier,
    SendGridNotifier,
    create_notifier,
    notify_safely,
)
from config import Settings
from tests.conftest import TEST_EMAIL


class TestNotifications:

    async def test_log_notifier_records(self):
        notifier = LogNotifier()
        assert await notify_safely(notifier, TEST_EMAIL, "hello")
        assert list(notifier.sent) == [(TEST_EMAIL, "hello")]

    async def test_log_notifier_keeps_most_recent_only(self):
        notifier = LogNotifier(history_size=2)
        for message in ("one", "two", "three"):
            await notifier.notify(TEST_EMAIL, message)

        assert [message for _, message in notifier.sent] == ["two", "three"]

    async def test_failures_are_swallowed(self):
        notifier = SendGridNotifier(None, "noreply@example.com")
        assert not await notify_safely(notifier, TEST_EMAIL, "hello")

    async def test_missing_destination_is_skipped(self):
        notifier = LogNotifier()
        assert not await notify_safely(notifier, None, "hello")
        assert len(notifier.sent) == 0

    def test_backend_selection(self):
        assert isinstance(create_notifier(Settings(_env_file=None)), LogNotifier)
        assert isinstance(
            create_notifier(Settings(_env_file=None, NOTIFIER="sendgrid", SENDGRID_API_KEY="SG.x")),
            SendGridNotifier,
        )
