"""
Tests for notification delivery and the background dispatcher.
"""

import logging
import threading

import pytest

from notifier.delivery import (
    DeliveryError,
    Notification,
    NotificationDispatcher,
    NotificationSender,
    resolve_backend,
)


class RecordingSender:
    """Sender double that records notifications instead of showing them."""

    def __init__(self, fail_on=None):
        self.sent = []
        self.fail_on = fail_on

    def send(self, notification):
        if notification.label == self.fail_on:
            raise DeliveryError("daemon unavailable")
        self.sent.append(notification)


class BlockingSender:
    """Sender double that holds the worker until released."""

    def __init__(self):
        self.sent = []
        self.started = threading.Event()
        self.release = threading.Event()

    def send(self, notification):
        self.started.set()
        self.release.wait(5)
        self.sent.append(notification)


class TestBackends:

    def test_explicit_backend_kept(self):
        assert resolve_backend("log") == "log"
        assert resolve_backend("notify-send") == "notify-send"

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="pigeon"):
            resolve_backend("pigeon")

    def test_auto_resolves(self):
        assert resolve_backend("auto") in ("notify-send", "osascript", "log")


class TestSender:

    def test_notify_send_command(self):
        sender = NotificationSender(backend="notify-send", app_name="Notifier")
        command = sender.build_command(Notification("Server down", level="Critical"))
        assert command[0] == "notify-send"
        assert command[command.index("--urgency") + 1] == "critical"
        assert "string:sound-name:dialog-information" in command
        assert command[-1] == "Server down"

    def test_osascript_escapes_quotes(self):
        sender = NotificationSender(backend="osascript")
        command = sender.build_command(Notification('Say "hi"'))
        assert command[:2] == ["osascript", "-e"]
        assert 'display notification "Say \\"hi\\""' in command[2]

    def test_command_template(self):
        sender = NotificationSender(backend="command", command="echo {level} {label}")
        command = sender.build_command(Notification("Drink water; rm -rf /", level="Info"))
        assert command == ["echo", "Info", "Drink water; rm -rf /"]

    def test_command_backend_requires_template(self):
        with pytest.raises(ValueError):
            NotificationSender(backend="command")

    def test_log_backend(self, caplog):
        sender = NotificationSender(backend="log")
        assert sender.build_command(Notification("Stretch")) is None
        with caplog.at_level(logging.INFO, logger="notifier.delivery"):
            sender.send(Notification("Stretch"))
        assert "Stretch" in caplog.text

    def test_successful_command(self):
        NotificationSender(backend="command", command="true {label}").send(Notification("ok"))

    def test_failing_command(self):
        sender = NotificationSender(backend="command", command="false {label}")
        with pytest.raises(DeliveryError, match="exit code"):
            sender.send(Notification("boom"))

    def test_missing_command(self):
        sender = NotificationSender(backend="command", command="no-such-notifier-binary {label}")
        with pytest.raises(DeliveryError):
            sender.send(Notification("boom"))


class TestDispatcher:

    def test_delivers_in_order(self):
        sender = RecordingSender()
        dispatcher = NotificationDispatcher(sender, maxsize=10)
        dispatcher.start()
        try:
            for label in ("one", "two", "three"):
                assert dispatcher.submit(Notification(label)) is True
            dispatcher.join()
        finally:
            dispatcher.stop()

        assert [n.label for n in sender.sent] == ["one", "two", "three"]
        assert dispatcher.stats['delivered'] == 3
        assert not dispatcher.running

    def test_full_queue_drops(self, caplog):
        dispatcher = NotificationDispatcher(RecordingSender(), maxsize=2)
        with caplog.at_level(logging.WARNING, logger="notifier.delivery"):
            assert dispatcher.submit(Notification("one")) is True
            assert dispatcher.submit(Notification("two")) is True
            assert dispatcher.submit(Notification("three")) is False
        assert dispatcher.stats['dropped'] == 1
        assert "three" in caplog.text

    def test_failure_does_not_stop_worker(self):
        sender = RecordingSender(fail_on="broken")
        dispatcher = NotificationDispatcher(sender)
        dispatcher.start()
        try:
            dispatcher.submit(Notification("broken"))
            dispatcher.submit(Notification("fine"))
            dispatcher.join()
        finally:
            dispatcher.stop()

        assert [n.label for n in sender.sent] == ["fine"]
        assert dispatcher.stats['failed'] == 1
        assert dispatcher.stats['delivered'] == 1

    def test_stop_flushes_queue(self):
        sender = RecordingSender()
        dispatcher = NotificationDispatcher(sender)
        dispatcher.submit(Notification("queued before start"))
        dispatcher.start()
        dispatcher.stop()
        assert [n.label for n in sender.sent] == ["queued before start"]

    def test_stop_gives_up_on_busy_worker(self):
        sender = BlockingSender()
        dispatcher = NotificationDispatcher(sender, maxsize=1)
        dispatcher.start()
        dispatcher.submit(Notification("first"))
        assert sender.started.wait(5)
        dispatcher.submit(Notification("second"))

        # Queue is full and the worker is stuck: stop() must not hang
        assert dispatcher.stop(timeout=0.1) is False
        assert dispatcher.running

        worker = dispatcher._thread
        dispatcher.start()
        assert dispatcher._thread is worker

        sender.release.set()
        assert dispatcher.stop(timeout=5) is True
        assert [n.label for n in sender.sent] == ["first", "second"]
        assert not dispatcher.running

    def test_stop_can_be_retried_after_join_timeout(self):
        sender = BlockingSender()
        dispatcher = NotificationDispatcher(sender)
        dispatcher.start()
        dispatcher.submit(Notification("first"))
        assert sender.started.wait(5)

        assert dispatcher.stop(timeout=0.1) is False
        sender.release.set()
        assert dispatcher.stop(timeout=5) is True

        # A restarted worker is not stopped by a leftover sentinel
        dispatcher.start()
        dispatcher.submit(Notification("after restart"))
        dispatcher.join()
        assert dispatcher.running
        dispatcher.stop()
        assert [n.label for n in sender.sent] == ["first", "after restart"]
