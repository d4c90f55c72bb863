from datetime import datetime, timedelta
from unittest.mock import patch

import pytest

from idle_tracker.model.models import EpisodeState
from idle_tracker.notify.notifications import NotificationService
from idle_tracker.watchers.episode import (
    EpisodeEvent,
    IdleEpisodeTracker,
    LifecycleEvent,
    advance,
    build_idle_alert,
    build_lifecycle_message,
    format_minutes,
    mark_alert_sent,
)

NOW = datetime(2024, 1, 1, 12, 0, 0)


def _messages(caplog) -> list[str]:
    return [r.getMessage() for r in caplog.records if r.name == "idle_tracker"]


class TestEpisodeState:
    """EpisodeState の不変条件"""

    def test_initial_state_is_active(self):
        state = EpisodeState()
        assert state.is_idle is False
        assert state.alert_sent is False
        assert state.idle_since is None

    def test_alert_sent_requires_idle(self):
        with pytest.raises(ValueError, match="alert_sent"):
            EpisodeState(is_idle=False, alert_sent=True)

    def test_idle_since_must_match_is_idle(self):
        with pytest.raises(ValueError, match="idle_since"):
            EpisodeState(is_idle=True)
        with pytest.raises(ValueError, match="idle_since"):
            EpisodeState(is_idle=False, idle_since=NOW)


class TestAdvance:
    """純粋な遷移関数のテスト"""

    def test_active_stays_active_below_threshold(self):
        result = advance(EpisodeState(), 10, 300, NOW)
        assert result.state == EpisodeState()
        assert result.events == ()

    def test_active_to_idle_at_threshold(self):
        result = advance(EpisodeState(), 300, 300, NOW)
        assert result.state.is_idle is True
        assert result.state.alert_sent is False
        assert result.state.idle_since == NOW - timedelta(seconds=300)
        assert result.events == (EpisodeEvent.IDLE_BEGAN, EpisodeEvent.ALERT_DUE)

    def test_idle_since_uses_sample_not_threshold(self):
        result = advance(EpisodeState(), 420, 300, NOW)
        assert result.state.idle_since == NOW - timedelta(seconds=420)

    def test_idle_without_alert_requests_alert(self):
        state = EpisodeState(is_idle=True, idle_since=NOW)
        result = advance(state, 305, 300, NOW + timedelta(seconds=5))
        assert result.state == state
        assert result.events == (EpisodeEvent.ALERT_DUE,)

    def test_idle_with_alert_sent_is_quiet(self):
        state = EpisodeState(is_idle=True, alert_sent=True, idle_since=NOW)
        result = advance(state, 10_000, 300, NOW)
        assert result.state is state
        assert result.events == ()

    def test_idle_to_active_clears_episode(self):
        state = EpisodeState(is_idle=True, alert_sent=True, idle_since=NOW)
        result = advance(state, 299, 300, NOW)
        assert result.state == EpisodeState()
        assert result.events == (EpisodeEvent.USER_ACTIVE,)

    def test_new_episode_resets_alert_sent(self):
        state = EpisodeState(is_idle=True, alert_sent=True, idle_since=NOW)
        state = advance(state, 0, 300, NOW).state
        result = advance(state, 300, 300, NOW + timedelta(minutes=10))
        assert result.state.alert_sent is False
        assert EpisodeEvent.ALERT_DUE in result.events

    def test_mark_alert_sent(self):
        state = EpisodeState(is_idle=True, idle_since=NOW)
        marked = mark_alert_sent(state)
        assert marked.alert_sent is True
        assert marked.idle_since == NOW
        assert state.alert_sent is False


class TestMessages:
    """通知メッセージの内容"""

    @pytest.mark.parametrize(
        ("seconds", "expected"),
        [(300, "5"), (30, "0.5"), (80, "1.33"), (90, "1.5"), (3600, "60")],
    )
    def test_format_minutes(self, seconds, expected):
        assert format_minutes(seconds) == expected

    def test_idle_alert_body(self):
        message = build_idle_alert(
            "WORKSTATION-1", 300, datetime(2024, 1, 1, 11, 55, 0), NOW
        )
        assert message["subject"] == "User idle detected"
        assert message["body"] == (
            "Machine: WORKSTATION-1\n"
            "Idle Duration (min): 5\n"
            "Idle Since: 2024-01-01 11:55:00\n"
            "Detected At: 2024-01-01 12:00:00"
        )

    def test_stopped_message(self):
        message = build_lifecycle_message(LifecycleEvent.STOPPED, "PC", NOW)
        assert message["subject"] == "Service stopped"
        assert "stopped on PC at 2024-01-01 12:00:00" in message["body"]

    def test_process_exit_message(self):
        message = build_lifecycle_message(LifecycleEvent.PROCESS_EXIT, "PC", NOW)
        assert message["subject"] == "Service process exit"
        assert "exiting on PC" in message["body"]

    def test_crash_message_includes_detail(self):
        message = build_lifecycle_message(
            LifecycleEvent.CRASHED, "PC", NOW, "RuntimeError: boom"
        )
        assert message["subject"] == "Service crashed"
        assert message["body"] == "Unhandled exception on PC: RuntimeError: boom"


class TestIdleEpisodeTracker:
    """ログと通知を伴う tick 処理"""

    def _tracker(self, notifier, clock, threshold=300):
        return IdleEpisodeTracker(
            notifier,
            threshold,
            machine="WORKSTATION-1",
            recipient="admin@example.com",
            clock=clock,
        )

    def test_single_alert_when_threshold_first_reached(
        self, mock_notifier, clock, tracker_log
    ):
        tracker = self._tracker(mock_notifier, clock)
        samples = [0] * 299 + [300, 300, 300]

        for i, sample in enumerate(samples):
            tracker.tick(sample)
            if i == 299:
                # 初めて閾値に達した tick で送信
                assert mock_notifier.send.call_count == 1
            clock.advance(1)

        assert mock_notifier.send.call_count == 1
        assert tracker.state.is_idle is True
        assert tracker.state.alert_sent is True
        messages = _messages(tracker_log)
        assert messages.count("Idle detected (threshold reached: 5 minute(s)).") == 1
        assert (
            "Email sent to admin@example.com after reaching 300 seconds of idle."
            in messages
        )

    def test_failed_alerts_retry_then_drop(self, failing_notifier, clock, tracker_log):
        tracker = self._tracker(failing_notifier, clock)

        for sample in (300, 300, 250):
            tracker.tick(sample)
            clock.advance(1)

        assert failing_notifier.send.call_count == 2
        assert tracker.state == EpisodeState()
        messages = _messages(tracker_log)
        assert not any(m.startswith("Email sent") for m in messages)
        assert messages[-1] == "User active."

    def test_retry_succeeds_on_later_tick(self, mock_notifier, clock):
        mock_notifier.send.side_effect = [False, False, True]
        tracker = self._tracker(mock_notifier, clock)

        for sample in (300, 301, 302, 303, 304):
            tracker.tick(sample)

        assert mock_notifier.send.call_count == 3
        assert tracker.state.alert_sent is True

    def test_one_alert_per_episode(self, mock_notifier, clock):
        tracker = self._tracker(mock_notifier, clock)
        samples = [300, 301, 0, 1, 300, 400, 500, 2]

        for sample in samples:
            tracker.tick(sample)
            clock.advance(1)

        assert mock_notifier.send.call_count == 2
        assert tracker.state.is_idle is False

    def test_reported_duration_is_threshold(self, mock_notifier, clock):
        tracker = self._tracker(mock_notifier, clock, threshold=80)
        tracker.tick(5000)

        message = mock_notifier.send.call_args.args[0]
        assert "Idle Duration (min): 1.33\n" in message["body"]
        assert "Idle Since: 2024-01-01 07:36:40" in message["body"]
        assert "Detected At: 2024-01-01 09:00:00" in message["body"]

    def test_smtp_failures_logged_each_tick_until_active(
        self, smtp_settings, clock, tracker_log
    ):
        notifier = NotificationService(smtp_settings)
        tracker = self._tracker(notifier, clock)

        with patch("idle_tracker.notify.notifications.smtplib.SMTP") as smtp_cls:
            smtp_cls.return_value.__enter__.return_value.send_message.side_effect = (
                OSError("down")
            )
            for sample in (300, 300, 250):
                tracker.tick(sample)
                clock.advance(1)

        messages = _messages(tracker_log)
        failures = [m for m in messages if m.startswith("Failed to send email")]
        assert failures == ["Failed to send email: down"] * 2
        assert not any(m.startswith("Email sent") for m in messages)
        assert tracker.state == EpisodeState()

    def test_unexpected_transport_error_is_a_failed_send(
        self, mock_notifier, clock, tracker_log
    ):
        mock_notifier.send.side_effect = [TypeError("bad header"), True]
        tracker = self._tracker(mock_notifier, clock)

        state = tracker.tick(300)

        assert state.is_idle is True
        assert state.alert_sent is False
        assert "Failed to send email: bad header" in _messages(tracker_log)

        # 次の tick で再送して成功する
        assert tracker.tick(301).alert_sent is True
