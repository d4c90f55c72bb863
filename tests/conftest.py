import logging
from datetime import datetime, timedelta
from unittest.mock import Mock

import pytest

from idle_tracker.config import SmtpSettings, TrackerConfig


class FakeClock:
    """tick ごとに進められるテスト用の時計"""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def clock():
    """2024-01-01 09:00:00 から始まる時計"""
    return FakeClock(datetime(2024, 1, 1, 9, 0, 0))


@pytest.fixture
def smtp_settings():
    """テスト用のSMTP設定"""
    return SmtpSettings(
        host="smtp.example.com",
        port=587,
        enable_ssl=True,
        sender="tracker@example.com",
        recipient="admin@example.com",
        username="tracker",
        password="secret",
    )


@pytest.fixture
def tracker_config(smtp_settings, tmp_path):
    """閾値300秒・間隔1秒の設定"""
    return TrackerConfig(
        threshold_seconds=300,
        check_interval_ms=1000,
        log_path=tmp_path / "log" / "idle_tracker.log",
        smtp=smtp_settings,
    )


@pytest.fixture
def mock_notifier():
    """常に送信成功する通知サービスのモック"""
    mock = Mock()
    mock.send = Mock(return_value=True)
    return mock


@pytest.fixture
def failing_notifier():
    """常に送信失敗する通知サービスのモック"""
    mock = Mock()
    mock.send = Mock(return_value=False)
    return mock


@pytest.fixture
def tracker_log(caplog):
    """idle_tracker ロガーの出力を INFO から捕捉する"""
    caplog.set_level(logging.INFO, logger="idle_tracker")
    return caplog
