"""アイドルエピソードの状態遷移と通知.

``advance`` は時計や OS に依存しない純粋関数で、``IdleEpisodeTracker`` が
その結果に従ってログ出力と通知送信を行う。1つのエピソード (閾値以上の
サンプルが連続する区間) につき、通知の成功は高々1回。
"""

from __future__ import annotations

import platform
from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING

from idle_tracker.model.models import EpisodeState, IdleSample, NotificationMessage
from idle_tracker.watchers.logger import logger

if TYPE_CHECKING:
    from idle_tracker.notify.notifications import NotificationService

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
IDLE_ALERT_SUBJECT = "User idle detected"


class EpisodeEvent(Enum):
    """1 tick の遷移で発生するイベント."""

    IDLE_BEGAN = "idle_began"
    ALERT_DUE = "alert_due"
    USER_ACTIVE = "user_active"


class LifecycleEvent(Enum):
    """ポーリングとは独立に通知するサービスのライフサイクル."""

    STARTED = "started"
    STOPPED = "stopped"
    PROCESS_EXIT = "process_exit"
    CRASHED = "crashed"


@dataclass(frozen=True)
class Transition:
    state: EpisodeState
    events: tuple[EpisodeEvent, ...] = ()


def advance(
    state: EpisodeState,
    idle_seconds: int,
    threshold_seconds: int,
    now: datetime,
) -> Transition:
    """サンプル1件を取り込み、次の状態と発生イベントを返す.

    Args:
        state: 現在の状態
        idle_seconds: 最後の入力からの経過秒数
        threshold_seconds: アイドルとみなす閾値（秒）
        now: 現在時刻

    Returns:
        Transition: 次の状態とイベント列

    """
    if idle_seconds >= threshold_seconds:
        if not state.is_idle:
            began = EpisodeState(
                is_idle=True,
                alert_sent=False,
                idle_since=now - timedelta(seconds=idle_seconds),
            )
            # 遷移したその tick で通知も試みる
            return Transition(began, (EpisodeEvent.IDLE_BEGAN, EpisodeEvent.ALERT_DUE))
        if not state.alert_sent:
            return Transition(state, (EpisodeEvent.ALERT_DUE,))
        return Transition(state)

    if state.is_idle:
        # 未送信の通知はここで破棄される
        return Transition(EpisodeState(), (EpisodeEvent.USER_ACTIVE,))
    return Transition(state)


def mark_alert_sent(state: EpisodeState) -> EpisodeState:
    """通知が届いたエピソードとして記録する."""
    return replace(state, alert_sent=True)


def format_minutes(threshold_seconds: int) -> str:
    """閾値を分に換算 (小数2桁で丸め、末尾の0は付けない)."""
    minutes = round(threshold_seconds / 60, 2)
    return f"{minutes:.2f}".rstrip("0").rstrip(".")


def build_idle_alert(
    machine: str,
    threshold_seconds: int,
    idle_since: datetime | None,
    now: datetime,
) -> NotificationMessage:
    """アイドル通知を組み立てる.

    報告する時間は実際のサンプル値ではなく、設定された閾値。
    """
    since = idle_since.strftime(TIMESTAMP_FORMAT) if idle_since else ""
    body = (
        f"Machine: {machine}\n"
        f"Idle Duration (min): {format_minutes(threshold_seconds)}\n"
        f"Idle Since: {since}\n"
        f"Detected At: {now.strftime(TIMESTAMP_FORMAT)}"
    )
    return {"subject": IDLE_ALERT_SUBJECT, "body": body}


def build_lifecycle_message(
    kind: LifecycleEvent,
    machine: str,
    now: datetime,
    detail: str | None = None,
) -> NotificationMessage:
    at = now.strftime(TIMESTAMP_FORMAT)
    if kind is LifecycleEvent.STARTED:
        subject = "Service started"
        body = f"The idle tracking service was started on {machine} at {at}."
    elif kind is LifecycleEvent.STOPPED:
        subject = "Service stopped"
        body = f"The idle tracking service was stopped on {machine} at {at}."
    elif kind is LifecycleEvent.PROCESS_EXIT:
        subject = "Service process exit"
        body = f"The service process is exiting on {machine} at {at}."
    else:
        subject = "Service crashed"
        body = f"Unhandled exception on {machine}: {detail or 'unknown error'}"
    return {"subject": subject, "body": body}


def machine_name() -> str:
    return platform.node() or "unknown"


class IdleEpisodeTracker:
    """状態を保持し、tick ごとに遷移・ログ・通知を行う."""

    def __init__(
        self,
        notifier: NotificationService,
        threshold_seconds: int,
        *,
        machine: str | None = None,
        recipient: str = "",
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.notifier = notifier
        self.threshold_seconds = threshold_seconds
        self.machine = machine or machine_name()
        self.recipient = recipient
        self._clock = clock
        self.state = EpisodeState()

    def tick(self, idle_seconds: IdleSample) -> EpisodeState:
        """サンプル1件を処理し、処理後の状態を返す."""
        now = self._clock()
        transition = advance(self.state, idle_seconds, self.threshold_seconds, now)
        self.state = transition.state

        for event in transition.events:
            if event is EpisodeEvent.IDLE_BEGAN:
                logger.info(
                    "Idle detected (threshold reached: "
                    f"{self.threshold_seconds // 60} minute(s))."
                )
            elif event is EpisodeEvent.USER_ACTIVE:
                logger.info("User active.")
            elif event is EpisodeEvent.ALERT_DUE:
                self._send_alert(now)
        return self.state

    def _send_alert(self, now: datetime) -> None:
        message = build_idle_alert(
            self.machine, self.threshold_seconds, self.state.idle_since, now
        )
        try:
            delivered = self.notifier.send(message)
        except Exception as exc:  # noqa: BLE001
            logger.warning(f"Failed to send email: {exc}")
            delivered = False
        if delivered:
            logger.info(
                f"Email sent to {self.recipient} after reaching "
                f"{self.threshold_seconds} seconds of idle."
            )
            self.state = mark_alert_sent(self.state)
        # 失敗時は alert_sent を立てず、次の tick で再送する
