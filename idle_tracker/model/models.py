__all__ = ["EpisodeState", "IdleSample", "NotificationMessage"]


from dataclasses import dataclass
from datetime import datetime
from typing import TypedDict

# OS が報告する「最後の入力からの経過秒数」(>= 0)
IdleSample = int


@dataclass(frozen=True)
class EpisodeState:
    """アイドルエピソードの状態 (tick ごとに置き換える)."""

    is_idle: bool = False
    alert_sent: bool = False
    idle_since: datetime | None = None

    def __post_init__(self) -> None:
        if self.alert_sent and not self.is_idle:
            msg = "alert_sent requires is_idle"
            raise ValueError(msg)
        if self.is_idle != (self.idle_since is not None):
            msg = "idle_since must be set exactly when is_idle is True"
            raise ValueError(msg)


class NotificationMessage(TypedDict):
    """通知送信に渡すメッセージ."""

    subject: str
    body: str
