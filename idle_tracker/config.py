"""Configuration for the idle tracker (environment / .env.local)."""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError, field_validator

DEFAULT_ENV_FILE = Path(".env.local")
DEFAULT_LOG_PATH = Path("log") / "idle_tracker.log"

TRUE_VALUES = ("true", "1", "yes", "on")


class ConfigError(Exception):
    """Raised when the configuration cannot be loaded or is invalid."""


class SmtpSettings(BaseModel):
    """SMTP 送信設定 (通知送信側だけが使う)."""

    host: str = ""
    port: int = 587
    enable_ssl: bool = True
    sender: str = ""
    recipient: str = ""
    username: str = ""
    password: str = ""
    timeout: float = 100.0

    @field_validator("port")
    @classmethod
    def port_must_be_valid(cls, v: int) -> int:
        """ポート番号が範囲内であること"""
        if not 0 < v < 65536:  # noqa: PLR2004
            msg = "port must be between 1 and 65535"
            raise ValueError(msg)
        return v

    @field_validator("timeout")
    @classmethod
    def timeout_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            msg = "timeout must be positive"
            raise ValueError(msg)
        return v


class TrackerConfig(BaseModel):
    """アイドル監視の設定."""

    threshold_seconds: int = 300
    check_interval_ms: int = 1000
    log_path: Path = DEFAULT_LOG_PATH
    notify_on_start: bool = False
    smtp: SmtpSettings = SmtpSettings()

    @field_validator("threshold_seconds", "check_interval_ms")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        """閾値と間隔は正の値であること"""
        if v <= 0:
            msg = "value must be positive"
            raise ValueError(msg)
        return v

    @property
    def check_interval_seconds(self) -> float:
        return self.check_interval_ms / 1000


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in TRUE_VALUES


def load_local_env(path: Path = DEFAULT_ENV_FILE) -> bool:
    """.env.local があれば環境変数へ読み込む."""
    if not path.exists():
        return False
    return load_dotenv(dotenv_path=path, override=True)


def load_config(environ: dict[str, str] | None = None) -> TrackerConfig:
    """環境変数から設定を組み立てる.

    Args:
        environ: 参照する環境変数 (省略時は ``os.environ``)

    Raises:
        ConfigError: 値が不正な場合

    """
    env = os.environ if environ is None else environ
    try:
        smtp = SmtpSettings(
            host=env.get("SMTP_HOST", ""),
            port=int(env.get("SMTP_PORT", "587")),
            enable_ssl=_parse_bool(env.get("SMTP_ENABLE_SSL", "true")),
            sender=env.get("SMTP_FROM", ""),
            recipient=env.get("SMTP_TO", ""),
            username=env.get("SMTP_USERNAME", ""),
            password=env.get("SMTP_PASSWORD", ""),
            timeout=float(env.get("SMTP_TIMEOUT_SECONDS", "100")),
        )
        return TrackerConfig(
            threshold_seconds=int(env.get("IDLE_THRESHOLD_SECONDS", "300")),
            check_interval_ms=int(env.get("IDLE_CHECK_INTERVAL_MS", "1000")),
            log_path=Path(env.get("IDLE_LOG_PATH", str(DEFAULT_LOG_PATH))),
            notify_on_start=_parse_bool(env.get("IDLE_NOTIFY_ON_START", "false")),
            smtp=smtp,
        )
    except (ValueError, ValidationError) as exc:
        msg = f"Invalid configuration: {exc}"
        raise ConfigError(msg) from exc
