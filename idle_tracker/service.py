"""Idle tracking service host: lifecycle hooks, signals and the CLI entry point."""

from __future__ import annotations

import argparse
import atexit
import os
import signal
import sys
import threading
import traceback
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from types import TracebackType
from typing import Any

from idle_tracker.config import (
    DEFAULT_ENV_FILE,
    ConfigError,
    TrackerConfig,
    load_config,
    load_local_env,
)
from idle_tracker.model.models import IdleSample
from idle_tracker.notify.notifications import NotificationService
from idle_tracker.watchers.episode import (
    IdleEpisodeTracker,
    LifecycleEvent,
    build_lifecycle_message,
    machine_name,
)
from idle_tracker.watchers.idle import get_idle_seconds
from idle_tracker.watchers.logger import configure_logger, logger
from idle_tracker.watchers.pump import run_loop

EXIT_CONFIG_ERROR = 2


class IdleTrackingService:
    """ポーリングループとライフサイクル通知をまとめるサービス."""

    def __init__(
        self,
        config: TrackerConfig,
        notifier: NotificationService | None = None,
        *,
        sampler: Callable[[], IdleSample] = get_idle_seconds,
        machine: str | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.config = config
        self.notifier = notifier or NotificationService(config.smtp)
        self.sampler = sampler
        self.machine = machine or machine_name()
        self._clock = clock
        self.stop_event = threading.Event()
        self.tracker = IdleEpisodeTracker(
            self.notifier,
            config.threshold_seconds,
            machine=self.machine,
            recipient=config.smtp.recipient,
            clock=clock,
        )
        self._previous_excepthook: Callable[..., Any] | None = None
        self._previous_thread_excepthook: Callable[..., Any] | None = None

    # ------------------------------------------------------------------
    # Lifecycle notifications (EpisodeState には触れない)
    def notify_lifecycle(self, kind: LifecycleEvent, detail: str | None = None) -> bool:
        """ベストエフォートで通知する. 例外は外に出さない."""
        message = build_lifecycle_message(kind, self.machine, self._clock(), detail)
        try:
            return self.notifier.send(message)
        except Exception:
            logger.exception(f"Failed to send {kind.value} notification")
            return False

    def _on_process_exit(self) -> None:
        self.notify_lifecycle(LifecycleEvent.PROCESS_EXIT)

    def _on_unhandled_exception(
        self,
        exc_type: type[BaseException],
        exc: BaseException,
        tb: TracebackType | None,
    ) -> None:
        if not issubclass(exc_type, KeyboardInterrupt):
            detail = "".join(traceback.format_exception(exc_type, exc, tb)).strip()
            logger.error(f"Unhandled exception: {exc!r}")
            self.notify_lifecycle(LifecycleEvent.CRASHED, detail)
        if self._previous_excepthook is not None:
            self._previous_excepthook(exc_type, exc, tb)

    def _on_thread_exception(self, args: threading.ExceptHookArgs) -> None:
        if not issubclass(args.exc_type, SystemExit):
            detail = "".join(
                traceback.format_exception(args.exc_type, args.exc_value, args.exc_traceback)
            ).strip()
            self.notify_lifecycle(LifecycleEvent.CRASHED, detail)
        if self._previous_thread_excepthook is not None:
            self._previous_thread_excepthook(args)

    def _on_signal(self, signum: int, _frame: object) -> None:
        logger.info(f"Received signal {signum}, stopping.")
        self.request_stop()

    def install_hooks(self) -> None:
        """プロセス終了・未処理例外・停止シグナルのフックを登録する."""
        atexit.register(self._on_process_exit)
        self._previous_excepthook = sys.excepthook
        sys.excepthook = self._on_unhandled_exception
        self._previous_thread_excepthook = threading.excepthook
        threading.excepthook = self._on_thread_exception
        if threading.current_thread() is threading.main_thread():
            signal.signal(signal.SIGINT, self._on_signal)
            signal.signal(signal.SIGTERM, self._on_signal)
            if hasattr(signal, "SIGBREAK"):
                # Windows: stop.py から CTRL_BREAK_EVENT で停止する
                signal.signal(signal.SIGBREAK, self._on_signal)

    def uninstall_hooks(self) -> None:
        atexit.unregister(self._on_process_exit)
        if self._previous_excepthook is not None:
            sys.excepthook = self._previous_excepthook
            self._previous_excepthook = None
        if self._previous_thread_excepthook is not None:
            threading.excepthook = self._previous_thread_excepthook
            self._previous_thread_excepthook = None

    # ------------------------------------------------------------------
    # Main loop
    def request_stop(self) -> None:
        self.stop_event.set()

    def run(self) -> int:
        """停止要求までポーリングし、停止通知を送ってから戻る."""
        logger.info("Service started.")
        if self.config.notify_on_start:
            self.notify_lifecycle(LifecycleEvent.STARTED)
        try:
            ticks = run_loop(
                self.tracker,
                self.stop_event,
                self.config.check_interval_seconds,
                self.sampler,
            )
        finally:
            logger.info("Service stopping.")
            self.notify_lifecycle(LifecycleEvent.STOPPED)
        return ticks


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="idle-tracker",
        description="Notify by e-mail when this machine has been idle too long",
    )
    parser.add_argument(
        "--env-file",
        type=Path,
        default=DEFAULT_ENV_FILE,
        help="dotenv file to load before reading the environment",
    )
    parser.add_argument("--threshold", type=int, help="idle threshold in seconds")
    parser.add_argument("--interval-ms", type=int, help="polling interval in milliseconds")
    parser.add_argument("--log-path", type=Path, help="log file path")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    load_local_env(args.env_file)
    env = dict(os.environ)
    if args.threshold is not None:
        env["IDLE_THRESHOLD_SECONDS"] = str(args.threshold)
    if args.interval_ms is not None:
        env["IDLE_CHECK_INTERVAL_MS"] = str(args.interval_ms)
    if args.log_path is not None:
        env["IDLE_LOG_PATH"] = str(args.log_path)

    try:
        config = load_config(env)
    except ConfigError as exc:
        sys.stderr.write(f"{exc}\n")
        return EXIT_CONFIG_ERROR

    configure_logger(config.log_path)
    service = IdleTrackingService(config)
    service.install_hooks()
    service.run()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
