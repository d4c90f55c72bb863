#!/usr/bin/env python3
import contextlib
import os
import signal
import sys
from pathlib import Path

import psutil
from utils import REPO_ROOT, TRACKER_PID_FILE, info, ok, warn

# 停止通知を送る猶予
STOP_TIMEOUT_SECONDS = 30


def read_pid(path: Path) -> int | None:
    if not path.exists():
        return None
    try:
        return int(path.read_text(encoding="ascii").strip())
    except ValueError:
        return None


def request_graceful_stop(proc: psutil.Process) -> None:
    """トラッカーに停止を要求する (停止通知を送らせるため)."""
    if sys.platform == "win32":
        # TerminateProcess ではハンドラが動かないので CTRL_BREAK を送る
        os.kill(proc.pid, signal.CTRL_BREAK_EVENT)
    else:
        proc.terminate()


def stop_by_pid_file(path: Path) -> None:
    pid = read_pid(path)
    if pid is None:
        info("PID file missing or unreadable; nothing to stop")
        with contextlib.suppress(OSError):
            path.unlink(missing_ok=True)
        return
    try:
        proc = psutil.Process(pid)
        request_graceful_stop(proc)
        proc.wait(timeout=STOP_TIMEOUT_SECONDS)
    except psutil.NoSuchProcess:
        info("すでに停止済みです")
    except psutil.TimeoutExpired:
        warn(f"Idle tracker (PID {pid}) did not stop in time; killing")
        proc.kill()
    else:
        ok(f"Idle tracker stopped (PID {pid})")
    with contextlib.suppress(OSError):
        path.unlink(missing_ok=True)


def main() -> int:
    os.chdir(REPO_ROOT)

    info("============== Idle tracker 停止中 ================")
    stop_by_pid_file(TRACKER_PID_FILE)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
