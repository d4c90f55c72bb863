#!/usr/bin/env python3
"""Start the idle tracker in the background (Windows/macOS/Linux)."""

from __future__ import annotations

import os
import platform
import subprocess
import sys
from pathlib import Path

import psutil
from utils import LOG_DIR, REPO_ROOT, TRACKER_PID_FILE, info, ok, warn

CREATE_NEW_PROCESS_GROUP = 0x00000200
CREATE_NO_WINDOW = 0x08000000


def already_running(path: Path) -> int | None:
    if not path.exists():
        return None
    try:
        pid = int(path.read_text(encoding="ascii").strip())
    except ValueError:
        return None
    return pid if psutil.pid_exists(pid) else None


def background_popen(
    cmd: list[str], stdout_path: Path, stderr_path: Path, env: dict[str, str]
) -> subprocess.Popen:
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    with stdout_path.open("ab", buffering=0) as stdout_f, stderr_path.open(
        "ab", buffering=0
    ) as stderr_f:
        creationflags = 0
        start_new_session = False
        if platform.system() == "Windows":
            # CTRL_BREAK を受け取れるようコンソール付きの別プロセスグループで起動
            creationflags = CREATE_NEW_PROCESS_GROUP | CREATE_NO_WINDOW
        else:
            start_new_session = True

        return subprocess.Popen(  # noqa: S603
            cmd,
            cwd=str(REPO_ROOT),
            stdout=stdout_f,
            stderr=stderr_f,
            env=env,
            creationflags=creationflags,
            start_new_session=start_new_session,
        )


def start_tracker(env: dict[str, str], extra_args: list[str]) -> int:
    info("Starting idle tracker...")
    proc = background_popen(
        [sys.executable, "-m", "idle_tracker.service", *extra_args],
        stdout_path=LOG_DIR / "idle_tracker.out.log",
        stderr_path=LOG_DIR / "idle_tracker.err.log",
        env=env,
    )
    TRACKER_PID_FILE.write_text(str(proc.pid), encoding="ascii")
    ok(f"Idle tracker started (PID {proc.pid})")
    return proc.pid


def main() -> int:
    os.chdir(REPO_ROOT)

    pid = already_running(TRACKER_PID_FILE)
    if pid is not None:
        warn(f"Idle tracker is already running (PID {pid})")
        return 1

    if not (REPO_ROOT / ".env.local").exists():
        warn(f".env.local not found at {REPO_ROOT}; using environment only")

    start_tracker(os.environ.copy(), sys.argv[1:])
    info("Logs: ./log/idle_tracker.log")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
