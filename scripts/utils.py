#!/usr/bin/env python3
from __future__ import annotations

import sys
from pathlib import Path

# Paths used by both start and stop scripts
REPO_ROOT = Path(__file__).resolve().parent.parent
LOG_DIR = REPO_ROOT / "log"
TRACKER_PID_FILE = REPO_ROOT / "idle_tracker.pid"


# Lightweight logging helpers used in both scripts
def info(msg: str) -> None:
    sys.stdout.write(f"[INFO] {msg}\n")


def ok(msg: str) -> None:
    sys.stdout.write(f"[OK] {msg}\n")


def warn(msg: str) -> None:
    sys.stdout.write(f"[WARN] {msg}\n")
