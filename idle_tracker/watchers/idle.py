"""Idle detection helpers (Windows uses LASTINPUTINFO; others fallback to 0)."""

from __future__ import annotations

import sys
from typing import Any, ClassVar

from idle_tracker.model.models import IdleSample

if sys.platform == "win32":
    # Windows 専用の ctypes 構成要素だけこのブロックで import する
    from ctypes import Structure, byref, sizeof, windll, wintypes

    class LASTINPUTINFO(Structure):
        """Windows LASTINPUTINFO structure."""

        _fields_: ClassVar[Any] = [
            ("cbSize", wintypes.UINT),
            ("dwTime", wintypes.DWORD),
        ]

    def get_idle_ms() -> int:
        """最後の入力からの経過時間をミリ秒で取得（Windows）。"""
        lii = LASTINPUTINFO()
        lii.cbSize = sizeof(LASTINPUTINFO)
        try:
            ok = windll.user32.GetLastInputInfo(byref(lii))
        except OSError:
            return 0
        else:
            if ok:
                current_tick = int(windll.kernel32.GetTickCount())
                # GetTickCount は約49.7日で一周するので32bitで差を取る
                return (current_tick - int(lii.dwTime)) & 0xFFFFFFFF
            return 0

else:
    # 非Windows（CI等）は 0 を返すフォールバック
    def get_idle_ms() -> int:
        """非Windowsでは 0 を返すフォールバック実装。"""
        return 0


def get_idle_seconds() -> IdleSample:
    """最後の入力からの経過時間を秒 (切り捨て) で取得."""
    return max(0, get_idle_ms()) // 1000


def is_idle(threshold_seconds: int = 300) -> bool:
    """指定した閾値を超えてアイドル状態かチェック."""
    return get_idle_seconds() >= threshold_seconds

