import threading
from collections.abc import Callable

from idle_tracker.model.models import IdleSample
from idle_tracker.watchers.episode import IdleEpisodeTracker
from idle_tracker.watchers.idle import get_idle_seconds
from idle_tracker.watchers.logger import logger


def collect_sample(sampler: Callable[[], IdleSample] = get_idle_seconds) -> IdleSample:
    """サンプラーから経過秒数を取得. 取得できなければ 0 (操作中) とみなす."""
    try:
        idle_seconds = int(sampler())
    except Exception:  # noqa: BLE001
        logger.warning("Idle time unavailable, treating as active.")
        return 0
    return max(0, idle_seconds)


def run_loop(
    tracker: IdleEpisodeTracker,
    stop_event: threading.Event,
    interval_seconds: float,
    sampler: Callable[[], IdleSample] = get_idle_seconds,
) -> int:
    """停止要求が来るまで一定間隔でサンプルを取り込む.

    Args:
        tracker: 状態遷移と通知を担うトラッカー
        stop_event: 協調的な停止シグナル (tick ごとに1回確認)
        interval_seconds: ポーリング間隔（秒）
        sampler: アイドル秒数の取得関数

    Returns:
        int: 処理した tick 数

    """
    ticks = 0
    while not stop_event.is_set():
        try:
            tracker.tick(collect_sample(sampler))
        except Exception:
            logger.exception("Unexpected error while processing idle sample")
        ticks += 1
        if stop_event.wait(interval_seconds):
            break
    return ticks
