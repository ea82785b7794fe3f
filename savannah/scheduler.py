import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from savannah.relationship.processor import EmotionalEngine

log = logging.getLogger("scheduler")

_scheduler_task: Optional[asyncio.Task] = None


async def _run_tick_once(engine: EmotionalEngine, elapsed_seconds: float) -> int:
    try:
        ticked = await engine.tick_all(elapsed_seconds)
        log.debug(f"[SCHEDULER] Tick complete: users={ticked}, active_sessions={len(engine.active_users())}")
        return ticked
    except Exception as e:
        log.exception(f"[SCHEDULER] Tick failed: {e}")
        return 0


async def _scheduler_loop(engine: EmotionalEngine, interval_seconds: float):
    log.info(f"[SCHEDULER] Starting mood tick scheduler: interval={interval_seconds:.0f}s")

    last = datetime.now(timezone.utc)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            now = datetime.now(timezone.utc)
            # pass real elapsed time so a stalled loop does not under-decay
            await _run_tick_once(engine, (now - last).total_seconds())
            last = now
        except asyncio.CancelledError:
            log.info("[SCHEDULER] Scheduler cancelled, shutting down")
            break


def start_scheduler(engine: EmotionalEngine, interval_seconds: Optional[float] = None) -> Optional[asyncio.Task]:
    global _scheduler_task

    cfg = engine.cfg
    if not cfg.TICK_ENABLED:
        log.info("[SCHEDULER] Mood tick scheduler is disabled (TICK_ENABLED=false)")
        return None

    if _scheduler_task is not None and not _scheduler_task.done():
        log.warning("[SCHEDULER] Scheduler already running")
        return _scheduler_task

    _scheduler_task = asyncio.create_task(
        _scheduler_loop(engine, interval_seconds or cfg.TICK_INTERVAL_SECONDS)
    )
    log.info("[SCHEDULER] Mood tick scheduler started")
    return _scheduler_task


async def stop_scheduler():
    global _scheduler_task
    if _scheduler_task is None:
        return
    _scheduler_task.cancel()
    try:
        await _scheduler_task
    except asyncio.CancelledError:
        pass
    _scheduler_task = None
    log.info("[SCHEDULER] Mood tick scheduler stopped")
