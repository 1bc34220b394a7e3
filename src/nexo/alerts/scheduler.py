"""Background timer driving AlertEvaluator.evaluate_all()."""

import asyncio

from nexo.alerts.evaluator import AlertEvaluator
from nexo.config import AlertSettings
from nexo.logging import get_logger

logger = get_logger(__name__)


class AlertScheduler:
    """Runs an evaluation tick every ``evaluate_interval`` seconds.

    The first tick waits ``initial_delay`` so price caches can warm up.
    Ticks are strictly sequential; a failing tick is logged and the loop
    keeps going.
    """

    def __init__(self, evaluator: AlertEvaluator, settings: AlertSettings | None = None) -> None:
        self._evaluator = evaluator
        self._settings = settings or AlertSettings()
        self._running = False
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            logger.warning("alert_scheduler_already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "alert_scheduler_started",
            interval=self._settings.evaluate_interval,
            initial_delay=self._settings.initial_delay,
        )

    async def stop(self) -> None:
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("alert_scheduler_stopped")

    async def _loop(self) -> None:
        await asyncio.sleep(self._settings.initial_delay)
        while self._running:
            try:
                await self._evaluator.evaluate_all()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.error("alert_scheduler_tick_error", exc_info=True)
            if self._running:
                await asyncio.sleep(self._settings.evaluate_interval)
