from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional


class AutosaveLoop:
    """Periodically persists a live transcript without overlapping saves.

    ``save`` is awaited; callers that do blocking IO should offload it with
    ``asyncio.to_thread`` inside the coroutine they pass in.
    """

    def __init__(
        self,
        interval: float,
        should_save: Callable[[], bool],
        save: Callable[[], Awaitable[None]],
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._interval = interval
        self._should_save = should_save
        self._save = save
        self._on_error = on_error
        self._in_flight = False
        self._timer: Optional[asyncio.Task] = None
        self._pending: set[asyncio.Task] = set()
        self._logger = logging.getLogger("meetscribe.autosave")

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def save_in_flight(self) -> bool:
        return self._in_flight

    async def tick(self) -> bool:
        """Save once if needed. Returns True when a save was started."""
        if self._in_flight or not self._should_save():
            return False
        self._in_flight = True
        try:
            await self._save()
            self._logger.debug("Autosave completed")
        except Exception as exc:
            self._logger.warning("Autosave failed: %s", exc)
            if self._on_error is not None:
                self._on_error(exc)
        finally:
            self._in_flight = False
        return True

    def start(self) -> None:
        if self.running:
            return
        self._timer = asyncio.create_task(self._run())
        self._logger.info("Autosave started: interval=%ss", self._interval)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            task = asyncio.create_task(self.tick())
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def stop(self) -> None:
        timer = self._timer
        self._timer = None
        if timer is not None:
            timer.cancel()
            try:
                await timer
            except asyncio.CancelledError:
                pass
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
        self._logger.info("Autosave stopped")
