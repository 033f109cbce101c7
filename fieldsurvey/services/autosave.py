"""Draft autosave — periodic local persistence of dirty forms.

Each active form owns one ``AutoSaveTimer``. A tick persists the form only
when some path is dirty, then clears exactly the paths it captured before
persisting. Failures are logged and retried on the next tick; the timer
keeps running.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable
from typing import Any

from fieldsurvey.core.config import settings
from fieldsurvey.services.form_state import FormState

logger = logging.getLogger(__name__)

Persist = Callable[[], Any]  # sync or async; called with no arguments


class AutoSaveTimer:
    """Owned timer handle for one form.

    ``cancel`` stops future ticks but never interrupts a tick already
    running; ``wait_idle`` lets the owner wait for that tick to finish.
    """

    def __init__(self, form_id: str, interval_ms: int, tick: Callable[[], Any]) -> None:
        self.form_id = form_id
        self.interval_ms = interval_ms
        self._tick = tick
        self._task: asyncio.Task | None = None
        self._inflight: asyncio.Future | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def idle(self) -> bool:
        return not self.active and (self._inflight is None or self._inflight.done())

    def start(self) -> None:
        self._task = asyncio.create_task(self._run(), name=f"autosave:{self.form_id}")

    async def _run(self) -> None:
        interval = self.interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            self._inflight = asyncio.ensure_future(self._tick())
            await asyncio.shield(self._inflight)

    def cancel(self) -> None:
        if self._task is not None:
            self._task.cancel()

    async def wait_idle(self) -> None:
        """Wait for the loop to exit and for any in-flight tick to complete."""
        if self._task is not None:
            await asyncio.gather(self._task, return_exceptions=True)
        if self._inflight is not None and not self._inflight.done():
            await asyncio.gather(self._inflight, return_exceptions=True)


class AutoSaveManager:
    """Owns the autosave timers of every open form.

    Usage::

        manager = AutoSaveManager(state)
        manager.start_auto_save("building-survey", 30000, persist=controller.save_draft)
        ...
        manager.stop_auto_save("building-survey")
        await manager.shutdown()
    """

    def __init__(
        self,
        state: FormState,
        persist: Callable[[str], Any] | None = None,
        *,
        max_failures: int | None = None,
    ) -> None:
        self._state = state
        self._default_persist = persist
        self._max_failures = max_failures if max_failures is not None else settings.AUTOSAVE_MAX_FAILURES
        self._timers: dict[str, AutoSaveTimer] = {}
        self._persisters: dict[str, Persist] = {}
        self._failures: dict[str, int] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._stopping: set[AutoSaveTimer] = set()

    @property
    def active_forms(self) -> list[str]:
        return [form_id for form_id, timer in self._timers.items() if timer.active]

    def is_active(self, form_id: str) -> bool:
        timer = self._timers.get(form_id)
        return timer is not None and timer.active

    def failures(self, form_id: str) -> int:
        return self._failures.get(form_id, 0)

    def exhausted(self, form_id: str) -> bool:
        """True once consecutive failures reach the configured limit."""
        return self.failures(form_id) >= self._max_failures

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def start_auto_save(self, form_id: str, interval_ms: int | None = None, *, persist: Persist | None = None) -> None:
        """Start (or restart) the timer for a form. A running timer is replaced."""
        interval_ms = interval_ms or settings.AUTOSAVE_DEFAULT_INTERVAL_MS
        if interval_ms <= 0:
            raise ValueError(f"Autosave interval must be positive, got {interval_ms}")
        if persist is not None:
            self._persisters[form_id] = persist
        elif self._default_persist is None and form_id not in self._persisters:
            raise ValueError(f"No persistence callback for form '{form_id}'")

        self.stop_auto_save(form_id)
        timer = AutoSaveTimer(form_id, interval_ms, lambda: self.tick(form_id))
        timer.start()
        self._timers[form_id] = timer
        logger.info("Autosave started for %s every %d ms", form_id, interval_ms)

    def stop_auto_save(self, form_id: str) -> None:
        """Stop the form's timer. No-op when none is running; an in-flight save completes."""
        timer = self._timers.pop(form_id, None)
        if timer is None:
            return
        timer.cancel()
        self._stopping = {t for t in self._stopping if not t.idle}
        self._stopping.add(timer)
        logger.info("Autosave stopped for %s", form_id)

    def release(self, form_id: str) -> None:
        """Stop the form's timer and forget its callback, failure count and lock.

        Called when a form is closed. An in-flight save still completes.
        """
        self.stop_auto_save(form_id)
        self._persisters.pop(form_id, None)
        self._failures.pop(form_id, None)
        self._locks.pop(form_id, None)

    async def shutdown(self) -> None:
        """Stop every timer and wait for in-flight saves to settle."""
        for form_id in list(self._timers):
            self.stop_auto_save(form_id)
        stopping = list(self._stopping)
        self._stopping.clear()
        if stopping:
            await asyncio.gather(*(timer.wait_idle() for timer in stopping), return_exceptions=True)
        logger.info("Autosave shut down (%d timer(s) released)", len(stopping))

    # ------------------------------------------------------------------
    # Dirty tracking
    # ------------------------------------------------------------------

    def mark_dirty(self, form_id: str, path: str) -> None:
        self._state.mark_dirty(form_id, path)

    def clear_dirty(self, form_id: str) -> None:
        self._state.clear_dirty(form_id)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def _persister(self, form_id: str) -> Persist:
        persist = self._persisters.get(form_id)
        if persist is not None:
            return persist
        if self._default_persist is None:
            raise ValueError(f"No persistence callback for form '{form_id}'")
        default = self._default_persist
        return lambda: default(form_id)

    async def tick(self, form_id: str) -> bool:
        """Persist the form once if it is dirty. Returns True when a save happened."""
        if not self._state.is_open(form_id) or not self._state.is_dirty(form_id):
            return False
        lock = self._locks.setdefault(form_id, asyncio.Lock())
        if lock.locked():
            logger.debug("Autosave for %s already in progress; skipping tick", form_id)
            return False

        async with lock:
            captured = self._state.dirty_fields(form_id)
            try:
                result = self._persister(form_id)()
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                if not self._state.is_open(form_id):
                    logger.warning("Autosave for %s failed after the form was closed: %s", form_id, exc)
                    return False
                count = self._failures.get(form_id, 0) + 1
                self._failures[form_id] = count
                if count >= self._max_failures:
                    logger.error("Autosave for %s failed %d times in a row (retries exhausted): %s", form_id, count, exc)
                else:
                    logger.warning("Autosave for %s failed (attempt %d), retrying next tick: %s", form_id, count, exc)
                return False

            self._failures.pop(form_id, None)
            self._state.clear_dirty(form_id, captured)
            logger.debug("Autosaved %s (%d dirty path(s))", form_id, len(captured))
            return True
