"""
vdc_client/scheduling.py

Cancellable timers for the consultation view. Both return a handle whose
stop() must be called on teardown; stop() is idempotent.

  PeriodicTask  – run a callback every `interval` seconds; a tick that comes
                  while the previous run is still in flight is skipped.
  Debouncer     – collapse a burst of pushes into one call with the last value.
"""

import asyncio
import inspect
import logging

logger = logging.getLogger(__name__)


async def _call(callback, *args):
    result = callback(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class PeriodicTask:

    def __init__(self, interval, callback, run_immediately=False, name=None):
        self.interval = interval
        self.callback = callback
        self.run_immediately = run_immediately
        self.name = name or getattr(callback, "__name__", "periodic")
        self.skipped = 0
        self._loop_task = None
        self._current = None

    @property
    def running(self):
        return self._loop_task is not None and not self._loop_task.done()

    def start(self):
        if not self.running:
            self._loop_task = asyncio.ensure_future(self._run())
        return self

    async def _run(self):
        if self.run_immediately:
            self._fire()
        while True:
            await asyncio.sleep(self.interval)
            self._fire()

    def _fire(self):
        if self._current is not None and not self._current.done():
            self.skipped += 1
            logger.debug("[Scheduler] %s still running, skipping tick", self.name)
            return
        self._current = asyncio.ensure_future(self._invoke())

    async def _invoke(self):
        try:
            await _call(self.callback)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("[Scheduler] %s failed", self.name)

    def stop(self):
        for task in (self._loop_task, self._current):
            if task is not None and not task.done():
                task.cancel()
        self._loop_task = None
        self._current = None


class Debouncer:

    def __init__(self, delay, callback, name=None):
        self.delay = delay
        self.callback = callback
        self.name = name or getattr(callback, "__name__", "debounced")
        self._value = None
        self._timer = None

    @property
    def pending(self):
        return self._timer is not None and not self._timer.done()

    def push(self, value):
        self._value = value
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.ensure_future(self._fire_later())

    async def _fire_later(self):
        await asyncio.sleep(self.delay)
        # Detach before calling back so a push during the call starts a new timer
        self._timer = None
        value, self._value = self._value, None
        try:
            await _call(self.callback, value)
        except Exception:
            logger.exception("[Scheduler] %s failed", self.name)

    def stop(self):
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        self._value = None
