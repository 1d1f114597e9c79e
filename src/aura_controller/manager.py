"""Polling work queue that dispatches reconciliation passes.

Keys are ``namespace/name`` strings. A key is queued at most once and is
never handed to two workers at the same time; failed passes are retried with
per-key exponential backoff.
"""
from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Callable, Dict, Optional, Set

from .config import ControllerConfig
from .reconciler import ReconcileResult
from .state import RecordStore

logger = logging.getLogger(__name__)


def split_key(key: str) -> tuple[str, str]:
    namespace, _, name = key.rpartition("/")
    return namespace or "default", name


class Manager:
    def __init__(
        self,
        reconcile: Callable[[str, str], ReconcileResult],
        records: RecordStore,
        config: Optional[ControllerConfig] = None,
        namespace: Optional[str] = None,
        executor: Optional[Executor] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._reconcile = reconcile
        self._records = records
        self._config = config or ControllerConfig()
        self._namespace = namespace
        self._executor = executor or ThreadPoolExecutor(
            max_workers=self._config.concurrent,
            thread_name_prefix="reconcile",
        )
        self._clock = clock
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._queue: Dict[str, float] = {}
        self._in_flight: Set[str] = set()
        self._failures: Dict[str, int] = {}
        self._generations: Dict[str, int] = {}
        self._last_resync: Optional[float] = None
        self._last_discovery: Optional[float] = None

    def enqueue(self, key: str, delay: float = 0.0) -> None:
        due = self._clock() + max(delay, 0.0)
        with self._lock:
            current = self._queue.get(key)
            if current is None or due < current:
                self._queue[key] = due

    def backoff_delay(self, key: str) -> float:
        failures = self._failures.get(key, 0)
        if failures <= 0:
            return 0.0
        minimum = self._config.min_retry_delay.total_seconds()
        maximum = self._config.max_retry_delay.total_seconds()
        return min(minimum * (2 ** (failures - 1)), maximum)

    def resync(self, full: bool = True) -> int:
        """List records and queue them.

        A full resync queues every record that is neither queued nor in
        flight. Otherwise only records that are new or whose generation moved
        since they were last queued are picked up.
        """

        records = self._records.list(self._namespace)
        queued = 0
        for record in records:
            key = record.key
            generation = record.metadata.generation
            with self._lock:
                changed = self._generations.get(key) != generation
                busy = key in self._queue or key in self._in_flight
                self._generations[key] = generation
            if changed and busy:
                # spec edits take effect right away, even during backoff
                self.enqueue(key)
                queued += 1
            elif not busy and (full or changed):
                self.enqueue(key)
                queued += 1
        if full:
            listed = {record.key for record in records}
            with self._lock:
                for key in set(self._generations) - listed:
                    del self._generations[key]
                    self._failures.pop(key, None)
        now = self._clock()
        self._last_discovery = now
        if full:
            self._last_resync = now
        logger.debug("Listed %d aura instance(s), queued %d", len(records), queued)
        return queued

    def pending(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._queue)

    def run_once(self) -> int:
        """Dispatch every due key that is not already in flight."""

        now = self._clock()
        with self._lock:
            ready = [key for key, due in self._queue.items() if due <= now and key not in self._in_flight]
            for key in ready:
                del self._queue[key]
                self._in_flight.add(key)
        for key in ready:
            self._executor.submit(self._process, key)
        return len(ready)

    def run(self) -> None:
        logger.info("Starting manager with %d worker(s)", self._config.concurrent)
        resync_every = self._config.resync_interval.total_seconds()
        discover_every = self._config.discovery_interval.total_seconds()
        poll = self._config.poll_interval.total_seconds()
        while not self._stop.is_set():
            now = self._clock()
            full = self._last_resync is None or now - self._last_resync >= resync_every
            if full or self._last_discovery is None or now - self._last_discovery >= discover_every:
                try:
                    self.resync(full=full)
                except Exception as exc:  # noqa: BLE001 - keep the loop alive, retry on next poll
                    logger.error("Failed to list aura instances: %s", exc)
                    self._last_discovery = now
            self.run_once()
            self._stop.wait(poll)

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        logger.info("Stopping manager")
        if timeout is None:
            timeout = self._config.graceful_shutdown_timeout.total_seconds()
        deadline = self._clock() + timeout
        while self._clock() < deadline:
            with self._lock:
                if not self._in_flight:
                    break
            time.sleep(0.1)
        self._executor.shutdown(wait=False, cancel_futures=True)

    def _process(self, key: str) -> None:
        namespace, name = split_key(key)
        try:
            result = self._reconcile(namespace, name)
        except Exception as exc:  # noqa: BLE001 - a pass must never take down the worker
            logger.exception("Unhandled error while reconciling '%s'", key)
            result = ReconcileResult(error=exc)
        try:
            self._handle_result(key, result)
        finally:
            # the key stays in flight until its retry is queued
            with self._lock:
                self._in_flight.discard(key)

    def _handle_result(self, key: str, result: ReconcileResult) -> None:
        if result.failed:
            self._failures[key] = self._failures.get(key, 0) + 1
            delay = self.backoff_delay(key)
            logger.info("Requeueing '%s' in %.3fs after failure", key, delay)
            self.enqueue(key, delay)
            return
        self._failures.pop(key, None)
        if result.requeue_after is not None:
            self.enqueue(key, result.requeue_after.total_seconds())
        elif result.requeue:
            self.enqueue(key)
