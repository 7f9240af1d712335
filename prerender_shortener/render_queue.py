"""A bounded queue of page renders processed by worker threads."""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable

from .db import RenderStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RenderJob:
    """A page to render and the short code whose record receives the result."""

    short_code: str
    original_url: str


class RenderQueue:
    """Queues render jobs, runs them on workers and lets callers wait for them.

    A URL is rendered at most once at a time; queueing it again while it is in
    progress does nothing. The store must provide update_render_status and
    update_content; render takes a URL and returns HTML or raises.
    """

    def __init__(
        self,
        store: Any,
        render: Callable[[str], str],
        worker_count: int = 3,
        capacity: int = 100,
    ) -> None:
        self._store = store
        self._render = render
        self.worker_count = worker_count
        self.capacity = capacity
        self._lock = threading.Lock()
        self._has_jobs = threading.Condition(self._lock)
        self._jobs: deque[RenderJob] = deque()
        self._in_progress: set[str] = set()
        self._waiting: dict[str, list[threading.Event]] = {}
        self._workers: list[threading.Thread] = []
        self._closed = False

    def start(self) -> "RenderQueue":
        """Start the worker threads; calling it again has no effect."""
        with self._lock:
            if self._workers:
                return self
            self._workers = [
                threading.Thread(
                    target=self._work, args=(worker_id,), name=f"render-worker-{worker_id}", daemon=True
                )
                for worker_id in range(self.worker_count)
            ]
        for worker in self._workers:
            worker.start()
        logger.info("Initialized render queue with %d workers", self.worker_count)
        return self

    def queue_render(self, short_code: str, original_url: str) -> bool:
        """Queue a render unless the URL is already in progress or the queue is full.

        Returns True if a job was queued. Raises RuntimeError after shutdown.
        """
        with self._has_jobs:
            if self._closed:
                raise RuntimeError("render queue is shut down")
            if original_url in self._in_progress:
                logger.info("URL %s is already being rendered, not queuing duplicate", original_url)
                return False
            if len(self._jobs) >= self.capacity:
                logger.warning(
                    "Render queue is full (capacity: %d), dropping job for URL: %s",
                    self.capacity,
                    original_url,
                )
                return False
            self._in_progress.add(original_url)
            self._jobs.append(RenderJob(short_code, original_url))
            self._has_jobs.notify()
        logger.info("Queued rendering job for URL: %s (short code: %s)", original_url, short_code)
        return True

    def wait_for_render(self, original_url: str, timeout: float) -> bool:
        """Wait up to timeout seconds for an in-progress render of the URL.

        Returns True if the render finished, False if the URL was not in
        progress or the wait timed out.
        """
        with self._lock:
            if original_url not in self._in_progress:
                return False
            done = threading.Event()
            self._waiting.setdefault(original_url, []).append(done)

        if done.wait(timeout):
            return True

        logger.info("Wait timeout after %ss for URL: %s", timeout, original_url)
        with self._lock:
            waiters = self._waiting.get(original_url)
            if waiters is not None:
                if done in waiters:
                    waiters.remove(done)
                if not waiters:
                    del self._waiting[original_url]
        return False

    def is_in_progress(self, original_url: str) -> bool:
        """Tell whether the URL is queued or being rendered."""
        with self._lock:
            return original_url in self._in_progress

    def status(self) -> dict[str, Any]:
        """Return a snapshot of workers, queued jobs, renders in progress and waiters."""
        with self._lock:
            return {
                "worker_count": self.worker_count,
                "queue_length": len(self._jobs),
                "in_progress_count": len(self._in_progress),
                "in_progress_urls": list(self._in_progress),
                "waiting_threads": sum(len(w) for w in self._waiting.values()),
            }

    def shutdown(self) -> None:
        """Stop accepting jobs; workers finish what is queued and then exit."""
        with self._has_jobs:
            self._closed = True
            self._has_jobs.notify_all()
        logger.info("Render queue shutdown initiated")

    def _work(self, worker_id: int) -> None:
        logger.info("Render worker %d started", worker_id)
        while True:
            with self._has_jobs:
                while not self._jobs and not self._closed:
                    self._has_jobs.wait()
                if not self._jobs:
                    break
                job = self._jobs.popleft()
            self._process(worker_id, job)
        logger.info("Render worker %d stopped", worker_id)

    def _process(self, worker_id: int, job: RenderJob) -> None:
        started = time.monotonic()
        try:
            self._store.update_render_status(job.short_code, RenderStatus.RENDERING)
        except Exception:
            logger.exception("Worker %d: failed to mark %s as rendering", worker_id, job.short_code)

        try:
            html = self._render(job.original_url)
        except Exception as exc:
            logger.warning("Worker %d: failed to render %s: %s", worker_id, job.original_url, exc)
            html, status = "", RenderStatus.FAILED
        else:
            status = RenderStatus.COMPLETED

        try:
            self._store.update_content(job.short_code, html, status)
        except Exception:
            logger.exception("Worker %d: failed to save render result for %s", worker_id, job.short_code)

        with self._lock:
            for done in self._waiting.pop(job.original_url, []):
                done.set()
            self._in_progress.discard(job.original_url)

        logger.info(
            "Worker %d: completed job for %s in %.2fs (status: %s)",
            worker_id,
            job.original_url,
            time.monotonic() - started,
            status,
        )