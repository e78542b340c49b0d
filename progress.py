"""
Progress notifications for running audits.

Observers are best-effort listeners (a live dashboard, a log). The dispatcher
hands every call to a background worker so a slow or failing observer can
never delay or change an audit.
"""

import copy
from concurrent.futures import Future, ThreadPoolExecutor
from threading import Lock
from typing import Optional

from logging_utils import get_logger
from models import AuditResult, ProgressEvent

logger = get_logger(__name__)


class ProgressObserver:
    """No-op observer; subclass and override what you need."""

    def emit_progress(self, target_code: str, event: ProgressEvent) -> None:
        pass

    def emit_complete(self, target_code: str, result: AuditResult) -> None:
        pass

    def emit_error(self, target_code: str, error: str) -> None:
        pass


class LoggingProgressObserver(ProgressObserver):
    def emit_progress(self, target_code: str, event: ProgressEvent) -> None:
        logger.info("[%s] %3d%% %s", target_code, event.percent, event.step)

    def emit_complete(self, target_code: str, result: AuditResult) -> None:
        logger.info("[%s] audit %s, risk score %d/100", target_code, result.status.value, result.risk_score)

    def emit_error(self, target_code: str, error: str) -> None:
        logger.warning("[%s] audit error: %s", target_code, error)


def _log_observer_failure(future: Future) -> None:
    exc = future.exception()
    if exc is not None:
        logger.warning("Progress observer failed: %s", exc)


class ProgressDispatcher:
    """Fire-and-forget fan-out to a single observer."""

    def __init__(self, observer: Optional[ProgressObserver] = None):
        self.observer = observer
        self._executor: Optional[ThreadPoolExecutor] = None
        self._lock = Lock()

    def _submit(self, fn, *args) -> None:
        if self.observer is None:
            return
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="audit-progress")
            try:
                future = self._executor.submit(fn, *args)
            except RuntimeError as exc:  # executor already shut down
                logger.debug("Dropping progress notification: %s", exc)
                return
        future.add_done_callback(_log_observer_failure)

    def progress(self, target_code: str, step: str, percent: int) -> None:
        if self.observer is None:
            return
        event = ProgressEvent(target_code=target_code, step=step, percent=percent)
        self._submit(self.observer.emit_progress, target_code, event)

    def complete(self, target_code: str, result: AuditResult) -> None:
        if self.observer is not None:
            # Observers get their own copy; the caller's record stays untouched.
            self._submit(self.observer.emit_complete, target_code, copy.deepcopy(result))

    def error(self, target_code: str, error: str) -> None:
        if self.observer is not None:
            self._submit(self.observer.emit_error, target_code, error)

    def shutdown(self, wait: bool = False) -> None:
        with self._lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)
