"""
Batch audits over many targets.

Each worker slot runs a full audit with its own browser session; nothing is
shared between slots except the stores, which serialise their own I/O.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from auditor import AuditOrchestrator
from errors import AuditError, AuditFailedError
from logging_utils import get_logger
from models import AuditResult, utc_now

logger = get_logger(__name__)


@dataclass
class AuditAttempt:
    target_code: str
    target_name: str = ""
    timestamp: str = ""
    success: bool = False
    result: Optional[AuditResult] = None
    error: Optional[str] = None
    duration_ms: float = 0.0


@dataclass
class ErrorPattern:
    error_type: str
    count: int = 0
    affected_targets: List[str] = field(default_factory=list)
    sample_message: str = ""


def categorize_error(message: str) -> str:
    """Bucket an error message into a coarse failure category."""
    message = message or ""
    if "timeout" in message or "Timeout" in message or "timed out" in message:
        return "TIMEOUT"
    if "navigation" in message or "Navigation" in message:
        return "NAVIGATION_FAILED"
    if "net::ERR" in message:
        return "NETWORK_ERROR"
    if "Cannot find" in message or "No element" in message:
        return "ELEMENT_NOT_FOUND"
    if "database" in message or "audits.json" in message:
        return "DATABASE_ERROR"
    return "UNKNOWN_ERROR"


def _audit_one(orchestrator: AuditOrchestrator, code: str, verbose: bool,
               cancel_event: Optional[threading.Event]) -> AuditAttempt:
    attempt = AuditAttempt(target_code=code.upper(), timestamp=utc_now().isoformat())
    started = time.monotonic()
    try:
        result = orchestrator.run_audit(code, verbose, cancel_event=cancel_event, raise_on_failure=True)
    except AuditFailedError as exc:
        attempt.result = exc.result
        attempt.target_name = exc.result.target_name
        attempt.error = exc.result.error
    except AuditError as exc:
        attempt.error = str(exc)
    else:
        attempt.success = True
        attempt.result = result
        attempt.target_name = result.target_name
    attempt.duration_ms = round((time.monotonic() - started) * 1000.0, 1)

    if attempt.success:
        logger.info("SUCCESS %s in %.2fs - risk %d/100", attempt.target_code,
                    attempt.duration_ms / 1000.0, attempt.result.risk_score)
    else:
        logger.warning("FAILED %s in %.2fs: %s", attempt.target_code,
                       attempt.duration_ms / 1000.0, attempt.error)
    return attempt


def run_batch(
    orchestrator: AuditOrchestrator,
    codes: Iterable[str],
    max_workers: int = 2,
    verbose: bool = False,
    cancel_event: Optional[threading.Event] = None,
) -> List[AuditAttempt]:
    """Audit several targets in parallel worker slots.

    Attempts come back in the order the codes were given. Setting
    cancel_event stops pending audits at their next step boundary; their
    sessions are still closed.
    """
    codes = list(codes)
    if not codes:
        return []
    if cancel_event is None:
        cancel_event = threading.Event()
    max_workers = max(1, min(max_workers, len(codes)))
    logger.info("Running %d audits with %d worker slots", len(codes), max_workers)

    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="audit-worker") as executor:
        futures = [executor.submit(_audit_one, orchestrator, code, verbose, cancel_event) for code in codes]
        try:
            return [future.result() for future in futures]
        except KeyboardInterrupt:
            cancel_event.set()
            for future in futures:
                future.cancel()
            raise
