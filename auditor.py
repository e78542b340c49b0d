import threading
import time
from enum import Enum
from typing import Callable, Optional, TypeVar
from urllib.parse import urlparse

import risk_model
from audit_store import AuditStore
from browser_session import BrowserSession, open_session
from config import AuditSettings, load_settings
from errors import AuditCancelled, AuditFailedError, ExtractorFailure
from logging_utils import get_logger
from models import AuditResult, AuditStatus, Target, utc_now
from progress import ProgressDispatcher, ProgressObserver
from signal_extractors import (
    failed_auth,
    failed_csrf,
    failed_headers,
    failed_tls,
    inspect_auth_surface,
    inspect_csrf,
    inspect_headers,
    inspect_tls,
)
from target_store import TargetStore

logger = get_logger(__name__)

T = TypeVar("T")

FAILED_RISK_SCORE = 100
FAILED_RECOMMENDATION = "Audit failed - please retry"

SessionFactory = Callable[[bool, AuditSettings], BrowserSession]


class AuditState(str, Enum):
    CREATED = "created"
    SESSION_OPENED = "session_opened"
    NAVIGATED = "navigated"
    EXTRACTING = "extracting"
    SCORED = "scored"
    COMPLETED = "completed"
    FAILED = "failed"


class AuditOrchestrator:
    """Runs one audit per call: resolve target, open session, navigate,
    extract the four signals, score, and hand the result to the sink.

    Every run that gets past target lookup stores exactly one AuditResult and
    closes its browser session exactly once, whichever way it ends.
    """

    def __init__(
        self,
        targets: TargetStore,
        results: AuditStore,
        settings: Optional[AuditSettings] = None,
        progress: Optional[ProgressObserver] = None,
        session_factory: Optional[SessionFactory] = None,
    ):
        self.targets = targets
        self.results = results
        self.settings = settings or load_settings()
        self.progress = ProgressDispatcher(progress)
        self.session_factory = session_factory or open_session

    def run_audit(
        self,
        target_code: str,
        verbose: bool = False,
        *,
        cancel_event: Optional[threading.Event] = None,
        raise_on_failure: bool = False,
    ) -> AuditResult:
        """Audit one target's login page.

        Raises TargetNotFound before anything is opened when the code is
        unknown. Otherwise returns a completed or failed AuditResult; with
        raise_on_failure=True a failed run raises AuditFailedError (carrying
        the stored result) instead of returning it.
        """
        target = self.targets.get_target_by_code(target_code)
        code = target.code

        logger.info("Starting security audit for %s (%s)", target.name, code)
        started = time.monotonic()
        state = AuditState.CREATED
        session: Optional[BrowserSession] = None
        result: Optional[AuditResult] = None
        error: Optional[Exception] = None

        try:
            self._check_cancelled(cancel_event)
            self.progress.progress(code, "Launching browser", 10)
            session = self.session_factory(verbose, self.settings)
            state = self._advance(code, state, AuditState.SESSION_OPENED)

            self._check_cancelled(cancel_event)
            self.progress.progress(code, "Navigating to login page", 30)
            session.navigate(target.login_url, timeout_ms=self.settings.navigation_timeout_ms)
            state = self._advance(code, state, AuditState.NAVIGATED)

            reader = session.reader()
            state = self._advance(code, state, AuditState.EXTRACTING)
            https = urlparse(target.login_url).scheme.lower() == "https"

            self._check_cancelled(cancel_event)
            self.progress.progress(code, "Analyzing SSL/TLS", 50)
            tls = self._extract(
                "TLS",
                lambda: inspect_tls(reader.read_security_metadata(), target.login_url),
                lambda exc: failed_tls(f"Extractor failed: {exc}", enabled=https),
            )

            self._check_cancelled(cancel_event)
            self.progress.progress(code, "Analyzing security headers", 60)
            headers = self._extract(
                "headers",
                lambda: inspect_headers(reader.read_response_headers()),
                lambda exc: failed_headers(),
            )

            self._check_cancelled(cancel_event)
            self.progress.progress(code, "Analyzing authentication", 70)
            auth = self._extract(
                "authentication",
                lambda: inspect_auth_surface(reader),
                lambda exc: failed_auth(),
            )

            self._check_cancelled(cancel_event)
            self.progress.progress(code, "Analyzing CSRF protection", 80)
            csrf = self._extract("CSRF", lambda: inspect_csrf(reader), lambda exc: failed_csrf())

            self.progress.progress(code, "Calculating risk score", 90)
            assessment = risk_model.score(tls, headers, auth, csrf)
            state = self._advance(code, state, AuditState.SCORED)

            result = AuditResult(
                target_code=code,
                target_name=target.name,
                login_url=target.login_url,
                timestamp=utc_now(),
                tls=tls,
                headers=headers,
                auth=auth,
                csrf=csrf,
                risk_score=assessment.risk_score,
                recommendations=tuple(assessment.recommendations),
                status=AuditStatus.COMPLETED,
                duration_ms=_elapsed_ms(started),
            )
            state = self._advance(code, state, AuditState.COMPLETED)
        except Exception as exc:
            logger.error("Audit failed for %s in state %s: %s", target.name, state.value, exc)
            error = exc
            result = self._failed_result(target, exc, started)
            state = self._advance(code, state, AuditState.FAILED)
        finally:
            if session is not None:
                session.close()

        self._persist(result)

        if error is not None:
            self.progress.error(code, result.error or "")
            if raise_on_failure:
                raise AuditFailedError(result, error) from error
            return result

        self.progress.progress(code, "Completed", 100)
        self.progress.complete(code, result)
        logger.info("Audit completed for %s - Risk Score: %d/100", target.name, result.risk_score)
        return result

    def shutdown(self) -> None:
        self.progress.shutdown(wait=True)

    def _persist(self, result: AuditResult) -> None:
        try:
            self.results.persist(result)
        except Exception as exc:
            logger.error("Result sink rejected audit of %s: %s", result.target_code, exc)

    @staticmethod
    def _advance(code: str, current: AuditState, new: AuditState) -> AuditState:
        logger.debug("[%s] %s -> %s", code, current.value, new.value)
        return new

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise AuditCancelled("Audit cancelled by caller")

    @staticmethod
    def _extract(name: str, extractor: Callable[[], T], fallback: Callable[[Exception], T]) -> T:
        try:
            return extractor()
        except Exception as exc:
            logger.warning("%s", ExtractorFailure(name, exc))
            return fallback(exc)

    @staticmethod
    def _failed_result(target: Target, exc: Exception, started: float) -> AuditResult:
        return AuditResult(
            target_code=target.code,
            target_name=target.name,
            login_url=target.login_url,
            timestamp=utc_now(),
            tls=failed_tls("Audit failed"),
            headers=failed_headers(),
            auth=failed_auth(),
            csrf=failed_csrf(),
            risk_score=FAILED_RISK_SCORE,
            recommendations=(FAILED_RECOMMENDATION,),
            status=AuditStatus.FAILED,
            error=str(exc) or exc.__class__.__name__,
            duration_ms=_elapsed_ms(started),
        )


def _elapsed_ms(started: float) -> float:
    return round((time.monotonic() - started) * 1000.0, 1)


def build_orchestrator(
    settings: Optional[AuditSettings] = None,
    progress: Optional[ProgressObserver] = None,
) -> AuditOrchestrator:
    """Orchestrator wired to the JSON stores configured in settings."""
    settings = settings or load_settings()
    return AuditOrchestrator(
        targets=TargetStore(settings.targets_file),
        results=AuditStore(settings.audits_file),
        settings=settings,
        progress=progress,
    )


def run_audit(target_code: str, verbose: bool = False) -> AuditResult:
    """Single entry point: audit one registered target and return its result."""
    orchestrator = build_orchestrator()
    try:
        return orchestrator.run_audit(target_code, verbose)
    finally:
        orchestrator.shutdown()
