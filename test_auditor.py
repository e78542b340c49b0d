import threading
import time

import pytest

import auditor
from audit_store import AuditStore
from auditor import FAILED_RECOMMENDATION, AuditOrchestrator
from conftest import FakePageReader, FakeSession, SessionFactorySpy
from errors import (
    AuditFailedError,
    LaunchError,
    NavigationError,
    NavigationTimeout,
    NoResponseError,
    TargetNotFound,
)
from models import AuditStatus
from progress import ProgressObserver
from target_store import TargetStore


def make_orchestrator(target_store, audit_store, settings, factory, progress=None):
    return AuditOrchestrator(
        targets=target_store,
        results=audit_store,
        settings=settings,
        progress=progress,
        session_factory=factory,
    )


class RecordingObserver(ProgressObserver):
    def __init__(self):
        self.steps = []
        self.completed = []
        self.errors = []

    def emit_progress(self, target_code, event):
        self.steps.append((event.step, event.percent))

    def emit_complete(self, target_code, result):
        self.completed.append(result)

    def emit_error(self, target_code, error):
        self.errors.append(error)


def test_end_to_end_secure_page(target_store, audit_store, settings, secure_reader):
    session = FakeSession(secure_reader)
    factory = SessionFactorySpy(session)
    result = make_orchestrator(target_store, audit_store, settings, factory).run_audit("T1")

    assert result.status == AuditStatus.COMPLETED
    assert result.risk_score == 0
    assert result.tls.grade == "A+"
    assert result.headers.grade == "A"
    assert result.auth.grade == "A"
    assert result.csrf.grade == "A"
    assert result.error is None
    assert session.navigated_to == ["https://example.test"]
    assert session.close_count == 1
    assert [r.status for r in audit_store.all_results()] == [AuditStatus.COMPLETED]


def test_target_code_is_case_insensitive(target_store, audit_store, settings, secure_reader):
    factory = SessionFactorySpy(FakeSession(secure_reader))
    result = make_orchestrator(target_store, audit_store, settings, factory).run_audit("t1")
    assert result.target_code == "T1"


def test_unknown_target_opens_nothing(target_store, audit_store, settings, secure_reader):
    factory = SessionFactorySpy(FakeSession(secure_reader))
    orchestrator = make_orchestrator(target_store, audit_store, settings, factory)

    with pytest.raises(TargetNotFound):
        orchestrator.run_audit("NOPE")

    assert factory.calls == []
    assert audit_store.all_results() == []


def test_navigation_timeout_produces_failed_result(target_store, audit_store, settings, secure_reader):
    session = FakeSession(secure_reader, navigate_error=NavigationTimeout("Navigation timed out after 30000ms"))
    factory = SessionFactorySpy(session)
    result = make_orchestrator(target_store, audit_store, settings, factory).run_audit("T1")

    assert result.status == AuditStatus.FAILED
    assert result.risk_score == 100
    assert result.recommendations == (FAILED_RECOMMENDATION,)
    assert "timed out" in result.error
    assert result.tls.grade == "F"
    assert session.close_count == 1
    stored = audit_store.all_results()
    assert len(stored) == 1 and stored[0].status == AuditStatus.FAILED


@pytest.mark.parametrize("error", [
    NavigationError("net::ERR_NAME_NOT_RESOLVED"),
    NoResponseError("Failed to load page - no response received"),
])
def test_navigation_failures_close_session_once(target_store, audit_store, settings, secure_reader, error):
    session = FakeSession(secure_reader, navigate_error=error)
    result = make_orchestrator(target_store, audit_store, settings, SessionFactorySpy(session)).run_audit("T1")
    assert result.status == AuditStatus.FAILED
    assert result.error == str(error)
    assert session.close_count == 1


def test_raise_on_failure_reraises_after_storing(target_store, audit_store, settings, secure_reader):
    session = FakeSession(secure_reader, navigate_error=NavigationTimeout("slow"))
    orchestrator = make_orchestrator(target_store, audit_store, settings, SessionFactorySpy(session))

    with pytest.raises(AuditFailedError) as info:
        orchestrator.run_audit("T1", raise_on_failure=True)

    assert info.value.result.status == AuditStatus.FAILED
    assert isinstance(info.value.__cause__, NavigationTimeout)
    assert len(audit_store.all_results()) == 1
    assert session.close_count == 1


def test_launch_failure_is_recorded(target_store, audit_store, settings):
    factory = SessionFactorySpy(error=LaunchError("Executable doesn't exist"))
    result = make_orchestrator(target_store, audit_store, settings, factory).run_audit("T1")
    assert result.status == AuditStatus.FAILED
    assert "Executable" in result.error
    assert len(audit_store.all_results()) == 1


def test_extractor_failure_degrades_only_that_signal(target_store, audit_store, settings, secure_reader):
    class BrokenBody(type(secure_reader)):
        def read_body_text(self):
            raise RuntimeError("page crashed")

    reader = BrokenBody(
        elements=secure_reader.elements,
        attributes=secure_reader.attributes,
        headers=secure_reader.headers,
        security_info=secure_reader.security_info,
    )
    session = FakeSession(reader)
    result = make_orchestrator(target_store, audit_store, settings, SessionFactorySpy(session)).run_audit("T1")

    assert result.status == AuditStatus.COMPLETED
    assert result.auth.grade == "F"
    assert result.auth.mfa_available is False
    assert result.headers.grade == "A"
    assert result.csrf.grade == "A"
    assert result.risk_score == 15
    assert session.close_count == 1


def test_tls_extractor_failure_on_https_is_unknown(target_store, audit_store, settings, secure_reader):
    class BrokenTls(type(secure_reader)):
        def read_security_metadata(self):
            raise RuntimeError("no security details")

    reader = BrokenTls(elements=secure_reader.elements, attributes=secure_reader.attributes,
                       body=secure_reader.body, headers=secure_reader.headers)
    result = make_orchestrator(target_store, audit_store, settings,
                               SessionFactorySpy(FakeSession(reader))).run_audit("T1")
    assert result.tls.enabled is True
    assert result.tls.grade == "UNKNOWN"
    assert result.risk_score == 10


def test_verbose_flag_reaches_session_factory(target_store, audit_store, settings, secure_reader):
    factory = SessionFactorySpy(FakeSession(secure_reader))
    make_orchestrator(target_store, audit_store, settings, factory).run_audit("T1", verbose=True)
    assert factory.calls == [(True, settings)]


def test_cancelled_before_start(target_store, audit_store, settings, secure_reader):
    cancel = threading.Event()
    cancel.set()
    factory = SessionFactorySpy(FakeSession(secure_reader))
    result = make_orchestrator(target_store, audit_store, settings, factory).run_audit("T1", cancel_event=cancel)

    assert result.status == AuditStatus.FAILED
    assert "cancelled" in result.error
    assert factory.calls == []


def test_cancelled_mid_run_still_closes_session(target_store, audit_store, settings, secure_reader):
    cancel = threading.Event()

    class CancellingSession(FakeSession):
        def navigate(self, url, timeout_ms=30000):
            cancel.set()
            return super().navigate(url, timeout_ms)

    session = CancellingSession(secure_reader)
    result = make_orchestrator(target_store, audit_store, settings,
                               SessionFactorySpy(session)).run_audit("T1", cancel_event=cancel)
    assert result.status == AuditStatus.FAILED
    assert session.close_count == 1


def test_keyboard_interrupt_closes_session_and_propagates(target_store, audit_store, settings, secure_reader):
    session = FakeSession(secure_reader, navigate_error=KeyboardInterrupt())
    orchestrator = make_orchestrator(target_store, audit_store, settings, SessionFactorySpy(session))

    with pytest.raises(KeyboardInterrupt):
        orchestrator.run_audit("T1")

    assert session.close_count == 1
    assert audit_store.all_results() == []


def test_progress_events_are_delivered(target_store, audit_store, settings, secure_reader):
    observer = RecordingObserver()
    orchestrator = make_orchestrator(target_store, audit_store, settings,
                                     SessionFactorySpy(FakeSession(secure_reader)), progress=observer)
    result = orchestrator.run_audit("T1")
    orchestrator.shutdown()

    percents = [p for _, p in observer.steps]
    assert percents == sorted(percents)
    assert observer.steps[-1] == ("Completed", 100)
    assert observer.completed == [result]
    assert observer.errors == []


def test_failing_or_slow_observer_does_not_affect_audit(target_store, audit_store, settings, secure_reader):
    class HostileObserver(ProgressObserver):
        def emit_progress(self, target_code, event):
            time.sleep(0.05)
            raise RuntimeError("socket closed")

    orchestrator = make_orchestrator(target_store, audit_store, settings,
                                     SessionFactorySpy(FakeSession(secure_reader)), progress=HostileObserver())
    started = time.monotonic()
    result = orchestrator.run_audit("T1")
    elapsed = time.monotonic() - started
    orchestrator.shutdown()

    assert result.status == AuditStatus.COMPLETED
    assert elapsed < 0.3


def test_failed_audit_notifies_observer(target_store, audit_store, settings, secure_reader):
    observer = RecordingObserver()
    session = FakeSession(secure_reader, navigate_error=NavigationTimeout("slow"))
    orchestrator = make_orchestrator(target_store, audit_store, settings, SessionFactorySpy(session), progress=observer)
    orchestrator.run_audit("T1")
    orchestrator.shutdown()
    assert observer.errors == ["slow"]
    assert observer.completed == []


def test_sink_errors_do_not_fail_the_audit(target_store, settings, secure_reader):
    class BrokenSink:
        def persist(self, result):
            raise RuntimeError("database is down")

    result = make_orchestrator(target_store, BrokenSink(), settings,
                               SessionFactorySpy(FakeSession(secure_reader))).run_audit("T1")
    assert result.status == AuditStatus.COMPLETED


def test_observer_cannot_modify_returned_result(target_store, audit_store, settings, secure_reader):
    class MutatingObserver(ProgressObserver):
        def emit_complete(self, target_code, result):
            result.tls.issues.append("tampered")
            result.auth.methods.clear()

    orchestrator = make_orchestrator(target_store, audit_store, settings,
                                     SessionFactorySpy(FakeSession(secure_reader)), progress=MutatingObserver())
    result = orchestrator.run_audit("T1")
    orchestrator.shutdown()

    assert result.tls.issues == []
    assert result.auth.methods == ["username-password"]
    assert audit_store.all_results()[0].tls.issues == []


def test_module_level_run_audit(tmp_path, monkeypatch, secure_reader):
    monkeypatch.setenv("AUDIT_DATA_DIR", str(tmp_path / "data"))
    TargetStore(str(tmp_path / "data" / "targets.json")).register_target(
        name="Test Bank", code="T1", login_url="https://example.test")
    factory = SessionFactorySpy(FakeSession(secure_reader))
    monkeypatch.setattr("auditor.open_session", factory)

    observer = RecordingObserver()
    built = []
    real_build = auditor.build_orchestrator

    def build_with_observer(settings=None, progress=None):
        orchestrator = real_build(settings, progress=observer)
        built.append(orchestrator)
        return orchestrator

    monkeypatch.setattr("auditor.build_orchestrator", build_with_observer)

    result = auditor.run_audit("t1")

    assert result.status == AuditStatus.COMPLETED
    assert factory.calls[0][0] is False
    assert factory.session.close_count == 1
    # shutdown(wait=True) has drained the observer queue.
    assert observer.completed == [result]
    assert built[0].progress._executor is None
    assert AuditStore(str(tmp_path / "data" / "audits.json")).history("T1")[0].risk_score == 0
