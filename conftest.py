"""
Shared pytest fixtures: fake page readers and browser sessions, so no test
ever launches a real browser.
"""

from typing import Any, Dict, List, Optional

import pytest

from audit_store import AuditStore
from auditor import AuditOrchestrator
from config import AuditSettings
from errors import ElementNotFound
from models import (
    AuthResult,
    CsrfResult,
    HeaderResult,
    NavigationResult,
    SecurityInfo,
    TlsResult,
)
from signal_extractors import CSRF_SELECTOR, PASSWORD_SELECTOR, USERNAME_SELECTOR
from target_store import TargetStore

ALL_SECURITY_HEADERS = {
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Content-Security-Policy": "default-src 'self'",
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=()",
}


class FakePageReader:
    def __init__(
        self,
        elements: Optional[Dict[str, Any]] = None,
        attributes: Optional[Dict[tuple, str]] = None,
        body: str = "",
        cookies: Optional[List[Dict[str, Any]]] = None,
        headers: Optional[Dict[str, str]] = None,
        security_info: Optional[SecurityInfo] = None,
    ):
        self.elements = elements or {}
        self.attributes = attributes or {}
        self.body = body
        self.cookies = cookies or []
        self.headers = headers or {}
        self.security_info = security_info
        self.calls: List[str] = []

    def find_element(self, selector):
        self.calls.append(f"find:{selector}")
        return self.elements.get(selector)

    def read_attribute(self, selector, name):
        self.calls.append(f"attr:{selector}:{name}")
        if (selector, name) not in self.attributes:
            raise ElementNotFound(selector)
        return self.attributes[(selector, name)]

    def read_body_text(self):
        return self.body

    def list_cookies(self):
        return list(self.cookies)

    def read_response_headers(self):
        return dict(self.headers)

    def read_security_metadata(self):
        return self.security_info


class FakeSession:
    def __init__(self, reader: FakePageReader, navigate_error: Optional[BaseException] = None):
        self._reader = reader
        self.navigate_error = navigate_error
        self.navigated_to: List[str] = []
        self.close_count = 0

    def navigate(self, url, timeout_ms=30000):
        self.navigated_to.append(url)
        if self.navigate_error is not None:
            raise self.navigate_error
        return NavigationResult(status_code=200, final_url=url, security_info=self._reader.security_info)

    def reader(self):
        return self._reader

    def close(self):
        self.close_count += 1


class SessionFactorySpy:
    """Stands in for open_session and remembers every session it handed out."""

    def __init__(self, session: Optional[FakeSession] = None, error: Optional[BaseException] = None):
        self.session = session
        self.error = error
        self.calls: List[tuple] = []

    def __call__(self, visual_mode, settings):
        self.calls.append((visual_mode, settings))
        if self.error is not None:
            raise self.error
        return self.session


@pytest.fixture
def settings(tmp_path):
    return AuditSettings(data_dir=str(tmp_path / "data"), report_dir=str(tmp_path / "reports"))


@pytest.fixture
def target_store():
    store = TargetStore()
    store.register_target(name="Test Bank", code="t1", login_url="https://example.test")
    return store


@pytest.fixture
def audit_store():
    return AuditStore()


@pytest.fixture
def secure_reader():
    """A login page that passes every check."""
    return FakePageReader(
        elements={PASSWORD_SELECTOR: object(), USERNAME_SELECTOR: object()},
        attributes={(CSRF_SELECTOR, "value"): "a1b2c3"},
        body="<html><body><form>Ingrese su token para continuar</form></body></html>",
        cookies=[{"name": "sid", "secure": True, "httpOnly": True}],
        headers=dict(ALL_SECURITY_HEADERS),
        security_info=SecurityInfo(protocol="TLS 1.3", issuer="Example CA"),
    )


@pytest.fixture
def good_signals():
    return (
        TlsResult(enabled=True, grade="A+", protocol="TLS 1.3", issuer="Example CA"),
        HeaderResult(True, True, True, True, True, True, score=100, grade="A"),
        AuthResult(methods=["username-password"], mfa_available=True, grade="A"),
        CsrfResult(token_present=True, protected=True, grade="A"),
    )


@pytest.fixture
def bad_signals():
    return (
        TlsResult(enabled=False, grade="F", issues=["CRITICAL: Login page not served over HTTPS"]),
        HeaderResult(False, False, False, False, False, False, score=0, grade="F"),
        AuthResult(methods=[], mfa_available=False, grade="F"),
        CsrfResult(token_present=False, protected=False, grade="F"),
    )


@pytest.fixture
def orchestrator_factory(target_store, audit_store, settings, secure_reader):
    """Builds orchestrators over fake sessions that each load secure_reader."""

    def make(results=None, reader=None, progress=None):
        def factory(visual_mode, settings):
            return FakeSession(reader or secure_reader)

        return AuditOrchestrator(
            targets=target_store,
            results=results if results is not None else audit_store,
            settings=settings,
            progress=progress,
            session_factory=factory,
        )

    return make
