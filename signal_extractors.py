"""
Signal extractors for a loaded login page.

Each extractor is stateless and produces one typed record. TLS and header
inspection are pure functions over data already captured by the session;
auth-surface and CSRF inspection read the page through a PageReader and
never write to it.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional
from urllib.parse import urlparse

from browser_session import PageReader
from logging_utils import get_logger
from models import (
    AuthResult,
    CsrfResult,
    HeaderResult,
    SecurityInfo,
    SessionManagement,
    TlsResult,
)

logger = get_logger(__name__)

# --- Header weights (sum to 100) ---
HEADER_WEIGHTS = {
    "strict-transport-security": 20,
    "content-security-policy": 25,
    "x-frame-options": 15,
    "x-content-type-options": 15,
    "referrer-policy": 10,
    "permissions-policy": 15,
}

HEADER_GRADE_THRESHOLDS = ((90, "A"), (75, "B"), (60, "C"), (40, "D"))

PASSWORD_SELECTOR = 'input[type="password"]'
USERNAME_SELECTOR = (
    'input[type="text"], input[type="email"], input[name*="user"], '
    'input[name*="rut"], input[name*="email"], input[name*="login"]'
)
CSRF_SELECTOR = 'input[name*="csrf"], input[name*="token"], input[name*="_token"]'

# Keyword heuristics only: a marketing mention of "token" counts the same as a
# real second-factor prompt. Matching is case-sensitive on purpose ("SMS", "MFA").
MFA_KEYWORDS = (
    "MFA",
    "2FA",
    "two-factor",
    "autenticación de dos factores",
    "segundo factor",
    "token",
    "SMS",
    "código",
    "verification code",
)
MFA_CONTENT_INDICATOR = "Detected via page content analysis"


def inspect_tls(security_info: Optional[SecurityInfo], url: str) -> TlsResult:
    """Grade transport security from the URL scheme and the browser's TLS details.

    Presence of certificate metadata is treated as the top grade; protocol
    version and cipher strength are not evaluated.
    """
    if urlparse(url).scheme.lower() != "https":
        logger.warning("Login page %s is not served over HTTPS", url)
        return TlsResult(
            enabled=False,
            grade="F",
            issues=["CRITICAL: Login page not served over HTTPS"],
        )

    if security_info is None:
        logger.info("No TLS details available for %s", url)
        return TlsResult(
            enabled=True,
            grade="C",
            issues=["Unable to retrieve SSL certificate details"],
        )

    issues: List[str] = []
    valid_certificate = True
    expiry_date = None
    if security_info.valid_to is not None:
        expires = datetime.fromtimestamp(security_info.valid_to, tz=timezone.utc)
        expiry_date = expires.isoformat()
        if expires < datetime.now(timezone.utc):
            issues.append("Certificate expired")
            valid_certificate = False

    return TlsResult(
        enabled=True,
        grade="C" if issues else "A+",
        protocol=security_info.protocol,
        issuer=security_info.issuer,
        valid_certificate=valid_certificate,
        expiry_date=expiry_date,
        issues=issues,
    )


def header_score(flags: Dict[str, bool]) -> int:
    return sum(weight for name, weight in HEADER_WEIGHTS.items() if flags.get(name))


def header_grade(score: int) -> str:
    for threshold, grade in HEADER_GRADE_THRESHOLDS:
        if score >= threshold:
            return grade
    return "F"


def inspect_headers(raw_headers: Dict[str, str]) -> HeaderResult:
    """Check the six security headers and grade their weighted coverage."""
    headers = {k.lower(): v for k, v in (raw_headers or {}).items()}
    flags = {name: bool(headers.get(name)) for name in HEADER_WEIGHTS}
    score = header_score(flags)
    grade = header_grade(score)

    logger.info("Security headers score=%d grade=%s", score, grade)
    return HeaderResult(
        strict_transport_security=flags["strict-transport-security"],
        content_security_policy=flags["content-security-policy"],
        x_frame_options=flags["x-frame-options"],
        x_content_type_options=flags["x-content-type-options"],
        referrer_policy=flags["referrer-policy"],
        permissions_policy=flags["permissions-policy"],
        headers=headers,
        score=score,
        grade=grade,
    )


def inspect_auth_surface(reader: PageReader) -> AuthResult:
    """Describe the login form and MFA hints by reading the DOM only."""
    methods: List[str] = []
    has_password = reader.find_element(PASSWORD_SELECTOR) is not None
    has_username = reader.find_element(USERNAME_SELECTOR) is not None
    if has_password and has_username:
        methods.append("username-password")

    content = reader.read_body_text() or ""
    matched = [kw for kw in MFA_KEYWORDS if kw in content]
    mfa_available = bool(matched)
    mfa_types = [MFA_CONTENT_INDICATOR] if mfa_available else []
    if matched:
        logger.debug("MFA keywords found: %s", ", ".join(matched))

    cookies = reader.list_cookies() or []
    session = SessionManagement(
        secure_flag=any(c.get("secure") for c in cookies),
        http_only_flag=any(c.get("httpOnly") for c in cookies),
    )

    if methods and mfa_available:
        grade = "A"
    elif methods:
        grade = "C"
    else:
        grade = "F"

    logger.info("Authentication surface: methods=%s mfa=%s grade=%s", methods, mfa_available, grade)
    return AuthResult(
        methods=methods,
        mfa_available=mfa_available,
        mfa_types=mfa_types,
        session_management=session,
        grade=grade,
    )


def inspect_csrf(reader: PageReader) -> CsrfResult:
    """Look for an anti-CSRF hidden field. Absence is the common case."""
    try:
        token = reader.read_attribute(CSRF_SELECTOR, "value")
    except Exception as exc:
        logger.debug("No CSRF token field found: %s", exc)
        token = None

    if token:
        return CsrfResult(
            token_present=True,
            protected=True,
            grade="A",
            token_type="hidden-field",
            token_value="[PRESENT]",
        )
    return CsrfResult(token_present=False, protected=False, grade="F")


# --- Degraded records used when an extractor cannot run ---

def failed_tls(reason: str, enabled: bool = False) -> TlsResult:
    return TlsResult(enabled=enabled, grade="UNKNOWN" if enabled else "F", issues=[reason])


def failed_headers() -> HeaderResult:
    return HeaderResult(
        strict_transport_security=False,
        content_security_policy=False,
        x_frame_options=False,
        x_content_type_options=False,
        referrer_policy=False,
        permissions_policy=False,
        headers={},
        score=0,
        grade="F",
    )


def failed_auth() -> AuthResult:
    return AuthResult(grade="F")


def failed_csrf() -> CsrfResult:
    return CsrfResult(token_present=False, protected=False, grade="F")
