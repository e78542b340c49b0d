from typing import List

from logging_utils import get_logger
from models import AuthResult, CsrfResult, HeaderResult, RiskAssessment, TlsResult

logger = get_logger(__name__)

MAX_RISK_SCORE = 100

# Penalties are additive and evaluated in this order: TLS, headers, auth, CSRF.
PENALTY_TLS_DISABLED = 40
PENALTY_TLS_ISSUES = 10
PENALTY_NO_HSTS = 10
PENALTY_NO_CSP = 10
PENALTY_NO_XFO = 5
PENALTY_NO_MFA = 15
PENALTY_NO_CSRF = 10

REC_ENABLE_HTTPS = "CRITICAL: Implement HTTPS for login page"
REC_REVIEW_TLS = "Review SSL/TLS configuration issues"
REC_HSTS = "Implement HSTS (Strict-Transport-Security header)"
REC_CSP = "Implement Content Security Policy (CSP)"
REC_XFO = "Add X-Frame-Options header to prevent clickjacking"
REC_MFA = "Implement Multi-Factor Authentication (MFA/2FA)"
REC_CSRF = "Implement CSRF protection tokens"
REC_EXCELLENT = "✅ excellent security posture"


def score(
    tls: TlsResult,
    headers: HeaderResult,
    auth: AuthResult,
    csrf: CsrfResult,
) -> RiskAssessment:
    """Turn the four signal records into a 0-100 risk score and recommendations.

    Pure and deterministic: same inputs, same score and the same
    recommendation order.
    """
    recommendations: List[str] = []
    risk = 0

    if not tls.enabled:
        risk += PENALTY_TLS_DISABLED
        recommendations.append(REC_ENABLE_HTTPS)
    elif tls.issues:
        risk += PENALTY_TLS_ISSUES
        recommendations.append(REC_REVIEW_TLS)

    if not headers.strict_transport_security:
        risk += PENALTY_NO_HSTS
        recommendations.append(REC_HSTS)
    if not headers.content_security_policy:
        risk += PENALTY_NO_CSP
        recommendations.append(REC_CSP)
    if not headers.x_frame_options:
        risk += PENALTY_NO_XFO
        recommendations.append(REC_XFO)

    if not auth.mfa_available:
        risk += PENALTY_NO_MFA
        recommendations.append(REC_MFA)

    if not csrf.protected:
        risk += PENALTY_NO_CSRF
        recommendations.append(REC_CSRF)

    if not recommendations:
        recommendations.append(REC_EXCELLENT)

    risk = max(0, min(MAX_RISK_SCORE, risk))
    logger.debug("Risk score=%d with %d recommendations", risk, len(recommendations))
    return RiskAssessment(risk_score=risk, recommendations=recommendations)


def risk_level(risk_score: int) -> str:
    """Maps a 0-100 risk score to a text level for reports."""
    if risk_score >= 70:
        return "Critical"
    if risk_score >= 40:
        return "High"
    if risk_score >= 20:
        return "Medium"
    return "Low"
