from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


@dataclass
class Target:
    name: str
    code: str  # upper-case, unique
    login_url: str
    description: Optional[str] = None
    active: bool = True
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


@dataclass
class SecurityInfo:
    """TLS details of the main document response, as reported by the browser."""
    protocol: Optional[str] = None
    issuer: Optional[str] = None
    subject_name: Optional[str] = None
    valid_from: Optional[float] = None  # POSIX seconds
    valid_to: Optional[float] = None


@dataclass
class NavigationResult:
    status_code: int
    final_url: str
    security_info: Optional[SecurityInfo] = None


# --- Signal records ---

@dataclass
class TlsResult:
    enabled: bool
    grade: str  # A+, A, B, C, D, F, UNKNOWN
    protocol: Optional[str] = None
    issuer: Optional[str] = None
    valid_certificate: Optional[bool] = None
    expiry_date: Optional[str] = None
    issues: List[str] = field(default_factory=list)


@dataclass
class HeaderResult:
    strict_transport_security: bool
    content_security_policy: bool
    x_frame_options: bool
    x_content_type_options: bool
    referrer_policy: bool
    permissions_policy: bool
    headers: Dict[str, str] = field(default_factory=dict)
    score: int = 0  # weighted 0-100
    grade: str = "F"  # A-F


@dataclass
class SessionManagement:
    secure_flag: bool = False
    http_only_flag: bool = False


@dataclass
class AuthResult:
    methods: List[str] = field(default_factory=list)
    mfa_available: bool = False
    mfa_types: List[str] = field(default_factory=list)
    password_requirements: List[str] = field(default_factory=list)
    session_management: SessionManagement = field(default_factory=SessionManagement)
    grade: str = "F"


@dataclass
class CsrfResult:
    token_present: bool
    protected: bool
    grade: str  # A or F
    token_type: Optional[str] = None
    token_value: Optional[str] = None  # masked, never the real token


@dataclass
class RiskAssessment:
    risk_score: int  # 0-100, higher is worse
    recommendations: List[str] = field(default_factory=list)


class AuditStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class AuditResult:
    target_code: str
    target_name: str
    login_url: str
    timestamp: datetime
    tls: TlsResult
    headers: HeaderResult
    auth: AuthResult
    csrf: CsrfResult
    risk_score: int
    recommendations: Tuple[str, ...]
    status: AuditStatus
    error: Optional[str] = None
    duration_ms: float = 0.0


@dataclass
class ProgressEvent:
    target_code: str
    step: str
    percent: int


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def audit_result_to_dict(result: AuditResult) -> Dict[str, Any]:
    """Plain, JSON-serialisable representation of an AuditResult."""
    data = asdict(result)
    data["timestamp"] = result.timestamp.isoformat()
    data["status"] = result.status.value
    data["recommendations"] = list(result.recommendations)
    return data


def audit_result_from_dict(data: Dict[str, Any]) -> AuditResult:
    auth = dict(data.get("auth") or {})
    auth["session_management"] = SessionManagement(**(auth.get("session_management") or {}))
    return AuditResult(
        target_code=data["target_code"],
        target_name=data.get("target_name", ""),
        login_url=data.get("login_url", ""),
        timestamp=datetime.fromisoformat(data["timestamp"]),
        tls=TlsResult(**data["tls"]),
        headers=HeaderResult(**data["headers"]),
        auth=AuthResult(**auth),
        csrf=CsrfResult(**data["csrf"]),
        risk_score=int(data["risk_score"]),
        recommendations=tuple(data.get("recommendations") or ()),
        status=AuditStatus(data["status"]),
        error=data.get("error"),
        duration_ms=float(data.get("duration_ms") or 0.0),
    )
