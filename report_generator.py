"""
Report helpers: single-audit text/PDF reports and batch summaries.

- Batch results are tabulated with pandas (attempt table, error patterns).
- PDF output uses fpdf2 core fonts, so text is reduced to latin-1.
"""

import json
import os
from typing import Dict, List

import pandas as pd
from fpdf import FPDF
from fpdf.enums import XPos, YPos

from batch_runner import AuditAttempt, ErrorPattern, categorize_error
from logging_utils import get_logger
from models import AuditResult, audit_result_to_dict, utc_now
from risk_model import risk_level

logger = get_logger(__name__)

SEPARATOR = "=" * 80

ATTEMPT_COLUMNS = [
    "target_code",
    "target_name",
    "success",
    "status",
    "risk_score",
    "tls_grade",
    "headers_grade",
    "auth_grade",
    "csrf_grade",
    "recommendations",
    "error",
    "duration_s",
]

IMPROVEMENTS = {
    "TIMEOUT": [
        "Increase navigation timeout for slower-loading pages (AUDIT_NAV_TIMEOUT_MS)",
        "Retry timed-out targets from the caller with backoff",
    ],
    "NAVIGATION_FAILED": [
        "Check the login URL is reachable before auditing",
        "Register an alternative login URL for institutions with several portals",
    ],
    "NETWORK_ERROR": [
        "Check network connectivity before starting the batch",
        "Re-run the failed targets once connectivity is back",
    ],
    "ELEMENT_NOT_FOUND": [
        "Review the form selectors against the current page markup",
    ],
    "DATABASE_ERROR": [
        "Check AUDIT_DATA_DIR is writable",
    ],
}


def build_text_report(result: AuditResult) -> str:
    """Plain-text report for one audit."""
    lines = [
        SEPARATOR,
        f"LOGIN PAGE SECURITY AUDIT - {result.target_name} ({result.target_code})",
        SEPARATOR,
        f"URL:        {result.login_url}",
        f"Timestamp:  {result.timestamp.isoformat()}",
        f"Status:     {result.status.value}",
        f"Risk Score: {result.risk_score}/100 ({risk_level(result.risk_score)})",
        f"Duration:   {result.duration_ms / 1000.0:.2f}s",
    ]
    if result.error:
        lines.append(f"Error:      {result.error}")

    tls = result.tls
    lines += [
        "",
        f"SSL/TLS: grade {tls.grade}",
        f"  enabled={tls.enabled} protocol={tls.protocol or '-'} issuer={tls.issuer or '-'}",
    ]
    lines += [f"  issue: {issue}" for issue in tls.issues]

    h = result.headers
    lines += [
        "",
        f"Security headers: grade {h.grade} (score {h.score}/100)",
        f"  Strict-Transport-Security: {'yes' if h.strict_transport_security else 'no'}",
        f"  Content-Security-Policy:   {'yes' if h.content_security_policy else 'no'}",
        f"  X-Frame-Options:           {'yes' if h.x_frame_options else 'no'}",
        f"  X-Content-Type-Options:    {'yes' if h.x_content_type_options else 'no'}",
        f"  Referrer-Policy:           {'yes' if h.referrer_policy else 'no'}",
        f"  Permissions-Policy:        {'yes' if h.permissions_policy else 'no'}",
    ]

    a = result.auth
    lines += [
        "",
        f"Authentication: grade {a.grade}",
        f"  methods={', '.join(a.methods) or '-'} mfa={a.mfa_available}",
        f"  cookies: secure={a.session_management.secure_flag} httpOnly={a.session_management.http_only_flag}",
        "",
        f"CSRF: grade {result.csrf.grade} (token {'present' if result.csrf.token_present else 'absent'})",
        "",
        "Recommendations:",
    ]
    lines += [f"  {idx}. {rec}" for idx, rec in enumerate(result.recommendations, start=1)]
    lines.append(SEPARATOR)
    return "\n".join(lines)


def build_pdf_report(result: AuditResult) -> bytes:
    pdf = FPDF()
    pdf.add_page()
    pdf.set_auto_page_break(auto=True, margin=15)
    pdf.set_font("Helvetica", size=10)
    for line in build_text_report(result).splitlines():
        text = line.encode("latin-1", "replace").decode("latin-1")
        pdf.multi_cell(0, 5, text or " ", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    return bytes(pdf.output())


def attempts_dataframe(attempts: List[AuditAttempt]) -> pd.DataFrame:
    rows = []
    for attempt in attempts:
        r = attempt.result
        rows.append({
            "target_code": attempt.target_code,
            "target_name": attempt.target_name,
            "success": attempt.success,
            "status": r.status.value if r else "failed",
            "risk_score": r.risk_score if r else None,
            "tls_grade": r.tls.grade if r else None,
            "headers_grade": r.headers.grade if r else None,
            "auth_grade": r.auth.grade if r else None,
            "csrf_grade": r.csrf.grade if r else None,
            "recommendations": len(r.recommendations) if r else 0,
            "error": attempt.error,
            "duration_s": round(attempt.duration_ms / 1000.0, 2),
        })
    return pd.DataFrame(rows, columns=ATTEMPT_COLUMNS)


def analyze_error_patterns(attempts: List[AuditAttempt]) -> List[ErrorPattern]:
    """Group failed attempts by error category, most frequent first."""
    df = attempts_dataframe(attempts)
    failed = df[~df["success"].astype(bool)].copy()
    if failed.empty:
        return []

    failed["error_type"] = failed["error"].fillna("").map(categorize_error)
    patterns = [
        ErrorPattern(
            error_type=error_type,
            count=len(group),
            affected_targets=list(dict.fromkeys(group["target_code"])),
            sample_message=group["error"].iloc[0] or "",
        )
        for error_type, group in failed.groupby("error_type", sort=False)
    ]
    patterns.sort(key=lambda p: p.count, reverse=True)
    return patterns


def improvement_recommendations(patterns: List[ErrorPattern]) -> List[str]:
    recs: List[str] = []
    for pattern in patterns:
        recs.extend(IMPROVEMENTS.get(pattern.error_type, []))
    return recs


def build_batch_report(attempts: List[AuditAttempt]) -> str:
    df = attempts_dataframe(attempts)
    total = len(df)
    successful = int(df["success"].sum()) if total else 0
    failed = total - successful
    success_rate = (successful / total * 100.0) if total else 0.0

    lines = [
        SEPARATOR,
        "LOGIN PAGE SECURITY AUDIT - BATCH REPORT",
        SEPARATOR,
        f"Generated: {utc_now().isoformat()}",
        "",
        "## Summary",
        f"Total Audits: {total}",
        f"Successful:   {successful}",
        f"Failed:       {failed}",
        f"Success Rate: {success_rate:.1f}%",
        "",
        "## Results",
    ]
    if total:
        table = df[["target_code", "status", "risk_score", "tls_grade", "headers_grade",
                    "auth_grade", "csrf_grade", "duration_s"]]
        lines.append(table.to_string(index=False))
        if successful:
            scores = df.loc[df["success"].astype(bool), "risk_score"]
            lines.append("")
            lines.append(f"Average risk score: {scores.mean():.1f}/100")

    lines += ["", "## Error Analysis"]
    patterns = analyze_error_patterns(attempts)
    if not patterns:
        lines.append("No errors encountered.")
    for pattern in patterns:
        lines += [
            f"Error Type: {pattern.error_type}",
            f"Count: {pattern.count}",
            f"Affected Targets: {', '.join(pattern.affected_targets)}",
            f"Sample Message: {pattern.sample_message}",
            "",
        ]

    lines += ["", "## Recommendations for Improvement"]
    recs = improvement_recommendations(patterns)
    if recs:
        lines += [f"{idx}. {rec}" for idx, rec in enumerate(recs, start=1)]
    else:
        lines.append("All audits successful. No improvements needed at this time.")
    lines.append(SEPARATOR)
    return "\n".join(lines)


def save_batch_report(attempts: List[AuditAttempt], out_dir: str = "reports") -> Dict[str, str]:
    """Write .txt, .csv and .json batch reports and return their paths."""
    os.makedirs(out_dir, exist_ok=True)
    stamp = utc_now().replace(microsecond=0).isoformat().replace(":", "-").replace("+00-00", "Z")
    base = os.path.join(out_dir, f"audit-report-{stamp}")
    paths = {"txt": base + ".txt", "csv": base + ".csv", "json": base + ".json"}

    with open(paths["txt"], "w", encoding="utf-8") as fh:
        fh.write(build_batch_report(attempts))

    attempts_dataframe(attempts).to_csv(paths["csv"], index=False)

    payload = {
        "generated": utc_now().isoformat(),
        "attempts": [
            {
                "target_code": a.target_code,
                "target_name": a.target_name,
                "timestamp": a.timestamp,
                "success": a.success,
                "error": a.error,
                "duration_ms": a.duration_ms,
                "result": audit_result_to_dict(a.result) if a.result else None,
            }
            for a in attempts
        ],
        "error_patterns": [vars(p) for p in analyze_error_patterns(attempts)],
    }
    with open(paths["json"], "w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2, ensure_ascii=False)

    logger.info("Batch report saved to %s", base)
    return paths
