"""
Central configuration for the audit engine.

- Values come from environment variables and are read once into AuditSettings.
- Browser presentation options (headless, slow motion, devtools) never change
  the extracted signals; they only make a run watchable.
"""

import os
from dataclasses import dataclass, field
from typing import Mapping, Optional, Tuple

from browser_session import DEFAULT_NAVIGATION_TIMEOUT_MS, BrowserOptions
from logging_utils import get_logger

logger = get_logger(__name__)

DEFAULT_SLOW_MO_MS = 250
DEFAULT_MAX_WORKERS = 2
DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/120.0.0.0 Safari/537.36 - Educational Security Research"
)

# Chromium flags for containerised runs.
DEFAULT_LAUNCH_ARGS: Tuple[str, ...] = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
)

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class AuditSettings:
    headless: bool = True
    slow_mo_ms: int = DEFAULT_SLOW_MO_MS
    devtools: bool = True
    navigation_timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS
    user_agent: str = DEFAULT_USER_AGENT
    data_dir: str = "data"
    report_dir: str = "reports"
    max_workers: int = DEFAULT_MAX_WORKERS
    log_level: str = "INFO"
    launch_args: Tuple[str, ...] = field(default=DEFAULT_LAUNCH_ARGS)

    @property
    def targets_file(self) -> str:
        return os.path.join(self.data_dir, "targets.json")

    @property
    def audits_file(self) -> str:
        return os.path.join(self.data_dir, "audits.json")

    def browser_options(self, visual_mode: bool) -> BrowserOptions:
        """Build the presentation options for one session.

        Visual (verbose) runs open a headful browser slowed down for a human
        observer; batch runs use the configured headless flag at full speed.
        """
        if visual_mode:
            return BrowserOptions(
                headless=False,
                slow_motion_ms=self.slow_mo_ms,
                devtools_open=self.devtools,
                user_agent=self.user_agent,
                launch_args=self.launch_args,
            )
        return BrowserOptions(
            headless=self.headless,
            slow_motion_ms=0,
            devtools_open=False,
            user_agent=self.user_agent,
            launch_args=self.launch_args,
        )


def _env_bool(env: Mapping[str, str], key: str, default: bool) -> bool:
    value = env.get(key)
    if value is None or value.strip() == "":
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_int(env: Mapping[str, str], key: str, default: int, minimum: int = 0) -> int:
    value = env.get(key)
    if value is None or value.strip() == "":
        return default
    try:
        parsed = int(value)
    except ValueError:
        logger.warning("Ignoring invalid integer for %s: %r (using %d)", key, value, default)
        return default
    return max(minimum, parsed)


def load_settings(env: Optional[Mapping[str, str]] = None) -> AuditSettings:
    """Read AuditSettings from the environment (or an explicit mapping)."""
    env = os.environ if env is None else env
    return AuditSettings(
        headless=_env_bool(env, "AUDIT_HEADLESS", True),
        slow_mo_ms=_env_int(env, "AUDIT_SLOW_MO_MS", DEFAULT_SLOW_MO_MS),
        devtools=_env_bool(env, "AUDIT_DEVTOOLS", True),
        navigation_timeout_ms=_env_int(env, "AUDIT_NAV_TIMEOUT_MS", DEFAULT_NAVIGATION_TIMEOUT_MS, minimum=1),
        user_agent=env.get("AUDIT_USER_AGENT") or DEFAULT_USER_AGENT,
        data_dir=env.get("AUDIT_DATA_DIR") or "data",
        report_dir=env.get("AUDIT_REPORT_DIR") or "reports",
        max_workers=_env_int(env, "AUDIT_MAX_WORKERS", DEFAULT_MAX_WORKERS, minimum=1),
        log_level=(env.get("AUDIT_LOG_LEVEL") or "INFO").upper(),
    )
