import ipaddress
import json
import os
import re
from dataclasses import asdict
from threading import Lock
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

from errors import DuplicateTargetError, InvalidTargetError, TargetNotFound, TargetStoreError
from logging_utils import get_logger
from models import Target, utc_now

logger = get_logger(__name__)

_DOMAIN_RE = re.compile(r"^([a-z0-9]([a-z0-9-]*[a-z0-9])?\.)+[a-z]{2,}$", re.IGNORECASE)
_CODE_RE = re.compile(r"^[A-Z0-9_-]{2,32}$")


def _is_restricted_ip(ip) -> bool:
    """Private, loopback, link-local, multicast, reserved or unspecified (v4 or v6)."""
    mapped = getattr(ip, "ipv4_mapped", None)
    if mapped is not None:
        ip = mapped
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    )


def validate_login_url(url: str) -> Tuple[bool, str]:
    """
    Validate a login URL before it is registered as an audit target.

    Returns: (is_valid, result)
    - (False, error_message): the URL must not be registered
    - (True, normalized_url): safe to store and audit
    """
    if not url or not isinstance(url, str):
        return False, "URL is empty or invalid type"

    url = url.strip()
    if len(url) < 5 or len(url) > 2048:
        return False, "URL length invalid (5-2048 chars)"

    if not (url.startswith("http://") or url.startswith("https://")):
        url = f"https://{url}"

    parsed = urlparse(url)
    if not parsed.hostname:
        return False, "URL has no hostname"

    host = parsed.hostname.lower()
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        if not _DOMAIN_RE.match(host):
            return False, "Domain has invalid format"
    else:
        if _is_restricted_ip(ip):
            logger.warning("Blocked IP range for target URL: %s", ip)
            return False, f"IP {ip} is in restricted range (private/reserved)"

    return True, url


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


class TargetStore:
    """Registered audit targets, kept in a JSON file (or only in memory when path is None)."""

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._lock = Lock()
        self._targets: Dict[str, Target] = self._load()

    def _load(self) -> Dict[str, Target]:
        if not self.path or not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error("Failed to load targets from %s: %s", self.path, e)
            return {}
        targets = {}
        for item in raw:
            target = Target(**item)
            targets[target.code] = target
        return targets

    def _commit(self, target: Target) -> None:
        """Write the store with target included, then update memory. Caller holds the lock."""
        updated = dict(self._targets)
        updated[target.code] = target
        if self.path:
            try:
                folder = os.path.dirname(self.path)
                if folder:
                    os.makedirs(folder, exist_ok=True)
                with open(self.path, "w", encoding="utf-8") as f:
                    json.dump([asdict(t) for t in updated.values()], f, indent=2, ensure_ascii=False)
            except OSError as e:
                logger.error("Failed to save targets to %s: %s", self.path, e)
                raise TargetStoreError(f"Could not save target {target.code}: {e}") from e
        self._targets = updated

    def list_targets(self, active_only: bool = False) -> List[Target]:
        with self._lock:
            targets = sorted(self._targets.values(), key=lambda t: t.code)
        return [t for t in targets if t.active or not active_only]

    def get_target_by_code(self, code: str) -> Target:
        with self._lock:
            target = self._targets.get(normalize_code(code))
        if target is None:
            raise TargetNotFound(normalize_code(code))
        return target

    def _build(self, name: str, code: str, login_url: str,
               description: Optional[str], active: bool) -> Target:
        code = normalize_code(code)
        if not _CODE_RE.match(code):
            raise InvalidTargetError(f"Invalid target code: {code!r}")
        if not name or not name.strip():
            raise InvalidTargetError("Target name is required")
        ok, url_or_error = validate_login_url(login_url)
        if not ok:
            raise InvalidTargetError(url_or_error)
        now = utc_now().isoformat()
        return Target(
            name=name.strip(),
            code=code,
            login_url=url_or_error,
            description=description,
            active=active,
            created_at=now,
            updated_at=now,
        )

    def register_target(self, name: str, code: str, login_url: str,
                        description: Optional[str] = None, active: bool = True) -> Target:
        target = self._build(name, code, login_url, description, active)
        with self._lock:
            if target.code in self._targets:
                raise DuplicateTargetError(target.code)
            self._commit(target)
        logger.info("Registered target %s (%s)", target.code, target.login_url)
        return target

    def upsert_target(self, name: str, code: str, login_url: str,
                      description: Optional[str] = None, active: bool = True) -> Tuple[Target, bool]:
        """Insert a target, or refresh name/URL/description of an existing one.

        Returns (target, created).
        """
        target = self._build(name, code, login_url, description, active)
        with self._lock:
            existing = self._targets.get(target.code)
            if existing is not None:
                target.created_at = existing.created_at
            self._commit(target)
        logger.info("%s target %s", "Updated" if existing else "Registered", target.code)
        return target, existing is None
