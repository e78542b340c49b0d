import json
import os
from threading import Lock
from typing import List, Optional

from logging_utils import get_logger
from models import AuditResult, audit_result_from_dict, audit_result_to_dict

logger = get_logger(__name__)


class AuditStore:
    """Append-only sink for audit results.

    Results are written to a JSON file (or only kept in memory when path is
    None). Storage problems are logged here and never reach the audit.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._lock = Lock()
        self._memory: List[dict] = []

    def _read_all(self) -> List[dict]:
        if not self.path:
            return list(self._memory)
        if not os.path.exists(self.path):
            return []
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error("Failed to load audit results: %s", e)
            return []

    def persist(self, result: AuditResult) -> None:
        record = audit_result_to_dict(result)
        with self._lock:
            if not self.path:
                self._memory.append(record)
                return
            records = self._read_all()
            records.append(record)
            try:
                folder = os.path.dirname(self.path)
                if folder:
                    os.makedirs(folder, exist_ok=True)
                with open(self.path, "w", encoding="utf-8") as f:
                    json.dump(records, f, indent=2, ensure_ascii=False)
            except OSError as e:
                logger.error("Failed to save audit result for %s: %s", result.target_code, e)
                return
        logger.info("Audit result stored for %s (%s)", result.target_code, result.status.value)

    def history(self, target_code: str, limit: int = 10) -> List[AuditResult]:
        """Most recent results for one target, newest first."""
        code = target_code.strip().upper()
        with self._lock:
            records = [r for r in self._read_all() if r.get("target_code") == code]
        records.sort(key=lambda r: r.get("timestamp", ""), reverse=True)
        return [audit_result_from_dict(r) for r in records[:limit]]

    def all_results(self) -> List[AuditResult]:
        with self._lock:
            records = self._read_all()
        return [audit_result_from_dict(r) for r in records]
