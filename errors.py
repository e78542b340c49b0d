"""Exception taxonomy for the audit engine."""

from typing import Optional


class AuditError(Exception):
    """Base class for every error raised by the audit engine."""


class TargetNotFound(AuditError):
    def __init__(self, code: str):
        super().__init__(f"Target with code {code} not found")
        self.code = code


class DuplicateTargetError(AuditError):
    def __init__(self, code: str):
        super().__init__(f"Target with code {code} already exists")
        self.code = code


class InvalidTargetError(AuditError):
    """Raised when a target cannot be registered (bad code or login URL)."""


class BrowserSessionError(AuditError):
    """Transport/environment failure inside a browser session."""


class LaunchError(BrowserSessionError):
    pass


class NavigationTimeout(BrowserSessionError):
    pass


class NavigationError(BrowserSessionError):
    pass


class NoResponseError(BrowserSessionError):
    pass


class ElementNotFound(LookupError):
    """No element matched a selector on the loaded page."""

    def __init__(self, selector: str):
        super().__init__(f"No element matches selector {selector!r}")
        self.selector = selector


class ExtractorFailure(AuditError):
    """An individual signal extractor raised; always recovered locally."""

    def __init__(self, extractor: str, cause: BaseException):
        super().__init__(f"{extractor} extractor failed: {cause}")
        self.extractor = extractor
        self.cause = cause


class AuditCancelled(AuditError):
    pass


class AuditFailedError(AuditError):
    """Raised after a failed AuditResult was recorded, carrying that result."""

    def __init__(self, result, cause: Optional[BaseException] = None):
        super().__init__(result.error or "Audit failed")
        self.result = result
        self.cause = cause


class TargetStoreError(AuditError):
    """The target file could not be written; the store is left unchanged."""
