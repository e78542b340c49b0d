"""
Disposable browser-automation session for one audit run.

Lifecycle: open -> navigate -> read -> close. Only observation happens here:
the page is loaded and its already-rendered state is read back, nothing is
typed, clicked or submitted.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from errors import (
    ElementNotFound,
    LaunchError,
    NavigationError,
    NavigationTimeout,
    NoResponseError,
)
from logging_utils import get_logger
from models import NavigationResult, SecurityInfo

logger = get_logger(__name__)

DEFAULT_NAVIGATION_TIMEOUT_MS = 30000


@dataclass(frozen=True)
class BrowserOptions:
    """Presentation-only launch options; they never change extracted signals."""
    headless: bool = True
    slow_motion_ms: int = 0
    devtools_open: bool = False
    user_agent: Optional[str] = None
    launch_args: Tuple[str, ...] = ()


def _is_main_document(request: Any) -> bool:
    return request.is_navigation_request() and request.frame.parent_frame is None


@dataclass
class ResponseCapture:
    """Accumulates network observations for one navigation."""
    target_url: str
    response_headers: Dict[str, str] = field(default_factory=dict)
    request_count: int = 0
    response_count: int = 0
    document_status: Optional[int] = None

    def on_request(self, request: Any) -> None:
        self.request_count += 1

    def on_response(self, response: Any) -> None:
        self.response_count += 1
        # Main-frame documents only; after redirects the last one wins.
        if response.url == self.target_url or _is_main_document(response.request):
            self.response_headers = {k.lower(): v for k, v in response.headers.items()}
            self.document_status = response.status


class PageReader(Protocol):
    """The narrow read-only view of a loaded page that extractors rely on."""

    def find_element(self, selector: str) -> Optional[Any]:
        ...

    def read_attribute(self, selector: str, name: str) -> Optional[str]:
        ...

    def read_body_text(self) -> str:
        ...

    def list_cookies(self) -> List[Dict[str, Any]]:
        ...

    def read_response_headers(self) -> Dict[str, str]:
        ...

    def read_security_metadata(self) -> Optional[SecurityInfo]:
        ...


def _security_info_from_details(details: Optional[Dict[str, Any]]) -> Optional[SecurityInfo]:
    if not details:
        return None
    return SecurityInfo(
        protocol=details.get("protocol"),
        issuer=details.get("issuer"),
        subject_name=details.get("subjectName"),
        valid_from=details.get("validFrom"),
        valid_to=details.get("validTo"),
    )


class PlaywrightPageReader:
    """PageReader backed by a Playwright page that has finished navigating."""

    def __init__(self, page: Any, context: Any, capture: ResponseCapture,
                 navigation: Optional[NavigationResult] = None):
        self._page = page
        self._context = context
        self._capture = capture
        self._navigation = navigation

    def find_element(self, selector: str) -> Optional[Any]:
        return self._page.query_selector(selector)

    def read_attribute(self, selector: str, name: str) -> Optional[str]:
        # Live DOM properties (e.g. an input's current value) win over markup attributes.
        try:
            return self._page.eval_on_selector(
                selector,
                "(el, name) => (name in el ? el[name] : el.getAttribute(name))",
                name,
            )
        except PlaywrightError as exc:
            raise ElementNotFound(selector) from exc

    def read_body_text(self) -> str:
        return self._page.content()

    def list_cookies(self) -> List[Dict[str, Any]]:
        return list(self._context.cookies())

    def read_response_headers(self) -> Dict[str, str]:
        return dict(self._capture.response_headers)

    def read_security_metadata(self) -> Optional[SecurityInfo]:
        if self._navigation is None:
            return None
        return self._navigation.security_info


class BrowserSession:
    """One Chromium instance and page, bound to a single audit.

    Not thread-safe: use it from the thread that opened it, for exactly one
    navigation/extraction cycle.
    """

    def __init__(self, options: BrowserOptions,
                 playwright_factory: Callable[[], Any] = sync_playwright):
        self.options = options
        self._playwright_factory = playwright_factory
        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self._capture: Optional[ResponseCapture] = None
        self._navigation: Optional[NavigationResult] = None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def capture(self) -> Optional[ResponseCapture]:
        return self._capture

    def open(self) -> "BrowserSession":
        args = list(self.options.launch_args)
        if self.options.devtools_open:
            args.append("--auto-open-devtools-for-tabs")
        try:
            self._playwright = self._playwright_factory().start()
            self._browser = self._playwright.chromium.launch(
                headless=self.options.headless,
                slow_mo=self.options.slow_motion_ms,
                args=args,
            )
            context_kwargs: Dict[str, Any] = {}
            if self.options.user_agent:
                context_kwargs["user_agent"] = self.options.user_agent
            self._context = self._browser.new_context(**context_kwargs)
            self._page = self._context.new_page()
        except Exception as exc:
            logger.error("Browser launch failed: %s", exc)
            self.close()
            raise LaunchError(f"Browser launch failed: {exc}") from exc

        logger.info(
            "Browser session opened (headless=%s, slow_mo=%dms, devtools=%s)",
            self.options.headless,
            self.options.slow_motion_ms,
            self.options.devtools_open,
        )
        return self

    def navigate(self, url: str, timeout_ms: int = DEFAULT_NAVIGATION_TIMEOUT_MS) -> NavigationResult:
        if self._page is None or self._closed:
            raise NavigationError("Browser session is not open")

        capture = ResponseCapture(target_url=url)
        self._capture = capture
        # Observers go in before navigation so headers survive later failures.
        self._page.on("request", capture.on_request)
        self._page.on("response", capture.on_response)

        logger.info("Navigating to %s (timeout=%dms)", url, timeout_ms)
        try:
            response = self._page.goto(url, wait_until="networkidle", timeout=timeout_ms)
        except PlaywrightTimeoutError as exc:
            raise NavigationTimeout(f"Navigation to {url} timed out after {timeout_ms}ms") from exc
        except PlaywrightError as exc:
            raise NavigationError(f"Navigation to {url} failed: {exc.message}") from exc

        if response is None:
            raise NoResponseError("Failed to load page - no response received")

        try:
            capture.response_headers = {k.lower(): v for k, v in response.all_headers().items()}
        except PlaywrightError as exc:
            logger.debug("Falling back to observed headers for %s: %s", url, exc)
        capture.document_status = response.status

        self._navigation = NavigationResult(
            status_code=response.status,
            final_url=self._page.url,
            security_info=_security_info_from_details(response.security_details()),
        )
        logger.info(
            "Navigation finished: status=%d, final_url=%s, requests=%d",
            response.status,
            self._navigation.final_url,
            capture.request_count,
        )
        return self._navigation

    def reader(self) -> PlaywrightPageReader:
        if self._page is None or self._capture is None:
            raise NavigationError("Nothing has been loaded in this session")
        return PlaywrightPageReader(self._page, self._context, self._capture, self._navigation)

    def close(self) -> None:
        """Tear everything down. Safe to call repeatedly, never raises."""
        if self._closed:
            return
        self._closed = True
        for label, closer in (
            ("context", self._context and self._context.close),
            ("browser", self._browser and self._browser.close),
            ("playwright", self._playwright and self._playwright.stop),
        ):
            if not closer:
                continue
            try:
                closer()
            except Exception as exc:
                logger.debug("Ignoring error while closing %s: %s", label, exc)
        self._page = self._context = self._browser = self._playwright = None
        logger.info("Browser session closed")

    def __enter__(self) -> "BrowserSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


def open_session(visual_mode: bool, settings=None) -> BrowserSession:
    """Launch a browser configured for a visual (verbose) or batch run."""
    if settings is None:
        from config import load_settings
        settings = load_settings()
    return BrowserSession(settings.browser_options(visual_mode)).open()
