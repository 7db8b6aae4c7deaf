"""
Authenticated browser session against the Tropicana Wholesale portal.

SupplierSession owns one Chromium process (Playwright sync API), logs in with
the credentials from backend/.env and exposes the narrow BrowserSession
interface the crawler and stock checker use. The remote markup changes
without notice, so every lookup goes through an ordered list of selectors.
"""

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from bs4 import BeautifulSoup
from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from ..config import (
    BASE_URL,
    LOGIN_PATH,
    MAX_RETRIES,
    MAX_RETRY_DELAY,
    NAVIGATION_TIMEOUT_MS,
    REQUEST_DELAY,
    RETRY_DELAY,
    USER_AGENT,
    VIEWPORT,
    get_credentials,
    is_headless,
)
from ..errors import ExtractionError, NavigationError


logger = logging.getLogger(__name__)


EMAIL_SELECTORS = [
    'input[type="email"]',
    'input[name="customer[email]"]',
    'input[name="email"]',
    'input[id*="email" i]',
    'input[placeholder*="email" i]',
]

PASSWORD_SELECTORS = [
    'input[type="password"]',
    'input[name="customer[password]"]',
    'input[name="password"]',
    'input[id*="password" i]',
]

SUBMIT_SELECTORS = [
    'button[type="submit"]',
    'input[type="submit"]',
    'button:has-text("Sign in")',
    'button:has-text("Log in")',
    'button:has-text("Login")',
]

# Page text that means the login did not take
LOGGED_OUT_MARKERS = (
    "log in to see prices",
    "login to see prices",
    "incorrect email or password",
    "invalid login credentials",
)

# Page text only an authenticated customer sees
LOGGED_IN_MARKERS = (
    "logout",
    "log out",
    "sign out",
    "my account",
    "order history",
    "my orders",
)

STEALTH_SCRIPT = """
    Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
    Object.defineProperty(navigator, 'plugins', { get: () => [1, 2, 3, 4, 5] });
    Object.defineProperty(navigator, 'languages', { get: () => ['en-GB', 'en'] });
    window.chrome = { runtime: {} };
"""

# Runs in the page: picks the first card selector that matches anything, then
# resolves each field on each card through its own selector fallback list.
EXTRACT_SCRIPT = """
({cardSelectors, fields}) => {
    let cards = [];
    for (const sel of cardSelectors) {
        const found = document.querySelectorAll(sel);
        if (found.length) { cards = Array.from(found); break; }
    }
    return cards.map(card => {
        const item = {};
        for (const [name, field] of Object.entries(fields)) {
            item[name] = null;
            for (const sel of field.selectors) {
                const el = sel === ':scope' ? card : card.querySelector(sel);
                if (!el) continue;
                let value = null;
                for (const attr of field.attributes) {
                    value = attr === 'text' ? el.textContent : el.getAttribute(attr);
                    if (value && value.trim()) break;
                    value = null;
                }
                if (value) { item[name] = value.trim(); break; }
            }
        }
        return item;
    });
}
"""


@dataclass
class FieldQuery:
    """Where to read one field from a listing card."""
    selectors: Sequence[str]
    attributes: Sequence[str] = ('text',)


@dataclass
class ListingQuery:
    """A structured listing extraction run as one in-page script."""
    card_selectors: Sequence[str]
    fields: Dict[str, FieldQuery] = field(default_factory=dict)

    def to_js_arg(self) -> dict:
        return {
            'cardSelectors': list(self.card_selectors),
            'fields': {
                name: {'selectors': list(q.selectors), 'attributes': list(q.attributes)}
                for name, q in self.fields.items()
            },
        }


def html_to_text(html: str) -> str:
    """Collapse page HTML to whitespace-separated visible text."""
    soup = BeautifulSoup(html, 'html.parser')
    for tag in soup(['script', 'style', 'noscript']):
        tag.decompose()
    return soup.get_text(' ', strip=True)


def looks_logged_in(page_text: str) -> bool:
    """Heuristic check of post-login page text."""
    text = page_text.lower()
    if any(marker in text for marker in LOGGED_OUT_MARKERS):
        return False
    return any(marker in text for marker in LOGGED_IN_MARKERS)


class BrowserSession:
    """
    Navigation primitives shared by the crawler and the stock checker.

    SupplierSession drives a real browser; tests substitute an in-memory
    implementation.
    """

    request_delay = REQUEST_DELAY
    max_retries = MAX_RETRIES
    retry_delay = RETRY_DELAY

    _last_request_at: Optional[float] = None

    def fetch(self, url: str) -> None:
        """
        navigate() with request pacing and retries.

        Retryable failures (see NavigationError) are retried up to
        max_retries times with exponential backoff and jitter; anything
        else raises at once.
        """
        for attempt in range(self.max_retries + 1):
            self._throttle()
            try:
                self.navigate(url)
                return
            except NavigationError as e:
                if not e.retryable or attempt >= self.max_retries:
                    raise
                # Exponential backoff with jitter
                delay = min(self.retry_delay * (2 ** attempt), MAX_RETRY_DELAY)
                delay = delay * (0.5 + random.random())  # 50-150% of base delay
                logger.warning("%s, retrying in %.1fs (attempt %d/%d)",
                               e, delay, attempt + 1, self.max_retries)
                time.sleep(delay)

    def _throttle(self) -> None:
        """Keep at least request_delay seconds between page loads."""
        if self.request_delay and self._last_request_at is not None:
            wait = self.request_delay - (time.monotonic() - self._last_request_at)
            if wait > 0:
                time.sleep(wait)
        self._last_request_at = time.monotonic()

    @property
    def current_url(self) -> str:
        raise NotImplementedError

    def navigate(self, url: str) -> None:
        raise NotImplementedError

    def extract(self, query: ListingQuery) -> List[Dict[str, Optional[str]]]:
        raise NotImplementedError

    def find_first(self, selectors: Sequence[str]) -> Optional[str]:
        """Return the first selector that matches an element, or None."""
        raise NotImplementedError

    def click(self, selector: str) -> None:
        raise NotImplementedError

    def wait_for_navigation(self) -> None:
        raise NotImplementedError

    def page_html(self) -> str:
        raise NotImplementedError


class SupplierSession(BrowserSession):
    """Playwright-backed session logged in to the supplier portal."""

    def __init__(self, email: Optional[str] = None, password: Optional[str] = None,
                 base_url: str = BASE_URL, headless: Optional[bool] = None,
                 timeout_ms: int = NAVIGATION_TIMEOUT_MS):
        env_email, env_password = get_credentials()
        self._email = email or env_email
        self._password = password or env_password
        self.base_url = base_url.rstrip('/')
        self._headless = is_headless() if headless is None else headless
        self._timeout_ms = timeout_ms

        self._playwright = None
        self._browser = None
        self._context = None
        self._page = None
        self._authenticated = False

    @property
    def is_authenticated(self) -> bool:
        return self._authenticated and self._page is not None and not self._page.is_closed()

    @property
    def current_url(self) -> str:
        return self._require_page().url

    def _require_page(self):
        if self._page is None or self._page.is_closed():
            raise NavigationError("Browser session is not open")
        return self._page

    def _launch(self) -> None:
        """Start Chromium and open a page, reusing anything already running."""
        if self._page is not None and not self._page.is_closed():
            return

        if self._playwright is None:
            self._playwright = sync_playwright().start()
        if self._browser is None:
            logger.info("Launching Chromium (headless=%s)", self._headless)
            self._browser = self._playwright.chromium.launch(
                headless=self._headless,
                args=[
                    '--disable-blink-features=AutomationControlled',
                    '--disable-infobars',
                ]
            )

        self._context = self._browser.new_context(
            viewport=VIEWPORT,
            user_agent=USER_AGENT,
            locale='en-GB',
            timezone_id='Europe/London',
        )
        self._page = self._context.new_page()
        self._page.set_default_timeout(self._timeout_ms)
        self._page.add_init_script(STEALTH_SCRIPT)

    def _fill_first(self, label: str, selectors: Sequence[str], value: str) -> bool:
        """Fill the first matching input, trying the field label before selectors."""
        page = self._page
        try:
            by_label = page.get_by_label(label, exact=False)
            if by_label.count() > 0:
                by_label.first.fill(value)
                return True
        except PlaywrightError:
            logger.debug("No usable input labelled %r", label)

        for selector in selectors:
            try:
                loc = page.locator(selector)
                if loc.count() > 0:
                    loc.first.fill(value)
                    return True
            except PlaywrightError:
                continue
        return False

    def _find_submit(self):
        """First visible submit candidate, or None."""
        for selector in SUBMIT_SELECTORS:
            try:
                loc = self._page.locator(selector).first
                if loc.is_visible():
                    logger.debug("Using submit button (%s)", selector)
                    return loc
            except PlaywrightError:
                continue
        return None

    def authenticate(self) -> Tuple[bool, str]:
        """
        Log in to the supplier portal.

        Reuses the live session when already authenticated. Never raises:
        missing credentials, missing form fields, timeouts and a failed
        post-login check are all reported in the returned message.

        Returns:
            (success: bool, error_message: str)
        """
        if not self._email or not self._password:
            return False, "Supplier credentials not configured (TROPICANA_EMAIL/TROPICANA_PASSWORD)"

        if self.is_authenticated:
            return True, ""

        self._authenticated = False
        try:
            self._launch()
            login_url = f"{self.base_url}{LOGIN_PATH}"
            logger.info("Navigating to %s", login_url)
            self._page.goto(login_url, wait_until='domcontentloaded', timeout=self._timeout_ms)

            if not self._fill_first("Email", EMAIL_SELECTORS, self._email):
                return False, "Could not find email field on login page"
            if not self._fill_first("Password", PASSWORD_SELECTORS, self._password):
                return False, "Could not find password field on login page"
            submit = self._find_submit()
            if submit is None:
                return False, "Could not find login submit button"

            with self._page.expect_navigation(wait_until='domcontentloaded', timeout=self._timeout_ms):
                submit.click()

            text = html_to_text(self._page.content())
            if not looks_logged_in(text):
                logger.warning("Login check failed at %s", self._page.url)
                return False, "Login failed: account page not detected after submit"

        except PlaywrightTimeoutError as e:
            return False, f"Login timed out: {e}"
        except PlaywrightError as e:
            return False, f"Login error: {e}"

        self._authenticated = True
        logger.info("Authenticated with supplier portal")
        return True, ""

    def navigate(self, url: str) -> None:
        page = self._require_page()
        try:
            response = page.goto(url, wait_until='domcontentloaded', timeout=self._timeout_ms)
        except PlaywrightError as e:
            raise NavigationError(f"Failed to load {url}: {e}", retryable=True) from e
        if response is not None and response.status >= 400:
            raise NavigationError(f"HTTP {response.status} loading {url}", status=response.status)

    def extract(self, query: ListingQuery) -> List[Dict[str, Optional[str]]]:
        page = self._require_page()
        try:
            return page.evaluate(EXTRACT_SCRIPT, query.to_js_arg())
        except PlaywrightError as e:
            raise ExtractionError(f"Listing extraction failed on {page.url}: {e}") from e

    def find_first(self, selectors: Sequence[str]) -> Optional[str]:
        page = self._require_page()
        for selector in selectors:
            try:
                if page.locator(selector).count() > 0:
                    return selector
            except PlaywrightError:
                continue
        return None

    def click(self, selector: str) -> None:
        """Click a link and wait for the navigation it starts."""
        page = self._require_page()
        self._throttle()
        try:
            with page.expect_navigation(wait_until='domcontentloaded', timeout=self._timeout_ms):
                page.locator(selector).first.click(timeout=self._timeout_ms)
        except PlaywrightError as e:
            raise NavigationError(f"Failed to click {selector}: {e}") from e

    def wait_for_navigation(self) -> None:
        page = self._require_page()
        try:
            page.wait_for_load_state('domcontentloaded', timeout=self._timeout_ms)
        except PlaywrightError as e:
            raise NavigationError(f"Navigation did not complete: {e}") from e

    def page_html(self) -> str:
        page = self._require_page()
        try:
            return page.content()
        except PlaywrightError as e:
            raise ExtractionError(f"Could not read page content: {e}") from e

    def close(self) -> None:
        """Release page, context, browser and driver. Safe to call repeatedly."""
        for name in ('_page', '_context', '_browser'):
            resource = getattr(self, name)
            setattr(self, name, None)
            if resource is None:
                continue
            try:
                resource.close()
            except PlaywrightError:
                logger.debug("Ignoring error closing %s", name.strip('_'), exc_info=True)

        playwright, self._playwright = self._playwright, None
        if playwright is not None:
            try:
                playwright.stop()
            except PlaywrightError:
                logger.debug("Ignoring error stopping Playwright", exc_info=True)

        self._authenticated = False
