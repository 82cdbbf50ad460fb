"""
Page fetcher.

Produces the single durable snapshot every worker reads: one HTTP probe for
status and headers, one headless Chrome navigation for the rendered DOM,
screenshots and browser-side measurements, plus best-effort robots.txt and
sitemap.xml. Nothing is handed to workers until every asset and its Asset
row are stored; a failed fetch leaves nothing behind.
"""
import json
import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import urljoin

import httpx
from selenium import webdriver
from selenium.common.exceptions import TimeoutException, WebDriverException
from selenium.webdriver.chrome.options import Options
from selenium.webdriver.chrome.service import Service
from selenium.webdriver.support.ui import WebDriverWait
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker
from webdriver_manager.chrome import ChromeDriverManager

from sitecraft.features.analysis.exceptions import (
    FetchError,
    NavigationTimeout,
    NetworkError,
    NonSuccessStatus,
)
from sitecraft.features.analysis.models.asset import Asset, AssetKind
from sitecraft.features.analysis.schemas.analysis import AssetRefs
from sitecraft.platform.config import settings
from sitecraft.platform.storage.asset_store import AssetExists, AssetStore

logger = logging.getLogger(__name__)

DESKTOP_VIEWPORT = (1920, 1080)
MOBILE_VIEWPORT = (375, 667)

# Async script: the last argument is the completion callback
PAGE_TIMING_SCRIPT = """
const done = arguments[arguments.length - 1];
const result = {};
const nav = performance.getEntriesByType('navigation')[0];
if (nav) {
  result.ttfb_ms = nav.responseStart - nav.requestStart;
  result.dom_content_loaded_ms = nav.domContentLoadedEventEnd;
  result.load_ms = nav.loadEventEnd;
  result.transfer_size = nav.transferSize;
}
const fcp = performance.getEntriesByName('first-contentful-paint')[0];
if (fcp) { result.fcp_ms = fcp.startTime; }
let lcp = null, cls = 0, tbt = 0;
const observe = (type, handler) => {
  try { new PerformanceObserver(list => list.getEntries().forEach(handler)).observe({type: type, buffered: true}); }
  catch (err) {}
};
observe('largest-contentful-paint', e => { lcp = e.renderTime || e.loadTime || e.startTime; });
observe('layout-shift', e => { if (!e.hadRecentInput) { cls += e.value; } });
observe('longtask', e => { tbt += Math.max(0, e.duration - 50); });
setTimeout(() => {
  if (lcp !== null) { result.lcp_ms = lcp; }
  result.cls = Math.round(cls * 1000) / 1000;
  result.tbt_ms = tbt;
  done(result);
}, 1000);
"""

TEXT_STYLES_SCRIPT = """
const out = [];
const seen = new Set();
const root = document.body || document.documentElement;
const walker = document.createTreeWalker(root, NodeFilter.SHOW_TEXT);
const background = el => {
  while (el) {
    const c = getComputedStyle(el).backgroundColor;
    if (c && c !== 'transparent' && !/rgba\\(.*,\\s*0\\)$/.test(c)) { return c; }
    el = el.parentElement;
  }
  return 'rgb(255, 255, 255)';
};
const selector = el => {
  if (el.id) { return el.tagName.toLowerCase() + '#' + el.id; }
  let s = el.tagName.toLowerCase();
  if (el.classList.length) { s += '.' + Array.from(el.classList).slice(0, 2).join('.'); }
  return s;
};
while (walker.nextNode() && out.length < 300) {
  const node = walker.currentNode;
  const el = node.parentElement;
  if (!el || seen.has(el) || !node.textContent.trim()) { continue; }
  seen.add(el);
  if (['SCRIPT', 'STYLE', 'NOSCRIPT'].includes(el.tagName)) { continue; }
  const style = getComputedStyle(el);
  if (style.visibility === 'hidden' || style.display === 'none') { continue; }
  out.push({
    selector: selector(el),
    text: node.textContent.trim().slice(0, 80),
    color: style.color,
    background_color: background(el),
    font_size_px: parseFloat(style.fontSize),
    font_weight: style.fontWeight
  });
}
return out;
"""

IMAGES_SCRIPT = """
return Array.from(document.images).slice(0, 200).map(img => {
  const src = img.currentSrc || img.src;
  const entry = performance.getEntriesByName(src)[0];
  return {
    src: src,
    natural_width: img.naturalWidth,
    natural_height: img.naturalHeight,
    rendered_width: img.clientWidth,
    rendered_height: img.clientHeight,
    has_srcset: img.hasAttribute('srcset'),
    transfer_size: entry ? (entry.encodedBodySize || entry.transferSize || null) : null
  };
});
"""


def build_driver(user_agent: Optional[str] = None) -> webdriver.Chrome:
    """Headless Chrome; uses CHROMEDRIVER_PATH when set, otherwise a managed driver."""
    chrome_options = Options()
    chrome_options.add_argument('--headless=new')
    chrome_options.add_argument('--no-sandbox')
    chrome_options.add_argument('--disable-dev-shm-usage')
    chrome_options.add_argument('--disable-gpu')
    chrome_options.add_argument(f'--window-size={DESKTOP_VIEWPORT[0]},{DESKTOP_VIEWPORT[1]}')
    if user_agent:
        chrome_options.add_argument(f'--user-agent={user_agent}')

    if settings.CHROMEDRIVER_PATH:
        driver_service = Service(executable_path=settings.CHROMEDRIVER_PATH)
    else:
        driver_service = Service(ChromeDriverManager().install())
    return webdriver.Chrome(service=driver_service, options=chrome_options)


class PageCapture:
    """What one browser navigation produced."""

    def __init__(self, final_url: str, html: str, desktop_png: bytes, mobile_png: bytes, measurements: Dict[str, Any]):
        self.final_url = final_url
        self.html = html
        self.desktop_png = desktop_png
        self.mobile_png = mobile_png
        self.measurements = measurements


class PageFetcher:
    def __init__(
        self,
        asset_store: AssetStore,
        session_factory: sessionmaker,
        driver_factory: Callable[[], webdriver.Chrome] = None,
        http_client: Optional[httpx.Client] = None,
        timeout: float = settings.FETCH_TIMEOUT_SECONDS,
        user_agent: str = settings.FETCH_USER_AGENT,
    ):
        self._asset_store = asset_store
        self._session_factory = session_factory
        self._driver_factory = driver_factory or (lambda: build_driver(user_agent))
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(headers={"User-Agent": user_agent}, timeout=timeout)
        self.timeout = timeout
        self.user_agent = user_agent

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def fetch(self, analysis_id: str, url: str) -> AssetRefs:
        """
        Capture ``url`` for ``analysis_id`` and return references to the stored assets.

        A snapshot committed by an earlier delivery is returned as is. Blobs
        left without Asset rows by an attempt that died midway are discarded
        and written again.

        Raises a FetchError subclass (everything written is discarded first)
        or AssetExists when a concurrent attempt is still storing this
        analysis's snapshot (nothing of it is discarded).
        """
        stored = self.stored_snapshot(analysis_id)
        if stored is not None:
            logger.info(f"[{analysis_id}] Snapshot already stored, reusing it")
            return stored

        logger.info(f"[{analysis_id}] Fetching {url}")
        started = time.monotonic()

        try:
            probe = self._probe(url)
            capture = self._capture(str(probe.url))
            robots_txt = self._fetch_optional(urljoin(capture.final_url, "/robots.txt"))
            sitemap_xml = self._fetch_optional(urljoin(capture.final_url, "/sitemap.xml"))

            metadata = {
                "requested_url": url,
                "final_url": capture.final_url,
                "status_code": probe.status_code,
                "headers": dict(probe.headers),
                "user_agent": self.user_agent,
                "fetched_at": datetime.utcnow().isoformat(),
                "timing": capture.measurements.get("timing", {}),
                "text_styles": capture.measurements.get("text_styles", []),
                "images": capture.measurements.get("images", []),
            }

            artifacts: List[Tuple[AssetKind, bytes, str]] = [
                (AssetKind.html, capture.html.encode("utf-8"), "text/html; charset=utf-8"),
                (AssetKind.screenshot_desktop, capture.desktop_png, "image/png"),
                (AssetKind.screenshot_mobile, capture.mobile_png, "image/png"),
                (AssetKind.metadata, json.dumps(metadata).encode("utf-8"), "application/json"),
            ]
            if robots_txt is not None:
                artifacts.append((AssetKind.robots_txt, robots_txt, "text/plain"))
            if sitemap_xml is not None:
                artifacts.append((AssetKind.sitemap_xml, sitemap_xml, "application/xml"))

            try:
                locators = self._store(analysis_id, artifacts)
            except AssetExists:
                stored = self.stored_snapshot(analysis_id)
                if stored is not None:
                    logger.info(f"[{analysis_id}] Snapshot committed by another fetch attempt, reusing it")
                    return stored
                logger.warning(f"[{analysis_id}] Discarding partial snapshot of an earlier fetch attempt")
                self._asset_store.discard(analysis_id)
                locators = self._store(analysis_id, artifacts)
        except AssetExists:
            logger.warning(f"[{analysis_id}] Snapshot is being stored by another fetch attempt")
            raise
        except FetchError as e:
            self._asset_store.discard(analysis_id)
            logger.warning(f"[{analysis_id}] Fetch failed: {e.reason}: {e}")
            raise
        except Exception as e:
            self._asset_store.discard(analysis_id)
            logger.exception(f"[{analysis_id}] Fetch failed unexpectedly")
            raise NetworkError(f"{type(e).__name__}: {e}") from e

        logger.info(f"[{analysis_id}] Fetched {capture.final_url} in {time.monotonic() - started:.2f}s")
        return AssetRefs(
            analysis_id=analysis_id,
            locators=locators,
            requested_url=url,
            final_url=capture.final_url,
            status_code=probe.status_code,
        )

    def _probe(self, url: str) -> httpx.Response:
        try:
            response = self._http.get(url, follow_redirects=True, timeout=self.timeout)
        except httpx.TimeoutException as e:
            raise NavigationTimeout(f"Timed out requesting {url}") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise NetworkError(f"Could not reach {url}: {e}") from e

        if not response.is_success:
            raise NonSuccessStatus(response.status_code, str(response.url))
        return response

    def _capture(self, url: str) -> PageCapture:
        driver = None
        try:
            driver = self._driver_factory()
            driver.set_page_load_timeout(self.timeout)
            driver.set_script_timeout(self.timeout)
            driver.set_window_size(*DESKTOP_VIEWPORT)

            driver.get(url)
            WebDriverWait(driver, self.timeout).until(
                lambda d: d.execute_script("return document.readyState") == "complete"
            )

            html = driver.page_source
            final_url = driver.current_url or url
            measurements = {
                "timing": driver.execute_async_script(PAGE_TIMING_SCRIPT) or {},
                "text_styles": driver.execute_script(TEXT_STYLES_SCRIPT) or [],
                "images": driver.execute_script(IMAGES_SCRIPT) or [],
            }
            desktop_png = driver.get_screenshot_as_png()

            driver.set_window_size(*MOBILE_VIEWPORT)
            mobile_png = driver.get_screenshot_as_png()
        except TimeoutException as e:
            raise NavigationTimeout(f"Page did not finish loading within {self.timeout}s: {url}") from e
        except WebDriverException as e:
            raise NetworkError(f"Browser error loading {url}: {e.msg or e}") from e
        finally:
            if driver is not None:
                driver.quit()

        return PageCapture(final_url, html, desktop_png, mobile_png, measurements)

    def _fetch_optional(self, url: str) -> Optional[bytes]:
        """Body of ``url`` on a 200 non-HTML response, otherwise None."""
        try:
            response = self._http.get(url, follow_redirects=True, timeout=self.timeout)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.info(f"Optional resource {url} unavailable: {e}")
            return None
        # Many sites answer unknown paths with a 200 HTML page
        if response.status_code != 200 or "text/html" in response.headers.get("content-type", ""):
            return None
        return response.content

    def _store(self, analysis_id: str, artifacts: List[Tuple[AssetKind, bytes, str]]) -> Dict[AssetKind, str]:
        locators: Dict[AssetKind, str] = {}
        rows = []
        for kind, data, content_type in artifacts:
            locator = self._asset_store.write(analysis_id, kind, data, content_type)
            locators[kind] = locator
            rows.append(Asset(
                analysis_id=analysis_id,
                kind=kind,
                locator=locator,
                content_type=content_type,
                size_bytes=len(data),
            ))

        with self._session_factory() as session:
            session.add_all(rows)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise AssetExists(f"Asset rows already committed for analysis {analysis_id}") from e
        return locators

    def stored_snapshot(self, analysis_id: str) -> Optional[AssetRefs]:
        """AssetRefs of the snapshot committed for ``analysis_id``, or None."""
        with self._session_factory() as session:
            rows = session.execute(
                select(Asset.kind, Asset.locator).where(Asset.analysis_id == analysis_id)
            ).all()
        if not rows:
            return None

        locators = {kind: locator for kind, locator in rows}
        metadata = json.loads(self._asset_store.read_text(locators[AssetKind.metadata]))
        return AssetRefs(
            analysis_id=analysis_id,
            locators=locators,
            requested_url=metadata["requested_url"],
            final_url=metadata["final_url"],
            status_code=metadata["status_code"],
        )
