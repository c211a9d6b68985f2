"""
Playwright browser session implementing the page controller.

Each LabBrowserSession owns one Chromium browser, context and page
plus a CDP session on that page.  Instrumentation is attached before
navigation so nothing loaded early in the page is missed:

* JS coverage via ``Profiler.takePreciseCoverage`` with call counts.
  Counters reset at each take, so two takes form disjoint windows.
* CSS rule usage via ``CSS.takeCoverageDelta``.
* Request initiators and priorities via ``Network.requestWillBeSent``;
  timings and sizes from Playwright's ``requestfinished`` events.
* LCP, layout-shift and long-task entries buffered in the page by an
  init script, which also keeps references to shifted nodes.
"""

from __future__ import annotations

import asyncio
import dataclasses
from datetime import UTC, datetime
from typing import Any

from playwright import async_api

from cwv_lab import config
from cwv_lab.browser import controller, dom
from cwv_lab.utils import errors, logger, url as url_mod

log = logger.create_logger("BrowserSession")

# ============================================================================
# Constants
# ============================================================================

MAX_TRACKED_REQUESTS = 5000

_PERFORMANCE_OBSERVER_JS = """
(() => {
    if (window.__cwvLab) return;
    const state = { lcp: [], layoutShifts: [], longTasks: [], nodes: [] };
    window.__cwvLab = state;

    const rect = (r) => (r ? { x: r.x, y: r.y, width: r.width, height: r.height } : null);
    const observe = (type, handler) => {
        try {
            new PerformanceObserver((list) => list.getEntries().forEach(handler))
                .observe({ type, buffered: true });
        } catch (e) {
            // Entry type not supported by this browser.
        }
    };

    observe('largest-contentful-paint', (entry) => {
        state.lcp.push({
            startTime: entry.startTime,
            renderTime: entry.renderTime,
            loadTime: entry.loadTime,
            size: entry.size,
            url: entry.url || '',
            element: entry.element
                ? { tagName: entry.element.tagName, id: entry.element.id || '' }
                : null,
        });
    });

    observe('layout-shift', (entry) => {
        state.layoutShifts.push({
            value: entry.value,
            startTime: entry.startTime,
            hadRecentInput: entry.hadRecentInput,
            sources: (entry.sources || []).map((source) => {
                let nodeId = null;
                if (source.node) {
                    nodeId = state.nodes.length;
                    state.nodes.push(source.node);
                }
                return {
                    previousRect: rect(source.previousRect),
                    currentRect: rect(source.currentRect),
                    nodeId,
                };
            }),
        });
    });

    observe('longtask', (entry) => {
        state.longTasks.push({
            startTime: entry.startTime,
            duration: entry.duration,
            attribution: (entry.attribution || []).map((a) => ({
                name: a.name,
                containerType: a.containerType,
                containerSrc: a.containerSrc,
                containerId: a.containerId,
                containerName: a.containerName,
            })),
        });
    });
})();
"""

_COLLECT_ENTRIES_JS = """
() => {
    const state = window.__cwvLab;
    if (!state) return {};
    return {
        largestContentfulPaint: state.lcp,
        layoutShifts: state.layoutShifts,
        longTasks: state.longTasks,
    };
}
"""

_HAS_LCP_JS = "() => !!(window.__cwvLab && window.__cwvLab.lcp.length > 0)"


# ============================================================================
# Pure conversions
# ============================================================================


def _phase(start: float, end: float) -> float:
    """Duration between two Playwright timing marks, ``-1`` when unknown."""
    if start < 0 or end < 0:
        return -1
    return max(0.0, end - start)


def har_timings_from_playwright(timing: dict[str, float]) -> dict[str, float]:
    """Convert a Playwright ``request.timing`` dict into HAR timing phases.

    Playwright marks are relative to ``startTime``, with ``-1`` for
    phases that did not happen (e.g. reused connections).  HAR's
    ``connect`` includes ``ssl``.
    """
    connect = _phase(timing.get("connectStart", -1), timing.get("connectEnd", -1))
    ssl = _phase(timing.get("secureConnectionStart", -1), timing.get("connectEnd", -1))
    return {
        "blocked": -1,
        "dns": _phase(timing.get("domainLookupStart", -1), timing.get("domainLookupEnd", -1)),
        "connect": connect,
        "ssl": ssl,
        "send": 0,
        "wait": _phase(timing.get("requestStart", -1), timing.get("responseStart", -1)),
        "receive": _phase(timing.get("responseStart", -1), timing.get("responseEnd", -1)),
    }


def initiator_from_cdp(initiator: dict[str, Any] | None) -> dict[str, Any] | None:
    """Reduce a CDP ``Network.Initiator`` to HAR's ``_initiator`` shape.

    Script initiators usually carry only a stack; the top frame of
    the first non-empty stack (walking ``parent`` links) supplies
    the URL and line number.
    """
    if not initiator:
        return None
    result: dict[str, Any] = {"type": initiator.get("type")}
    if initiator.get("url"):
        result["url"] = initiator["url"]
        if initiator.get("lineNumber") is not None:
            result["lineNumber"] = initiator["lineNumber"]
        return result

    stack = initiator.get("stack")
    while stack:
        frames = stack.get("callFrames") or []
        frame = next((f for f in frames if f.get("url")), None)
        if frame is not None:
            result["url"] = frame["url"]
            result["lineNumber"] = frame.get("lineNumber")
            break
        stack = stack.get("parent")
    return result


def css_entries_from_delta(
    delta: list[dict[str, Any]],
    sheets: dict[str, tuple[str, str]],
) -> list[dict[str, Any]]:
    """Build coverage entries for every known stylesheet.

    Args:
        delta: ``CSS.takeCoverageDelta`` rule usage records.
        sheets: ``styleSheetId -> (url, text)`` for every sheet
            seen so far.  Sheets with no used rule in *delta*
            get an empty range list.
    """
    used: dict[str, list[dict[str, int]]] = {sheet_id: [] for sheet_id in sheets}
    for rule in delta:
        sheet_id = rule.get("styleSheetId")
        if sheet_id in used and rule.get("used"):
            used[sheet_id].append({
                "start": int(rule["startOffset"]),
                "end": int(rule["endOffset"]),
                "count": 1,
            })
    return [
        {"url": url, "text": text, "ranges": used[sheet_id]}
        for sheet_id, (url, text) in sheets.items()
    ]


@dataclasses.dataclass
class RequestRecord:
    url: str
    method: str
    resource_type: str
    started_ms: float
    timing: dict[str, float]
    status: int = 0
    mime_type: str = ""
    body_size: int = 0
    transfer_size: int = 0


def har_entry_from_record(
    record: RequestRecord,
    initiator: dict[str, Any] | None,
    priority: str | None,
    time_origin_ms: float | None,
) -> dict[str, Any]:
    """Assemble one HAR entry with the lab's underscore extensions."""
    timings = har_timings_from_playwright(record.timing)
    entry: dict[str, Any] = {
        "startedDateTime": datetime.fromtimestamp(record.started_ms / 1000, UTC).isoformat(),
        "time": sum(v for k, v in timings.items() if k != "ssl" and v > 0),
        "request": {"url": record.url, "method": record.method},
        "response": {
            "status": record.status,
            "bodySize": record.body_size,
            "_transferSize": record.transfer_size,
            "content": {"mimeType": record.mime_type, "size": record.body_size},
        },
        "timings": timings,
        "_resourceType": record.resource_type,
    }
    if initiator:
        entry["_initiator"] = initiator
    if priority:
        entry["_priority"] = priority
    if time_origin_ms is not None:
        entry["_startOffsetMs"] = max(0.0, record.started_ms - time_origin_ms)
    return entry


# ============================================================================
# Session
# ============================================================================


class LabBrowserSession:
    """
    One instrumented Chromium page load.

    Usable as an async context manager::

        async with LabBrowserSession() as session:
            report = await lab_pipeline.run_lab_analysis(session, url)
    """

    def __init__(self, settings: config.BrowserSettings | None = None) -> None:
        self._settings = settings or config.get_settings().browser
        self._playwright: async_api.Playwright | None = None
        self._browser: async_api.Browser | None = None
        self._context: async_api.BrowserContext | None = None
        self._page: async_api.Page | None = None
        self._cdp: async_api.CDPSession | None = None
        self._page_url = ""

        self._script_sources: dict[str, str] = {}
        self._stylesheets: dict[str, tuple[str, bool]] = {}
        self._stylesheet_texts: dict[str, str] = {}
        self._initiators: dict[str, dict[str, Any]] = {}
        self._priorities: dict[str, str] = {}
        self._requests: list[RequestRecord] = []
        self._pending: set[asyncio.Task[None]] = set()

    async def __aenter__(self) -> LabBrowserSession:
        await self.launch()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def _require_page(self) -> async_api.Page:
        if not self._page:
            raise RuntimeError("No browser session active")
        return self._page

    def _require_cdp(self) -> async_api.CDPSession:
        if not self._cdp:
            raise RuntimeError("No browser session active")
        return self._cdp

    # ==========================================================================
    # Browser Lifecycle
    # ==========================================================================

    async def launch(self) -> None:
        """Launch Chromium and attach all instrumentation to a fresh page."""
        if self._page:
            await self.close()

        s = self._settings
        log.info("Launching browser", {"headless": s.headless})
        self._playwright = await async_api.async_playwright().start()
        self._browser = await self._playwright.chromium.launch(headless=s.headless)
        self._context = await self._browser.new_context(
            viewport={"width": s.viewport_width, "height": s.viewport_height},
        )
        await self._context.add_init_script(_PERFORMANCE_OBSERVER_JS)
        self._page = await self._context.new_page()
        self._page.set_default_navigation_timeout(s.navigation_timeout_ms)

        self._cdp = await self._context.new_cdp_session(self._page)
        self._cdp.on("CSS.styleSheetAdded", self._on_stylesheet_added)
        self._cdp.on("Network.requestWillBeSent", self._on_request_will_be_sent)

        await self._cdp.send("Profiler.enable")
        await self._cdp.send("Profiler.startPreciseCoverage", {"callCount": True, "detailed": True})
        await self._cdp.send("Debugger.enable")
        await self._cdp.send("DOM.enable")
        await self._cdp.send("CSS.enable")
        await self._cdp.send("CSS.startRuleUsageTracking")
        await self._cdp.send("Network.enable")

        self._page.on("requestfinished", self._on_request_finished)
        log.debug("Browser launched", {
            "viewport": f"{s.viewport_width}x{s.viewport_height}",
        })

    # ==========================================================================
    # Event Handlers
    # ==========================================================================

    def _on_stylesheet_added(self, params: dict[str, Any]) -> None:
        header = params.get("header") or {}
        sheet_id = header.get("styleSheetId")
        if sheet_id:
            self._stylesheets[sheet_id] = (header.get("sourceURL") or "", bool(header.get("isInline")))

    def _on_request_will_be_sent(self, params: dict[str, Any]) -> None:
        request = params.get("request") or {}
        request_url = request.get("url")
        if not request_url:
            return
        initiator = initiator_from_cdp(params.get("initiator"))
        if initiator:
            self._initiators.setdefault(request_url, initiator)
        if request.get("initialPriority"):
            self._priorities.setdefault(request_url, request["initialPriority"])

    def _on_request_finished(self, request: async_api.Request) -> None:
        if len(self._requests) + len(self._pending) >= MAX_TRACKED_REQUESTS:
            log.debug("Request tracking limit reached", {"limit": MAX_TRACKED_REQUESTS})
            return
        task = asyncio.get_running_loop().create_task(self._record_request(request))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _record_request(self, request: async_api.Request) -> None:
        timing = dict(request.timing)
        record = RequestRecord(
            url=request.url,
            method=request.method,
            resource_type=request.resource_type,
            started_ms=timing.get("startTime", 0),
            timing=timing,
        )
        try:
            sizes = await request.sizes()
            record.body_size = sizes.get("responseBodySize", 0)
            record.transfer_size = sizes.get("responseBodySize", 0) + sizes.get("responseHeadersSize", 0)
            response = await request.response()
            if response is not None:
                record.status = response.status
                record.mime_type = response.headers.get("content-type", "")
        except Exception as exc:
            log.debug("Request details unavailable", {"url": request.url, "error": errors.get_error_message(exc)})
        self._requests.append(record)

    # ==========================================================================
    # Navigation
    # ==========================================================================

    async def navigate(self, url: str) -> None:
        """Navigate to *url*, returning once the response has committed."""
        page = self._require_page()
        self._page_url = url
        log.debug("Navigating", {"url": url})
        response = await page.goto(url, wait_until="commit")
        if response is not None and response.status >= 400:
            log.warn("Page responded with an error status", {"url": url, "statusCode": response.status})
        if page.url != url:
            log.info("Redirected", {"from": url, "to": page.url})

    async def wait_for_signal(self, signal: controller.SignalType) -> bool:
        """Wait for the first LCP entry or for network idle."""
        page = self._require_page()
        s = self._settings
        try:
            match signal:
                case "lcp":
                    await page.wait_for_function(_HAS_LCP_JS, timeout=s.lcp_timeout_ms)
                case "network-idle":
                    await page.wait_for_load_state("networkidle", timeout=s.network_idle_timeout_ms)
            return True
        except async_api.TimeoutError:
            log.debug("Signal wait timed out", {"signal": signal})
            return False

    # ==========================================================================
    # Data Capture
    # ==========================================================================

    async def _script_source(self, script_id: str) -> str | None:
        if script_id in self._script_sources:
            return self._script_sources[script_id]
        try:
            result = await self._require_cdp().send("Debugger.getScriptSource", {"scriptId": script_id})
        except Exception as exc:
            log.debug("Script source unavailable", {"scriptId": script_id, "error": errors.get_error_message(exc)})
            return None
        source = result.get("scriptSource", "")
        self._script_sources[script_id] = source
        return source

    async def _stylesheet_text(self, sheet_id: str) -> str | None:
        if sheet_id in self._stylesheet_texts:
            return self._stylesheet_texts[sheet_id]
        try:
            result = await self._require_cdp().send("CSS.getStyleSheetText", {"styleSheetId": sheet_id})
        except Exception as exc:
            log.debug("Stylesheet text unavailable", {"styleSheetId": sheet_id, "error": errors.get_error_message(exc)})
            return None
        text = result.get("text", "")
        self._stylesheet_texts[sheet_id] = text
        return text

    def _resource_url(self, url: str, inline: bool = False) -> str:
        # Inline scripts and styles report the page URL; an empty URL
        # keys them by content instead.
        if inline or url == self._page_url:
            return ""
        return url

    async def collect_raw_coverage(self) -> list[dict[str, Any]]:
        """Take a JS and CSS coverage snapshot covering the time since the last one."""
        cdp = self._require_cdp()
        js = await cdp.send("Profiler.takePreciseCoverage")
        css = await cdp.send("CSS.takeCoverageDelta")

        entries: list[dict[str, Any]] = []
        for script in js.get("result", []):
            script_url = script.get("url") or ""
            if not script_url or url_mod.get_origin(script_url) is None:
                continue
            source = await self._script_source(script["scriptId"])
            if source is None:
                continue
            entries.append({
                "url": self._resource_url(script_url),
                "text": source,
                "rawScriptCoverage": script,
            })

        sheets: dict[str, tuple[str, str]] = {}
        for sheet_id, (sheet_url, inline) in self._stylesheets.items():
            text = await self._stylesheet_text(sheet_id)
            if text is not None:
                sheets[sheet_id] = (self._resource_url(sheet_url, inline), text)
        entries.extend(css_entries_from_delta(css.get("coverage", []), sheets))

        log.debug("Coverage snapshot taken", {"entries": len(entries)})
        return entries

    async def collect_raw_har(self) -> list[dict[str, Any]]:
        """Return HAR entries for every request finished so far."""
        page = self._require_page()
        if self._pending:
            await asyncio.gather(*self._pending)

        time_origin: float | None = None
        try:
            time_origin = await page.evaluate("() => performance.timeOrigin")
        except Exception as exc:
            log.debug("Time origin unavailable", {"error": errors.get_error_message(exc)})

        entries = [
            har_entry_from_record(
                record,
                self._initiators.get(record.url),
                self._priorities.get(record.url),
                time_origin,
            )
            for record in sorted(self._requests, key=lambda r: r.started_ms)
        ]
        log.debug("HAR entries built", {"entries": len(entries)})
        return entries

    async def collect_raw_performance_entries(self) -> dict[str, Any]:
        """Return the entries buffered by the init script."""
        return await self._require_page().evaluate(_COLLECT_ENTRIES_JS)

    async def collect_html(self) -> str:
        """Get the full HTML content of the current page."""
        return await self._require_page().content()

    def dom_accessor(self) -> dom.PlaywrightDomAccessor:
        return dom.PlaywrightDomAccessor(self._require_page())

    # ==========================================================================
    # Cleanup
    # ==========================================================================

    async def close(self) -> None:
        """Close the browser and clean up all resources."""
        log.debug("Closing browser session")
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()

        if self._page:
            self._page.remove_listener("requestfinished", self._on_request_finished)
            self._page = None

        if self._cdp:
            try:
                await self._cdp.detach()
            except Exception as exc:
                log.debug("CDP detach error (non-fatal)", {"error": errors.get_error_message(exc)})
            self._cdp = None

        if self._context:
            try:
                await self._context.close()
            except Exception as exc:
                log.debug("Context close error (non-fatal)", {"error": errors.get_error_message(exc)})
            self._context = None

        if self._browser:
            try:
                await self._browser.close()
            except Exception as exc:
                log.debug("Browser close error (non-fatal)", {"error": errors.get_error_message(exc)})
            self._browser = None

        if self._playwright:
            try:
                await self._playwright.stop()
            except Exception as exc:
                log.debug("Playwright stop error (non-fatal)", {"error": errors.get_error_message(exc)})
            self._playwright = None

        self._script_sources.clear()
        self._stylesheets.clear()
        self._stylesheet_texts.clear()
        self._initiators.clear()
        self._priorities.clear()
        self._requests.clear()
        log.debug("Browser session closed")
