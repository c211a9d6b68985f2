"""Shared fixtures for the test suite."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from cwv_lab import config
from cwv_lab.models import layout

PAGE_URL = "https://example.com/"

# Three one-line functions of 28 bytes each, one per line.
JS_TEXT = (
    "function foo() { return 1; }\n"
    "function bar() { return 2; }\n"
    "function baz() { return 3; }\n"
)


def js_function(name: str, start: int, end: int, count: int) -> dict[str, Any]:
    return {
        "functionName": name,
        "ranges": [{"startOffset": start, "endOffset": end, "count": count}],
        "isBlockCoverage": False,
    }


def js_entry(url: str, text: str, functions: list[dict[str, Any]]) -> dict[str, Any]:
    return {
        "url": url,
        "text": text,
        "rawScriptCoverage": {"scriptId": "1", "url": url, "functions": functions},
    }


def css_entry(url: str, text: str, ranges: list[tuple[int, int]]) -> dict[str, Any]:
    return {"url": url, "text": text, "ranges": [{"start": s, "end": e} for s, e in ranges]}


# ── Coverage Snapshots ──────────────────────────────────────────


@pytest.fixture()
def pre_js_entry() -> dict[str, Any]:
    """``foo`` ran five times before LCP; nothing else ran."""
    return js_entry("https://example.com/app.js", JS_TEXT, [
        js_function("foo", 0, 28, 5),
        js_function("bar", 29, 57, 0),
        js_function("baz", 58, 86, 0),
    ])


@pytest.fixture()
def full_js_entry() -> dict[str, Any]:
    """After LCP only ``bar`` ran (counters were reset at the first take)."""
    return js_entry("https://example.com/app.js", JS_TEXT, [
        js_function("foo", 0, 28, 0),
        js_function("bar", 29, 57, 3),
        js_function("baz", 58, 86, 0),
    ])


@pytest.fixture()
def css_text() -> str:
    """Rule ``.a`` spans 0-13 and rule ``.b`` starts at offset 120."""
    return ".a{color:red}" + " " * 107 + ".b{color:blue}"


# ── Settings ────────────────────────────────────────────────────


@pytest.fixture()
def lab_settings() -> config.LabSettings:
    """Settings with a short stylesheet time box for fast tests."""
    return config.LabSettings(
        layout_shift=config.ShiftThresholds(stylesheet_timeout_s=0.05),
    )


# ── DOM Doubles ─────────────────────────────────────────────────


class FakeDom:
    """In-memory DOM accessor keyed by shift-source node id."""

    def __init__(
        self,
        elements: dict[Any, layout.ElementInfo] | None = None,
        stylesheet: layout.StylesheetMatch | None = None,
        delay: float = 0.0,
        fail_on: Any = None,
    ) -> None:
        self.elements = elements or {}
        self.stylesheet = stylesheet
        self.delay = delay
        self.fail_on = fail_on
        self.lookups: list[tuple[str, str]] = []

    async def resolve_element(self, source: layout.ShiftSource) -> layout.ElementInfo | None:
        if self.fail_on is not None and source.node_id == self.fail_on:
            raise RuntimeError("node detached")
        return self.elements.get(source.node_id)

    async def find_stylesheet_rule(self, selector: str, css_property: str) -> layout.StylesheetMatch | None:
        self.lookups.append((selector, css_property))
        if self.delay:
            await asyncio.sleep(self.delay)
        return self.stylesheet


@pytest.fixture()
def hero_element() -> layout.ElementInfo:
    return layout.ElementInfo(
        selector=".hero",
        computed_styles={"position": "static", "height": "130px"},
    )


def shift_entry(value: float, node_id: int, prev: dict[str, float], cur: dict[str, float]) -> dict[str, Any]:
    return {
        "value": value,
        "startTime": 100.0,
        "hadRecentInput": False,
        "sources": [{"previousRect": prev, "currentRect": cur, "nodeId": node_id}],
    }


# ── HAR ─────────────────────────────────────────────────────────


def har_entry(
    url: str,
    resource_type: str = "script",
    *,
    priority: str | None = None,
    initiator: dict[str, Any] | None = None,
    start_offset_ms: float | None = None,
    transfer_size: int = 1000,
    time: float = 100.0,
) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "startedDateTime": "2026-01-01T00:00:00+00:00",
        "time": time,
        "request": {"url": url, "method": "GET"},
        "response": {
            "status": 200,
            "bodySize": transfer_size,
            "_transferSize": transfer_size,
            "content": {"mimeType": "application/javascript", "size": transfer_size * 3},
        },
        "timings": {"blocked": -1, "dns": 10, "connect": 20, "ssl": 5, "send": 0, "wait": 50, "receive": 20},
        "_resourceType": resource_type,
    }
    if priority is not None:
        entry["_priority"] = priority
    if initiator is not None:
        entry["_initiator"] = initiator
    if start_offset_ms is not None:
        entry["_startOffsetMs"] = start_offset_ms
    return entry


GTM_URL = "https://www.googletagmanager.com/gtm.js?id=GTM-TEST"
AD_URL = "https://ad.doubleclick.net/ads/x.js"


@pytest.fixture()
def sample_har() -> list[dict[str, Any]]:
    """First-party app, a parser-blocking tag manager, an ad script and an image."""
    return [
        har_entry("https://example.com/app.js", priority="High", start_offset_ms=50),
        har_entry(
            GTM_URL,
            priority="VeryHigh",
            initiator={"type": "parser", "url": PAGE_URL},
            start_offset_ms=100,
        ),
        har_entry(
            AD_URL,
            priority="Low",
            initiator={"type": "script", "url": GTM_URL},
            start_offset_ms=3000,
        ),
        har_entry("https://images.example-cdn.net/hero.jpg", resource_type="image"),
    ]


@pytest.fixture()
def sample_perf() -> dict[str, Any]:
    """LCP at 2s and one 120ms long task attributed to the tag manager."""
    return {
        "largestContentfulPaint": [{"startTime": 1900, "renderTime": 2000, "size": 5000}],
        "layoutShifts": [],
        "longTasks": [{
            "startTime": 500,
            "duration": 120,
            "attribution": [{"name": "unknown", "containerType": "iframe", "containerSrc": GTM_URL}],
        }],
    }
