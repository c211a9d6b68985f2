"""
Page Controller interface.

The lab pipeline drives a page load only through this protocol, so
attribution can run against a real browser session or a test double.
"""

from __future__ import annotations

from typing import Any, Literal, Protocol

from cwv_lab.analysis import layout_shift

SignalType = Literal["lcp", "network-idle"]


class PageController(Protocol):
    """Browser automation collaborator for one page load."""

    async def navigate(self, url: str) -> None:
        """Start loading *url*; returns once navigation has committed."""
        ...

    async def wait_for_signal(self, signal: SignalType) -> bool:
        """Wait for LCP or network idle; ``False`` when the wait timed out."""
        ...

    async def collect_raw_coverage(self) -> list[dict[str, Any]]:
        """Take a JS and CSS coverage snapshot since the previous one."""
        ...

    async def collect_raw_har(self) -> list[dict[str, Any]]:
        """Return HAR entries for every finished request so far."""
        ...

    async def collect_raw_performance_entries(self) -> dict[str, Any]:
        """Return buffered LCP, layout-shift and long-task entries."""
        ...

    async def collect_html(self) -> str:
        """Return the current page HTML."""
        ...

    def dom_accessor(self) -> layout_shift.DomAccessor:
        """Return a live DOM accessor for layout-shift attribution."""
        ...
