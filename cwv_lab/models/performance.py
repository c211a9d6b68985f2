"""Pydantic models for Performance Observer entries.

The collector hands over either a flat list of entries tagged with
``entryType`` or a dict keyed by entry family.  Both shapes parse
into :class:`PerformanceEntries`; malformed entries are skipped.
"""

from __future__ import annotations

from typing import Any, TypeVar

import pydantic

from cwv_lab.models import layout
from cwv_lab.utils import logger, serialization

log = logger.create_logger("Perf-Entries")

_M = TypeVar("_M", bound=pydantic.BaseModel)


class LcpEntry(pydantic.BaseModel):
    """A ``largest-contentful-paint`` entry."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, extra="ignore"
    )

    start_time: float = 0
    render_time: float = 0
    load_time: float = 0
    size: float = 0
    url: str = ""
    element: dict[str, Any] | None = None

    @pydantic.field_validator("element", mode="before")
    @classmethod
    def _drop_non_dict_element(cls, value: object) -> object:
        return value if isinstance(value, dict) else None


class LongTaskAttribution(pydantic.BaseModel):
    """A ``TaskAttributionTiming`` record of a long task."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, extra="ignore"
    )

    name: str = ""
    container_type: str = ""
    container_src: str = ""
    container_id: str = ""
    container_name: str = ""


class LongTask(pydantic.BaseModel):
    """A ``longtask`` entry."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, extra="ignore"
    )

    start_time: float = 0
    duration: float = 0
    attribution: list[LongTaskAttribution] = pydantic.Field(default_factory=list)

    def blocking_duration(self, threshold_ms: float = 50) -> float:
        """Time beyond the long-task threshold, never negative."""
        return max(0.0, self.duration - threshold_ms)

    def attributed_to(self, script_url: str, domain: str) -> bool:
        """True when any attribution container references the script URL or domain."""
        for attr in self.attribution:
            src = attr.container_src
            if src and (script_url in src or (domain and domain in src)):
                return True
        return False


class PerformanceEntries(pydantic.BaseModel):
    """Typed Performance Observer entries for one page load."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    largest_contentful_paint: list[LcpEntry] = pydantic.Field(default_factory=list)
    layout_shifts: list[layout.LayoutShift] = pydantic.Field(default_factory=list)
    long_tasks: list[LongTask] = pydantic.Field(default_factory=list)

    @property
    def lcp_time(self) -> float | None:
        """Start time of the final LCP candidate, if any was observed."""
        if not self.largest_contentful_paint:
            return None
        last = self.largest_contentful_paint[-1]
        return last.render_time or last.load_time or last.start_time

    @classmethod
    def from_raw(cls, raw: object) -> PerformanceEntries:
        """Parse raw collector output, skipping entries that fail validation."""
        if isinstance(raw, PerformanceEntries):
            return raw

        lcp_raw: list[object] = []
        shift_raw: list[object] = []
        task_raw: list[object] = []

        if isinstance(raw, dict):
            lcp_raw = list(raw.get("largestContentfulPaint") or raw.get("lcp") or [])
            shift_raw = list(raw.get("layoutShifts") or [])
            task_raw = list(raw.get("longTasks") or [])
        elif isinstance(raw, list):
            for entry in raw:
                entry_type = entry.get("entryType") if isinstance(entry, dict) else None
                if entry_type == "largest-contentful-paint":
                    lcp_raw.append(entry)
                elif entry_type == "layout-shift":
                    shift_raw.append(entry)
                elif entry_type == "longtask":
                    task_raw.append(entry)

        lcp, lcp_skipped = _parse_all(LcpEntry, lcp_raw)
        shifts, shift_skipped = _parse_all(layout.LayoutShift, shift_raw)
        tasks, task_skipped = _parse_all(LongTask, task_raw)
        skipped = lcp_skipped + shift_skipped + task_skipped

        entries = cls(largest_contentful_paint=lcp, layout_shifts=shifts, long_tasks=tasks)
        if skipped:
            log.warn("Skipped malformed performance entries", {"skipped": skipped})
        return entries


def _parse_all(model: type[_M], items: list[object]) -> tuple[list[_M], int]:
    parsed: list[_M] = []
    skipped = 0
    for item in items:
        try:
            parsed.append(model.model_validate(item))
        except pydantic.ValidationError:
            skipped += 1
    return parsed, skipped
