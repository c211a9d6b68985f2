"""
Coverage usage classification.

Classifies every JS function and CSS rule of a page as needed before
the Largest Contentful Paint (``pre-paint``), needed later
(``post-paint``) or never executed (``unused``), using two snapshots:
one taken at LCP and one at network idle.

Priority is enforced by evaluation order: the unmerged pre-paint
snapshot is consulted first, then the merged view.  A unit that ran
before paint stays ``pre-paint`` whatever happened afterwards.
"""

from __future__ import annotations

import bisect
from collections.abc import Iterable

from cwv_lab.analysis import css_rules, offsets, ranges
from cwv_lab.models import coverage
from cwv_lab.utils import errors, logger

log = logger.create_logger("Coverage")

_USAGE_RANK: dict[coverage.UsageCategory, int] = {"pre-paint": 2, "post-paint": 1, "unused": 0}


class _ExecutedSpans:
    """Executed byte spans with binary-search intersection tests."""

    def __init__(self, spans: Iterable[coverage.CoverageRange]) -> None:
        self._spans = ranges.executed_ranges(spans)
        self._ends = [s.end for s in self._spans]

    def intersects(self, start: int, end: int) -> bool:
        idx = bisect.bisect_right(self._ends, start)
        return idx < len(self._spans) and self._spans[idx].start < end

    @property
    def covered(self) -> int:
        return sum(s.size for s in self._spans)


def _keep_higher(
    units: dict[str, coverage.UnitClassification],
    key: str,
    unit: coverage.UnitClassification,
) -> None:
    existing = units.get(key)
    if existing is None or (
        (_USAGE_RANK[unit.usage], unit.execution_count)
        > (_USAGE_RANK[existing.usage], existing.execution_count)
    ):
        units[key] = unit


# ============================================================================
# JavaScript
# ============================================================================


def _classify_js(
    resource_id: str,
    merged: coverage.CoverageEntry,
    pre: coverage.CoverageEntry | None,
) -> coverage.FileClassification:
    index = offsets.LineIndex(merged.text or (pre.text if pre else ""))

    pre_keys: set[str] = set()
    if pre is not None and pre.raw_script_coverage is not None:
        pre_keys = {
            ranges.function_key(func, index)
            for func in pre.raw_script_coverage.functions
            if func.executed
        }

    units: dict[str, coverage.UnitClassification] = {}
    total = pre_bytes = post_bytes = 0
    functions = merged.raw_script_coverage.functions if merged.raw_script_coverage else []

    for func in functions:
        key = ranges.function_key(func, index)
        if key in pre_keys:
            usage: coverage.UsageCategory = "pre-paint"
        elif func.executed:
            usage = "post-paint"
        else:
            usage = "unused"

        for r in func.ranges:
            total += r.size
            if not r.executed:
                continue
            if usage == "pre-paint":
                pre_bytes += r.size
            else:
                post_bytes += r.size

        # Anonymous functions count toward bytes only.
        if func.function_name:
            _keep_higher(units, key, coverage.UnitClassification(
                usage=usage, execution_count=func.execution_count,
            ))

    return coverage.FileClassification(
        resource_id=resource_id,
        url=merged.url,
        resource_type="js",
        loaded_pre_paint=pre is not None and pre.has_coverage,
        units=units,
        bytes=coverage.ByteStats(
            total=total,
            used=pre_bytes + post_bytes,
            pre_lcp=pre_bytes,
            post_lcp=post_bytes,
        ),
    )


# ============================================================================
# CSS
# ============================================================================


def _classify_css(
    resource_id: str,
    merged: coverage.CoverageEntry,
    pre: coverage.CoverageEntry | None,
) -> coverage.FileClassification:
    text = merged.text or (pre.text if pre else "")
    index = offsets.LineIndex(text)
    pre_spans = _ExecutedSpans((pre.ranges or []) if pre is not None else [])
    merged_spans = _ExecutedSpans(merged.ranges or [])

    units: dict[str, coverage.UnitClassification] = {}
    for rule in css_rules.extract_rules(text):
        key = f"{rule.selector}:L{index.line_of(rule.start)}"
        if pre_spans.intersects(rule.start, rule.end):
            usage: coverage.UsageCategory = "pre-paint"
        elif merged_spans.intersects(rule.start, rule.end):
            usage = "post-paint"
        else:
            usage = "unused"
        _keep_higher(units, key, coverage.UnitClassification(usage=usage))

    total = len(text)
    used = min(total, merged_spans.covered)
    pre_bytes = min(used, pre_spans.covered)

    return coverage.FileClassification(
        resource_id=resource_id,
        url=merged.url,
        resource_type="css",
        loaded_pre_paint=pre is not None and pre.has_coverage,
        units=units,
        bytes=coverage.ByteStats(
            total=total,
            used=used,
            pre_lcp=pre_bytes,
            post_lcp=used - pre_bytes,
        ),
    )


# ============================================================================
# Entry point
# ============================================================================


def classify_file(
    resource_id: str,
    merged: coverage.CoverageEntry,
    pre: coverage.CoverageEntry | None = None,
) -> coverage.FileClassification:
    """Classify one merged resource against its pre-paint entry."""
    if merged.resource_type == "js":
        return _classify_js(resource_id, merged, pre)
    return _classify_css(resource_id, merged, pre)


def classify(
    pre_entries: Iterable[object],
    full_entries: Iterable[object],
) -> coverage.CoverageClassification:
    """Classify every resource of the two coverage snapshots.

    Args:
        pre_entries: Raw or parsed entries captured at LCP.
        full_entries: Raw or parsed entries captured at network idle.

    Returns:
        Per-resource classifications.  ``complete`` is false when a
        malformed entry or a resource without any coverage data had
        to be skipped.
    """
    pre_parsed, pre_skipped = ranges.parse_entries(pre_entries)
    full_parsed, full_skipped = ranges.parse_entries(full_entries)
    merged = ranges.merge_entries(pre_parsed, full_parsed)
    pre_index = ranges.index_entries(pre_parsed)

    result = coverage.CoverageClassification(complete=(pre_skipped + full_skipped) == 0)

    for rid, entry in merged.items():
        if not entry.has_coverage:
            log.debug("Skipping resource without coverage data", {"resource": rid})
            result.skipped.append(rid)
            result.complete = False
            continue
        try:
            result.files[rid] = classify_file(rid, entry, pre_index.get(rid))
        except Exception as exc:
            log.warn("Failed to classify resource", {"resource": rid, "error": errors.get_error_message(exc)})
            result.skipped.append(rid)
            result.complete = False

    log.info("Coverage classified", {
        "files": len(result.files),
        "skipped": len(result.skipped),
        "complete": result.complete,
    })
    return result
