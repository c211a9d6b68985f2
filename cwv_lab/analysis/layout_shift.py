"""
Layout-shift attribution.

Maps each layout-shift source to the DOM element that moved, a
heuristic root cause derived from its rectangle delta, and (when a
same-origin stylesheet allows it) the CSS rule setting the property
the cause points at.

Cause classification is pure.  Only the DOM lookups cross into the
browser, through a :class:`DomAccessor`; stylesheet scanning is
time-boxed and any per-source failure drops just that source.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from typing import Protocol

from cwv_lab import config
from cwv_lab.models import layout
from cwv_lab.utils import errors, logger

log = logger.create_logger("Layout-Shift")


class DomAccessor(Protocol):
    """Live DOM queries needed to attribute a shift source."""

    async def resolve_element(self, source: layout.ShiftSource) -> layout.ElementInfo | None:
        """Resolve the moved node to a selector and computed styles."""
        ...

    async def find_stylesheet_rule(self, selector: str, css_property: str) -> layout.StylesheetMatch | None:
        """Find a readable stylesheet rule setting *css_property* for *selector*."""
        ...


# ============================================================================
# Cause classification
# ============================================================================


def rect_delta(previous: layout.Rect, current: layout.Rect) -> layout.RectDelta:
    return layout.RectDelta(
        width=current.width - previous.width,
        height=current.height - previous.height,
        top=current.top - previous.top,
        left=current.left - previous.left,
    )


def classify_shift_cause(
    previous: layout.Rect,
    current: layout.Rect,
    thresholds: config.ShiftThresholds | None = None,
) -> layout.ShiftCause:
    """Classify the root cause of a shift from its rectangle delta.

    Branches are tried in order and the first match wins:
    font-swap, content-insertion, unsized-media, animation, unknown.
    """
    t = thresholds or config.ShiftThresholds()
    d = rect_delta(previous, current)

    if abs(d.height) > t.font_swap_min_height and abs(d.width) < t.font_swap_max_width:
        return layout.ShiftCause(
            type="font-swap",
            description=f"Font loaded and swapped, changing text height by {d.height:.1f}px",
            recommendation="Use font-display: swap with size-adjusted fallback font (size-adjust, ascent-override)",
            css_property="font-family",
            priority="high",
        )

    if d.top > t.insertion_min_top and abs(d.height) < t.insertion_max_height:
        return layout.ShiftCause(
            type="content-insertion",
            description=f"Element shifted down by {d.top:.1f}px due to content inserted above",
            recommendation="Reserve space for dynamic content with min-height, aspect-ratio, or skeleton screens",
            css_property="min-height",
            priority="high",
        )

    if abs(d.width) > t.resize_min or abs(d.height) > t.resize_min:
        return layout.ShiftCause(
            type="unsized-media",
            description=(
                f"Element resized from {previous.width:.0f}x{previous.height:.0f} "
                f"to {current.width:.0f}x{current.height:.0f}"
            ),
            recommendation="Set explicit width/height attributes on images or use aspect-ratio CSS",
            css_property="aspect-ratio",
            priority="high",
        )

    if abs(d.left) > t.animation_min_left or t.animation_min_top < abs(d.top) < t.animation_max_top:
        return layout.ShiftCause(
            type="animation",
            description=f"Element moved {d.left:.1f}px horizontally and {d.top:.1f}px vertically",
            recommendation="Use transform instead of top/left for animations (composited properties)",
            css_property="transform",
            priority="medium",
        )

    return layout.ShiftCause(
        type="unknown",
        description=(
            f"Layout shift detected: width {d.width:.1f}px, height {d.height:.1f}px, "
            f"top {d.top:.1f}px, left {d.left:.1f}px"
        ),
        recommendation="Investigate computed style changes and dynamic content loading",
        priority="medium",
    )


# ============================================================================
# Attribution
# ============================================================================


async def _find_stylesheet(
    dom: DomAccessor,
    selector: str,
    cause: layout.ShiftCause,
    timeout_s: float,
) -> layout.StylesheetMatch | None:
    """Best-effort stylesheet lookup; a timeout or failure means no match."""
    if not selector or not cause.css_property:
        return None
    try:
        async with asyncio.timeout(timeout_s):
            return await dom.find_stylesheet_rule(selector, cause.css_property)
    except TimeoutError:
        log.debug("Stylesheet lookup timed out", {"selector": selector, "timeoutS": timeout_s})
        return None
    except Exception as exc:
        log.debug("Stylesheet lookup failed", {"selector": selector, "error": errors.get_error_message(exc)})
        return None


async def _attribute_source(
    shift: layout.LayoutShift,
    source: layout.ShiftSource,
    dom: DomAccessor,
    thresholds: config.ShiftThresholds,
) -> layout.EnhancedShift | None:
    if source.previous_rect is None or source.current_rect is None:
        log.debug("Dropping shift source without rects", {"startTime": shift.start_time})
        return None

    element = await dom.resolve_element(source)
    if element is None:
        log.debug("Dropping unresolvable shift source", {
            "startTime": shift.start_time,
            "nodeId": source.node_id,
        })
        return None

    cause = classify_shift_cause(source.previous_rect, source.current_rect, thresholds)
    stylesheet = await _find_stylesheet(dom, element.selector, cause, thresholds.stylesheet_timeout_s)

    return layout.EnhancedShift(
        value=shift.value,
        start_time=shift.start_time,
        had_recent_input=shift.had_recent_input,
        element=element.selector,
        previous_rect=source.previous_rect,
        current_rect=source.current_rect,
        computed_styles=element.computed_styles,
        cause=cause,
        stylesheet=stylesheet,
    )


async def attribute(
    shifts: Sequence[layout.LayoutShift],
    dom: DomAccessor,
    thresholds: config.ShiftThresholds | None = None,
) -> list[layout.EnhancedShift]:
    """Attribute every source of every shift.

    Sources that lack rects, cannot be resolved to an element or
    raise during evaluation are dropped; the rest are returned in
    event order.
    """
    t = thresholds or config.get_settings().layout_shift
    enhanced: list[layout.EnhancedShift] = []
    dropped = 0

    for shift in shifts:
        for source in shift.sources:
            try:
                result = await _attribute_source(shift, source, dom, t)
            except Exception as exc:
                log.warn("Error attributing layout shift source", {
                    "startTime": shift.start_time,
                    "error": errors.get_error_message(exc),
                })
                result = None
            if result is None:
                dropped += 1
            else:
                enhanced.append(result)

    log.info("Layout shifts attributed", {"attributed": len(enhanced), "dropped": dropped})
    return enhanced


# ============================================================================
# Summary
# ============================================================================


def summarize_attribution(
    enhanced: Sequence[layout.EnhancedShift],
    top_n: int = 5,
) -> layout.AttributionSummary:
    """Aggregate attributed shifts by cause and pick the top issues.

    The input sequence is left untouched.
    """
    by_type: dict[str, layout.ShiftTypeSummary] = {}
    for shift in enhanced:
        summary = by_type.setdefault(shift.cause.type, layout.ShiftTypeSummary())
        summary.count += 1
        summary.total_value += shift.value
        summary.elements.append(shift.element)

    top = sorted(enhanced, key=lambda s: s.value, reverse=True)[:top_n]
    return layout.AttributionSummary(
        total_shifts=len(enhanced),
        total_cls=round(sum(s.value for s in enhanced), 4),
        by_type=by_type,
        top_issues=[
            layout.TopShiftIssue(
                element=s.element,
                value=s.value,
                type=s.cause.type,
                description=s.cause.description,
                recommendation=s.cause.recommendation,
                stylesheet=s.stylesheet.href if s.stylesheet else None,
                priority=s.cause.priority,
            )
            for s in top
        ],
    )


def render_markdown(summary: layout.AttributionSummary) -> str:
    """Render an attribution summary for human or LLM consumption."""
    if summary.total_shifts == 0:
        return "No layout shifts could be attributed.\n"

    lines = [
        "### Layout Shift Attribution",
        "",
        f"- Total shifts: {summary.total_shifts}",
        f"- Total CLS: {summary.total_cls}",
        "",
        "**By cause:**",
    ]
    for cause, data in sorted(summary.by_type.items(), key=lambda kv: kv[1].total_value, reverse=True):
        elements = ", ".join(dict.fromkeys(data.elements))
        lines.append(f"- {cause}: {data.count} shift(s), value {data.total_value:.4f} ({elements})")

    lines += ["", "**Top issues:**"]
    for issue in summary.top_issues:
        source = f" [{issue.stylesheet}]" if issue.stylesheet else ""
        lines.append(f"- `{issue.element}` ({issue.type}, {issue.priority}): {issue.value:.4f}{source}")
        lines.append(f"    - {issue.description}")
        lines.append(f"    - Fix: {issue.recommendation}")
    return "\n".join(lines) + "\n"
