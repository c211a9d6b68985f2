"""
Lab analysis pipeline.

Drives one instrumented page load through a :class:`PageController`
and runs the three attributors over what it collected:

1. Navigate and wait for LCP, then take the pre-paint coverage
   snapshot.
2. Wait for network idle, then take the full coverage snapshot, the
   HAR, the performance entries and the page HTML.
3. Coverage classification and findings, layout-shift attribution,
   third-party attribution, and their markdown renderings.

Every stage is isolated.  A failing stage flips its completeness
flag on the report and adds an :class:`AnalysisIssue`; the others
still run.
"""

from __future__ import annotations

import dataclasses
import functools
from collections.abc import Callable
from typing import Any

from cwv_lab import config
from cwv_lab.analysis import coverage, coverage_report, layout_shift, third_party
from cwv_lab.browser import controller
from cwv_lab.models import performance, report
from cwv_lab.pipeline import context
from cwv_lab.utils import logger, url as url_mod

log = logger.create_logger("Lab")


@dataclasses.dataclass
class CollectedData:
    """Raw collector output; ``None`` marks a collector that failed."""

    pre_coverage: list[dict[str, Any]] | None = None
    full_coverage: list[dict[str, Any]] | None = None
    har: Any = None
    performance_entries: Any = None
    html: str | None = None


# ============================================================================
# Collection
# ============================================================================


async def _collect_one(
    page: controller.PageController,
    kind: context.CollectorKind,
    ctx: context.AnalysisContext,
) -> Any:
    try:
        return await context.collect(page, kind)
    except Exception as exc:
        ctx.record_issue("collection", exc, resource=kind.value)
        return None


async def _wait(page: controller.PageController, signal: controller.SignalType) -> None:
    if not await page.wait_for_signal(signal):
        log.warn("Signal not observed before timeout; continuing", {"signal": signal})


async def collect_all(
    page: controller.PageController,
    ctx: context.AnalysisContext,
) -> CollectedData | None:
    """Run the collection sequence; ``None`` when navigation failed."""
    data = CollectedData()

    ctx.next_step("Navigate")
    log.start_timer("navigation")
    try:
        await page.navigate(ctx.url)
    except Exception as exc:
        ctx.record_issue("collection", exc, resource=ctx.url)
        return None
    await _wait(page, "lcp")
    log.end_timer("navigation", "Reached LCP")

    ctx.next_step("Pre-paint coverage snapshot")
    data.pre_coverage = await _collect_one(page, context.CollectorKind.COVERAGE, ctx)

    ctx.next_step("Wait for network idle")
    await _wait(page, "network-idle")

    ctx.next_step("Full coverage, HAR and performance entries")
    data.full_coverage = await _collect_one(page, context.CollectorKind.COVERAGE, ctx)
    data.har = await _collect_one(page, context.CollectorKind.HAR, ctx)
    data.performance_entries = await _collect_one(page, context.CollectorKind.PERFORMANCE, ctx)
    try:
        data.html = await page.collect_html()
    except Exception as exc:
        # HTML only feeds personalisation markers; the analysis goes on.
        log.warn("Page HTML unavailable", {"error": str(exc)})

    log.info("Collection complete", {
        "preEntries": len(data.pre_coverage or []),
        "fullEntries": len(data.full_coverage or []),
    })
    return data


# ============================================================================
# Attribution stages
# ============================================================================


def _coverage_stage(
    result: report.LabReport,
    data: CollectedData,
    ctx: context.AnalysisContext,
) -> None:
    if data.pre_coverage is None or data.full_coverage is None:
        result.coverage_complete = False
        return
    try:
        classification = coverage.classify(data.pre_coverage, data.full_coverage)
        result.coverage = classification
        result.coverage_findings = coverage_report.summarize(classification, ctx.settings.coverage)
        result.coverage_complete = classification.complete
    except Exception as exc:
        result.coverage_complete = False
        ctx.record_issue("coverage", exc)


async def _layout_shift_stage(
    result: report.LabReport,
    data: CollectedData,
    dom: layout_shift.DomAccessor | None,
    ctx: context.AnalysisContext,
) -> None:
    if data.performance_entries is None:
        result.layout_shifts_complete = False
        return
    try:
        entries = performance.PerformanceEntries.from_raw(data.performance_entries)
        if entries.layout_shifts and dom is None:
            result.layout_shifts_complete = False
            ctx.record_issue("layout-shift", "No DOM accessor available to attribute layout shifts")
            return
        thresholds = ctx.settings.layout_shift
        enhanced = await layout_shift.attribute(entries.layout_shifts, dom, thresholds) if dom else []
        result.layout_shifts = enhanced
        result.layout_shift_summary = layout_shift.summarize_attribution(enhanced, thresholds.top_issues)
    except Exception as exc:
        result.layout_shifts_complete = False
        ctx.record_issue("layout-shift", exc)


def _third_party_stage(
    result: report.LabReport,
    data: CollectedData,
    ctx: context.AnalysisContext,
) -> None:
    if data.har is None:
        result.third_party_complete = False
        return
    try:
        result.third_party = third_party.analyze(
            data.har,
            data.performance_entries or {},
            ctx.url,
            html=data.html,
            thresholds=ctx.settings.third_party,
        )
        if data.performance_entries is None:
            # Scripts are still listed, without execution or long-task attribution.
            result.third_party_complete = False
            ctx.record_issue("third-party", "No performance entries; execution time not attributed")
    except Exception as exc:
        result.third_party_complete = False
        ctx.record_issue("third-party", exc)


def _render_one(
    result: report.LabReport,
    ctx: context.AnalysisContext,
    key: str,
    render: Callable[[], str],
) -> None:
    try:
        result.markdown[key] = render()
    except Exception as exc:
        ctx.record_issue("render", exc, resource=key)


def _render(result: report.LabReport, ctx: context.AnalysisContext) -> None:
    if result.coverage_findings is not None:
        _render_one(result, ctx, "coverage", functools.partial(
            coverage_report.render_markdown, result.coverage_findings,
        ))
    if result.layout_shift_summary is not None:
        _render_one(result, ctx, "layoutShifts", functools.partial(
            layout_shift.render_markdown, result.layout_shift_summary,
        ))
    if result.third_party is not None:
        _render_one(result, ctx, "thirdParty", functools.partial(
            third_party.render_markdown, result.third_party, ctx.settings.third_party,
        ))


async def _analyze(
    data: CollectedData,
    dom: layout_shift.DomAccessor | None,
    ctx: context.AnalysisContext,
) -> report.LabReport:
    result = report.LabReport(url=ctx.url)

    ctx.next_step("Coverage attribution")
    _coverage_stage(result, data, ctx)

    ctx.next_step("Layout-shift attribution")
    await _layout_shift_stage(result, data, dom, ctx)

    ctx.next_step("Third-party attribution")
    _third_party_stage(result, data, ctx)

    ctx.next_step("Render markdown")
    _render(result, ctx)

    result.issues = list(ctx.issues)
    result.steps = ctx.steps
    return result


# ============================================================================
# Entry points
# ============================================================================


async def analyze_collected(
    pre_coverage: list[dict[str, Any]] | None,
    full_coverage: list[dict[str, Any]] | None,
    har: Any,
    performance_entries: Any,
    url: str,
    dom: layout_shift.DomAccessor | None = None,
    html: str | None = None,
    settings: config.LabSettings | None = None,
) -> report.LabReport:
    """Run attribution over raw data collected earlier, without a browser.

    Pass ``None`` for any input that could not be collected; the
    stages depending on it are reported incomplete.
    """
    ctx = context.AnalysisContext(url=url, settings=settings or config.get_settings())
    data = CollectedData(
        pre_coverage=pre_coverage,
        full_coverage=full_coverage,
        har=har,
        performance_entries=performance_entries,
        html=html,
    )
    return await _analyze(data, dom, ctx)


async def run_lab_analysis(
    page: controller.PageController,
    url: str,
    settings: config.LabSettings | None = None,
) -> report.LabReport:
    """Load *url* through *page* and attribute its Core Web Vitals costs."""
    ctx = context.AnalysisContext(url=url, settings=settings or config.get_settings())
    logger.start_log_file(url_mod.extract_domain(url))
    log.section(f"Lab analysis: {url}")
    log.start_timer("lab-analysis")
    try:
        log.subsection("Collection")
        data = await collect_all(page, ctx)
        if data is None:
            return report.LabReport(
                url=url,
                coverage_complete=False,
                layout_shifts_complete=False,
                third_party_complete=False,
                issues=list(ctx.issues),
                steps=ctx.steps,
            )
        log.subsection("Attribution")
        result = await _analyze(data, page.dom_accessor(), ctx)
        if result.complete:
            log.success("Lab analysis complete", {"steps": result.steps})
        else:
            log.warn("Lab analysis finished with partial results", {"issues": len(result.issues)})
        return result
    finally:
        log.end_timer("lab-analysis", "Lab analysis finished")
        logger.end_log_file()
