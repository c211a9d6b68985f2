"""
Coverage findings and their markdown rendering.

Turns a :class:`~cwv_lab.models.coverage.CoverageClassification` into
prioritised findings: overall waste severity, recommendations, hot
paths and per-file breakdowns for wasteful or late-loading files.
Pure read/transform; the classification is never modified.
"""

from __future__ import annotations

import math

from cwv_lab import config
from cwv_lab.models import coverage
from cwv_lab.utils import logger, url as url_mod

log = logger.create_logger("Coverage-Report")

_BYTE_UNITS = ("Bytes", "KB", "MB", "GB")


def format_bytes(num_bytes: float, decimals: int = 0) -> str:
    """Format a byte count with 1024-based units (``0 Bytes``, ``12 KB``)."""
    if num_bytes <= 0:
        return "0 Bytes"
    i = 0
    value = float(num_bytes)
    while value >= 1024 and i < len(_BYTE_UNITS) - 1:
        value /= 1024
        i += 1
    if decimals <= 0:
        return f"{int(math.floor(value + 0.5))} {_BYTE_UNITS[i]}"
    return f"{round(value, decimals)} {_BYTE_UNITS[i]}"


def _compact_bytes(num_bytes: float) -> str:
    return format_bytes(num_bytes).replace(" ", "", 1)


# ============================================================================
# Statistics
# ============================================================================


def _overview(classification: coverage.CoverageClassification) -> coverage.CoverageOverview:
    files = list(classification.files.values())
    total_units = sum(len(f.units) for f in files)
    pre = sum(f.count("pre-paint") for f in files)
    post = sum(f.count("post-paint") for f in files)
    unused = sum(f.count("unused") for f in files)

    byte_totals = coverage.ByteStats()
    for f in files:
        byte_totals = byte_totals + f.bytes

    return coverage.CoverageOverview(
        total_files=len(files),
        total_units=total_units,
        pre_paint=pre,
        post_paint=post,
        unused=unused,
        pre_paint_percent=coverage.percentage(pre, total_units),
        post_paint_percent=coverage.percentage(post, total_units),
        unused_percent=coverage.percentage(unused, total_units),
        bytes=byte_totals if byte_totals.total > 0 else None,
    )


def _file_unused_percent(file: coverage.FileClassification) -> int:
    if file.bytes.total > 0:
        return file.bytes.unused_percent
    return coverage.percentage(file.count("unused"), len(file.units))


def _hot_paths(
    file: coverage.FileClassification,
    thresholds: config.CoverageThresholds,
) -> list[coverage.HotPath]:
    hot = [
        coverage.HotPath(
            name=coverage.display_name(key),
            execution_count=unit.execution_count,
            file=file.url or file.resource_id,
        )
        for key, unit in file.units.items()
        if unit.execution_count > thresholds.hot_path_executions
    ]
    hot.sort(key=lambda h: h.execution_count, reverse=True)
    return hot[: thresholds.hot_path_limit]


def _breakdown(names: list[str], limit: int) -> coverage.UnitBreakdown:
    return coverage.UnitBreakdown(names=names[:limit], more=max(0, len(names) - limit))


def _file_finding(
    file: coverage.FileClassification,
    thresholds: config.CoverageThresholds,
) -> coverage.FileFinding | None:
    """Return a breakdown when the file is wasteful or mostly late-loading."""
    unused_percent = _file_unused_percent(file)
    pre = file.count("pre-paint")
    post = file.count("post-paint")
    if unused_percent <= thresholds.heavy_unused_percent and post <= pre:
        return None

    path = url_mod.short_path(file.url) if file.url else file.resource_id
    return coverage.FileFinding(
        resource_id=file.resource_id,
        path=path,
        resource_type=file.resource_type,
        is_minified=".min." in file.url,
        units=len(file.units),
        pre_paint=pre,
        post_paint=post,
        unused=file.count("unused"),
        unused_percent=unused_percent,
        bytes=file.bytes,
        suggest_code_splitting=post > pre,
        defer=_breakdown(file.unit_names("post-paint"), thresholds.display_limit),
        remove=_breakdown(file.unit_names("unused"), thresholds.display_limit),
        hot_paths=_hot_paths(file, thresholds) if file.resource_type == "js" else [],
    )


# ============================================================================
# Summary
# ============================================================================


def _recommendations(
    overview: coverage.CoverageOverview,
    heavy_files: list[coverage.FileFinding],
    thresholds: config.CoverageThresholds,
) -> list[str]:
    recs: list[str] = []
    waste = overview.waste_percent
    wasted = f" ({_compact_bytes(overview.bytes.unused)} wasted)" if overview.bytes else ""

    if waste > thresholds.critical_unused_percent:
        recs.append(f"**Critical**: {waste}% unused code{wasted} - implement tree-shaking and code splitting")
    elif waste > thresholds.warning_unused_percent:
        recs.append(f"**Optimize**: {waste}% unused code{wasted} - review and remove dead code")

    if overview.total_units > 0 or overview.bytes is not None:
        share = overview.pre_paint_share
        if share < thresholds.min_pre_paint_percent:
            recs.append(f"**LCP**: Only {share}% pre-LCP code - defer non-critical resources")

    if heavy_files:
        names = ", ".join(f.path.rstrip("/").rsplit("/", 1)[-1] or f.path for f in heavy_files[:3])
        recs.append(
            f"**Files**: {names} have >{thresholds.heavy_unused_percent}% unused code - consider removal"
        )
    return recs


def summarize(
    classification: coverage.CoverageClassification,
    thresholds: config.CoverageThresholds | None = None,
) -> coverage.CoverageFindings:
    """Derive prioritised findings from *classification*."""
    thresholds = thresholds or config.get_settings().coverage
    overview = _overview(classification)

    waste = overview.waste_percent
    if waste > thresholds.critical_unused_percent:
        severity: coverage.Severity = "critical"
    elif waste > thresholds.warning_unused_percent:
        severity = "optimize"
    else:
        severity = "good"

    findings = [
        finding
        for file in classification.files.values()
        if (finding := _file_finding(file, thresholds)) is not None
    ]
    findings.sort(key=lambda f: f.bytes.unused, reverse=True)
    heavy = [f for f in findings if f.unused_percent > thresholds.heavy_unused_percent]

    all_hot = [
        hp
        for file in classification.files.values()
        if file.resource_type == "js"
        for hp in _hot_paths(file, thresholds)
    ]
    all_hot.sort(key=lambda h: h.execution_count, reverse=True)

    result = coverage.CoverageFindings(
        overview=overview,
        severity=severity,
        recommendations=_recommendations(overview, heavy, thresholds),
        hot_paths=all_hot[: thresholds.hot_path_limit],
        js_files=[f for f in findings if f.resource_type == "js"],
        css_files=[f for f in findings if f.resource_type == "css"],
        complete=classification.complete,
    )
    log.debug("Coverage summarized", {
        "severity": severity,
        "wastePercent": waste,
        "fileFindings": len(findings),
        "hotPaths": len(result.hot_paths),
    })
    return result


# ============================================================================
# Markdown
# ============================================================================


def _render_file(finding: coverage.FileFinding) -> str:
    minified = " (minified)" if finding.is_minified else ""
    b = finding.bytes
    if b.total > 0:
        size = (
            f" ({_compact_bytes(b.total)}): {b.unused_percent}% unused ({_compact_bytes(b.unused)}), "
            f"{b.pre_lcp_percent}% pre-LCP ({_compact_bytes(b.pre_lcp)}), "
            f"{b.post_lcp_percent}% post-LCP ({_compact_bytes(b.post_lcp)})"
        )
    else:
        post_percent = coverage.percentage(finding.post_paint, finding.units)
        size = f": {post_percent}% post LCP / {finding.unused_percent}% unused"

    lines = [f"- `{finding.path}`{minified}{size}"]
    if finding.suggest_code_splitting:
        lines[0] += " (consider code splitting to defer post-LCP code)"

    for label, bucket in (("Defer", finding.defer), ("Remove", finding.remove)):
        if bucket.names:
            more = f" +{bucket.more} more" if bucket.more else ""
            lines.append(f"    - {label}: {', '.join(bucket.names)}{more}")

    if finding.hot_paths:
        hot = ", ".join(f"{hp.name} ({hp.execution_count}x)" for hp in finding.hot_paths)
        lines.append(f"    - Hot paths (high execution): {hot}")
    return "\n".join(lines)


def render_markdown(findings: coverage.CoverageFindings) -> str:
    """Render *findings* as markdown for human or LLM consumption."""
    overview = findings.overview
    if overview.total_files == 0:
        return "No coverage data available for analysis.\n"

    parts: list[str] = []
    if overview.bytes is not None:
        b = overview.bytes
        parts.append(
            f"**Total Code Size**: {_compact_bytes(b.total)} ({_compact_bytes(b.unused)} unused, "
            f"{_compact_bytes(b.pre_lcp)} pre-LCP, {_compact_bytes(b.post_lcp)} post-LCP)\n"
        )

    if findings.recommendations:
        parts.append("".join(f"{rec}\n" for rec in findings.recommendations))
    else:
        parts.append("**Good**: Code coverage is well optimized\n")

    if findings.js_files:
        body = "\n".join(_render_file(f) for f in findings.js_files)
        parts.append(f"\n### JavaScript Optimization Opportunities:\n\n{body}\n")
    if findings.css_files:
        body = "\n".join(_render_file(f) for f in findings.css_files)
        parts.append(f"\n### CSS Optimization Opportunities:\n\n{body}\n")

    if not findings.complete:
        parts.append("\n_Coverage is incomplete: some resources could not be analyzed._\n")
    return "".join(parts)
