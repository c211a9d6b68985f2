"""
Third-party script attribution.

Categorises every cross-origin script in a HAR by ordered domain/URL
rules, joins it with long-task attribution to estimate execution and
blocking time, follows its initiator chain, and rolls the results up
per category together with the category's loading policy.
"""

from __future__ import annotations

import collections
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone

import pydantic

from cwv_lab import config
from cwv_lab.analysis import coverage_report, third_party_policy
from cwv_lab.data import loader
from cwv_lab.models import performance, third_party
from cwv_lab.utils import logger, url as url_mod

log = logger.create_logger("Third-Party")

_JS_MIME_MARKERS = ("javascript", "ecmascript")


# ============================================================================
# Categorisation
# ============================================================================


def _condition_matches(condition: third_party.RuleCondition, url: str, domain: str) -> bool:
    if condition.domain is None and condition.url is None:
        return False
    if condition.domain is not None and condition.domain not in domain:
        return False
    return condition.url is None or condition.url in url


def categorize(url: str, domain: str) -> third_party.ThirdPartyCategory:
    """Return the first category whose rule matches, else ``other``.

    Matching is case-insensitive substring matching on the script
    URL and its domain.
    """
    lower_url = url.lower()
    lower_domain = domain.lower()
    for rule in loader.get_category_rules():
        if any(excluded in lower_domain for excluded in rule.exclude_domains):
            continue
        if any(_condition_matches(c, lower_url, lower_domain) for c in rule.conditions):
            return rule.category
    return "other"


# ============================================================================
# HAR helpers
# ============================================================================


def _entry_list(har: object) -> list[object]:
    """Accept a full HAR document, its ``log`` object or a bare entry list."""
    if isinstance(har, Mapping):
        log_obj = har.get("log", har)
        entries = log_obj.get("entries") if isinstance(log_obj, Mapping) else None
        return list(entries or [])
    if isinstance(har, Iterable) and not isinstance(har, (str, bytes)):
        return list(har)
    return []


def _parse_entries(har: object) -> tuple[list[third_party.HarEntry], int]:
    entries: list[third_party.HarEntry] = []
    skipped = 0
    for raw in _entry_list(har):
        if isinstance(raw, third_party.HarEntry):
            entries.append(raw)
            continue
        try:
            entries.append(third_party.HarEntry.model_validate(raw))
        except pydantic.ValidationError:
            skipped += 1
    if skipped:
        log.warn("Skipped malformed HAR entries", {"skipped": skipped})
    return entries, skipped


def is_script_entry(entry: third_party.HarEntry) -> bool:
    """True for script requests; the MIME type decides when no type is recorded."""
    if entry.resource_type:
        return entry.resource_type.lower() == "script"
    mime = entry.response.content.mime_type.lower()
    return any(marker in mime for marker in _JS_MIME_MARKERS)


def is_third_party(resource_url: str, page_url: str) -> bool:
    """True for http(s) URLs whose origin differs from the page's."""
    return url_mod.get_origin(resource_url) is not None and not url_mod.is_same_origin(resource_url, page_url)


def network_timing(entry: third_party.HarEntry) -> third_party.NetworkTiming:
    t = entry.timings
    phases = {
        "dns": max(0.0, t.dns),
        "connect": max(0.0, t.connect),
        "ssl": max(0.0, t.ssl),
        "wait": max(0.0, t.wait),
        "download": max(0.0, t.receive),
    }
    total = entry.time if entry.time > 0 else sum(phases.values())
    return third_party.NetworkTiming(**phases, total=total)


def transfer_size(entry: third_party.HarEntry) -> int:
    if entry.response.transfer_size is not None and entry.response.transfer_size >= 0:
        return entry.response.transfer_size
    return max(0, entry.response.body_size)


def is_render_blocking(entry: third_party.HarEntry) -> bool:
    initiator_type = entry.initiator.type if entry.initiator else None
    return entry.priority == "VeryHigh" or initiator_type == "parser"


def _start_offsets(entries: list[third_party.HarEntry]) -> dict[int, float]:
    """Start time of each entry in ms relative to the earliest entry."""
    offsets: dict[int, float] = {}
    stamps: dict[int, datetime] = {}
    for i, entry in enumerate(entries):
        if entry.start_offset_ms is not None:
            offsets[i] = entry.start_offset_ms
        elif entry.started_date_time:
            try:
                stamp = datetime.fromisoformat(entry.started_date_time)
            except ValueError:
                log.warn("Unparseable startedDateTime", {"url": entry.request.url})
                continue
            # HAR times without an offset are taken as UTC.
            stamps[i] = stamp if stamp.tzinfo else stamp.replace(tzinfo=timezone.utc)
    if stamps:
        origin = min(stamps.values())
        for i, stamp in stamps.items():
            offsets[i] = (stamp - origin).total_seconds() * 1000
    return offsets


# ============================================================================
# Execution and initiators
# ============================================================================


def find_long_tasks(
    script_url: str,
    domain: str,
    perf: performance.PerformanceEntries,
    long_task_ms: float = 50,
) -> list[third_party.LongTaskHit]:
    """Long tasks whose attribution container references the script."""
    return [
        third_party.LongTaskHit(
            start_time=task.start_time,
            duration=task.duration,
            blocking_duration=task.blocking_duration(long_task_ms),
        )
        for task in perf.long_tasks
        if task.attributed_to(script_url, domain)
    ]


def _execution(hits: list[third_party.LongTaskHit]) -> third_party.ScriptExecution | None:
    if not hits:
        return None
    return third_party.ScriptExecution(
        duration=sum(h.duration for h in hits),
        blocking_duration=sum(h.blocking_duration for h in hits),
        start_time=min(h.start_time for h in hits),
        task_count=len(hits),
    )


def initiator_chain(
    entry: third_party.HarEntry,
    by_url: Mapping[str, third_party.HarEntry],
    max_depth: int = 10,
) -> list[str]:
    """Follow ``_initiator.url`` links upward, stopping at cycles or *max_depth*."""
    chain: list[str] = []
    seen = {entry.request.url}
    current = entry.initiator.url if entry.initiator else None
    while current and current not in seen and len(chain) < max_depth:
        chain.append(current)
        seen.add(current)
        parent = by_url.get(current)
        current = parent.initiator.url if parent and parent.initiator else None
    return chain


def _loaded_via(chain: list[str], page_url: str) -> third_party.ThirdPartyCategory | None:
    for link in chain:
        if is_third_party(link, page_url):
            return categorize(link, url_mod.extract_domain(link))
    return None


# ============================================================================
# Analysis
# ============================================================================


def _build_script(
    entry: third_party.HarEntry,
    page_url: str,
    perf: performance.PerformanceEntries,
    by_url: Mapping[str, third_party.HarEntry],
    start_time: float | None,
    thresholds: config.ThirdPartyThresholds,
) -> third_party.ThirdPartyScript:
    url = entry.request.url
    domain = url_mod.extract_domain(url)
    hits = find_long_tasks(url, domain, perf, thresholds.long_task_ms)
    chain = initiator_chain(entry, by_url, thresholds.max_initiator_depth)
    initiator = entry.initiator or third_party.HarInitiator()

    return third_party.ThirdPartyScript(
        url=url,
        domain=domain,
        category=categorize(url, domain),
        network=network_timing(entry),
        transfer_size=transfer_size(entry),
        uncompressed_size=max(0, entry.response.content.size),
        execution=_execution(hits),
        long_tasks=hits,
        initiator=third_party.InitiatorInfo(
            url=initiator.url,
            type=initiator.type,
            line_number=initiator.line_number,
            chain=chain,
            loaded_via=_loaded_via(chain, page_url),
        ),
        is_render_blocking=is_render_blocking(entry),
        start_time=start_time,
    )


def _category_impact(
    category: third_party.ThirdPartyCategory,
    scripts: list[third_party.ThirdPartyScript],
    lcp_time: float | None,
    markers: list[str],
) -> third_party.CategoryImpact:
    render_blocking = any(s.is_render_blocking for s in scripts)
    starts_before_lcp = lcp_time is not None and any(
        s.start_time is not None and s.start_time < lcp_time for s in scripts
    )
    policy = third_party_policy.get_policy(category)
    decision = third_party_policy.resolve_preconnect(
        category,
        third_party.PreconnectSignals(
            render_blocking=render_blocking,
            starts_before_lcp=starts_before_lcp,
            personalization_markers=tuple(markers),
        ),
    )
    return third_party.CategoryImpact(
        category=category,
        script_count=len(scripts),
        total_transfer_size=sum(s.transfer_size for s in scripts),
        total_network_time=sum(s.network.total for s in scripts),
        total_execution_time=sum(s.execution.duration if s.execution else 0 for s in scripts),
        total_blocking_time=sum(s.blocking_time for s in scripts),
        is_render_blocking=render_blocking,
        lcp_critical=third_party_policy.is_lcp_critical_capable(category),
        preconnect=policy.preconnect,
        policy=policy,
        decision=decision,
    )


def analyze(
    har: object,
    perf_entries: object,
    page_url: str,
    html: str | None = None,
    thresholds: config.ThirdPartyThresholds | None = None,
) -> third_party.ThirdPartyAnalysis:
    """Attribute every cross-origin script request of a page load.

    Args:
        har: HAR document, its ``log`` object or a list of entries.
        perf_entries: Raw Performance Observer entries (any shape
            accepted by :meth:`PerformanceEntries.from_raw`).
        page_url: URL of the analysed page; defines "third party".
        html: Page HTML, scanned for personalisation markers.
        thresholds: Overrides for the configured thresholds.
    """
    t = thresholds or config.get_settings().third_party
    entries, skipped = _parse_entries(har)
    perf = performance.PerformanceEntries.from_raw(perf_entries)
    markers = third_party_policy.detect_personalization_markers(html)

    by_url: dict[str, third_party.HarEntry] = {}
    for entry in entries:
        by_url.setdefault(entry.request.url, entry)
    starts = _start_offsets(entries)

    scripts = [
        _build_script(entry, page_url, perf, by_url, starts.get(i), t)
        for i, entry in enumerate(entries)
        if is_script_entry(entry) and is_third_party(entry.request.url, page_url)
    ]

    by_category: dict[str, list[third_party.ThirdPartyScript]] = collections.defaultdict(list)
    for script in scripts:
        by_category[script.category].append(script)

    impact = [
        _category_impact(category, group, perf.lcp_time, markers)  # type: ignore[arg-type]
        for category, group in by_category.items()
    ]
    impact.sort(key=lambda c: c.total_execution_time, reverse=True)

    analysis = third_party.ThirdPartyAnalysis(
        scripts=scripts,
        by_category=dict(by_category),
        category_impact=impact,
        summary=third_party.ThirdPartySummary(
            total_scripts=len(scripts),
            total_transfer_size=sum(s.transfer_size for s in scripts),
            total_network_time=sum(s.network.total for s in scripts),
            total_execution_time=sum(s.execution.duration if s.execution else 0 for s in scripts),
            total_blocking_time=sum(s.blocking_time for s in scripts),
            render_blocking_count=sum(1 for s in scripts if s.is_render_blocking),
        ),
        personalization_markers=markers,
        skipped_entries=skipped,
    )
    log.info("Third-party scripts attributed", {
        "scripts": len(scripts),
        "categories": len(impact),
        "markers": markers,
    })
    return analysis


# ============================================================================
# Markdown
# ============================================================================


def _ms(value: float) -> str:
    return f"{round(value)}ms"


def _truncate(text: str, limit: int = 100) -> str:
    return text if len(text) <= limit else text[: limit - 3] + "..."


def render_markdown(
    analysis: third_party.ThirdPartyAnalysis,
    thresholds: config.ThirdPartyThresholds | None = None,
) -> str:
    """Render a third-party analysis for human or LLM consumption."""
    t = thresholds or config.get_settings().third_party
    s = analysis.summary
    lines = [
        "**Third-Party Script Analysis:**",
        "",
        f"* **Total Scripts**: {s.total_scripts}",
        f"* **Total Transfer Size**: {coverage_report.format_bytes(s.total_transfer_size)}",
        f"* **Total Network Time**: {_ms(s.total_network_time)}",
        f"* **Total Execution Time**: {_ms(s.total_execution_time)}",
        f"* **Total Blocking Time**: {_ms(s.total_blocking_time)}",
        f"* **Render-Blocking Scripts**: {s.render_blocking_count}",
    ]
    if analysis.personalization_markers:
        lines.append(f"* **Personalization Markers**: {', '.join(analysis.personalization_markers)}")

    if analysis.category_impact:
        lines += ["", "**By Category (sorted by execution time):**"]
        for idx, cat in enumerate(analysis.category_impact[: t.top_categories], start=1):
            plural = "s" if cat.script_count > 1 else ""
            if cat.decision.recommend is None:
                hint = "preconnect: undecided"
            else:
                hint = "preconnect" if cat.decision.recommend else "no preconnect"
            lines.append(
                f"  {idx}. **{cat.category}**: {cat.script_count} script{plural}, "
                f"{coverage_report.format_bytes(cat.total_transfer_size)}, "
                f"{_ms(cat.total_execution_time)} execution, {_ms(cat.total_network_time)} network"
                f" ({cat.policy.action}; {hint})"
            )

    top = sorted(
        (sc for sc in analysis.scripts if sc.execution and sc.execution.duration > 0),
        key=lambda sc: sc.execution.duration if sc.execution else 0,
        reverse=True,
    )[: t.top_scripts]
    if top:
        lines += ["", "**Top Scripts by Execution Time:**"]
        for idx, sc in enumerate(top, start=1):
            execution = sc.execution
            if execution is None:
                continue
            blocking = " [RENDER-BLOCKING]" if sc.is_render_blocking else ""
            lines.append(f"  {idx}. **{sc.domain}** ({sc.category})")
            lines.append(f"     - URL: {_truncate(sc.url)}")
            lines.append(f"     - Execution: {_ms(execution.duration)}{blocking}")
            lines.append(
                f"     - Long Tasks: {execution.task_count} ({_ms(execution.blocking_duration)} blocking)"
            )
            if sc.initiator.loaded_via:
                lines.append(f"     - Loaded via: {sc.initiator.loaded_via}")
    return "\n".join(lines) + "\n"
