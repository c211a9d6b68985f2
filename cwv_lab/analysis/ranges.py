"""
Coverage range merging.

Reconciles the pre-paint and full coverage snapshots of a page load
into one view per resource. CSS ranges are unioned into a sorted,
non-overlapping list; JS functions are matched by name and the line
of their first range, and their range counts are summed.

Malformed entries never raise: an entry that fails validation is
skipped and reported back to the caller.
"""

from __future__ import annotations

from collections.abc import Iterable

import pydantic

from cwv_lab.analysis import offsets
from cwv_lab.models import coverage
from cwv_lab.utils import logger

log = logger.create_logger("Range-Merger")


# ============================================================================
# Range lists
# ============================================================================


def normalize_ranges(ranges: Iterable[coverage.CoverageRange]) -> list[coverage.CoverageRange]:
    """Sort and coalesce *ranges* into a non-overlapping list.

    Ranges with ``end <= start`` are dropped.  Overlapping ranges
    (``next.start < current.end``) coalesce and their counts are
    summed; touching ranges stay separate.
    """
    valid = sorted(
        (r for r in ranges if r.end > r.start),
        key=lambda r: (r.start, r.end),
    )
    if not valid:
        return []

    merged: list[coverage.CoverageRange] = []
    start, end, count = valid[0].start, valid[0].end, valid[0].count
    for r in valid[1:]:
        if r.start < end:
            end = max(end, r.end)
            count += r.count
            continue
        merged.append(coverage.CoverageRange(start=start, end=end, count=count))
        start, end, count = r.start, r.end, r.count
    merged.append(coverage.CoverageRange(start=start, end=end, count=count))
    return merged


def merge_ranges(
    first: Iterable[coverage.CoverageRange],
    second: Iterable[coverage.CoverageRange],
) -> list[coverage.CoverageRange]:
    """Union two range lists for the same resource."""
    return normalize_ranges([*first, *second])


def executed_ranges(ranges: Iterable[coverage.CoverageRange]) -> list[coverage.CoverageRange]:
    """Normalized ranges built only from ranges with ``count > 0``."""
    return normalize_ranges(r for r in ranges if r.executed)


def covered_bytes(ranges: Iterable[coverage.CoverageRange]) -> int:
    """Number of distinct bytes covered by *ranges*."""
    return sum(r.size for r in normalize_ranges(ranges))


# ============================================================================
# JS functions
# ============================================================================


def function_key(func: coverage.FunctionCoverage, index: offsets.LineIndex) -> str:
    """Return ``functionName:L<line>`` for *func*."""
    return f"{func.function_name}:L{index.line_of(func.start_offset)}"


def _sum_pairwise(
    first: list[coverage.CoverageRange],
    second: list[coverage.CoverageRange],
) -> list[coverage.CoverageRange]:
    """Sum counts index by index; the tail of the longer list carries through.

    Ranges at the same index whose spans differ are both kept.
    """
    result: list[coverage.CoverageRange] = []
    for i in range(max(len(first), len(second))):
        a = first[i] if i < len(first) else None
        b = second[i] if i < len(second) else None
        if a is not None and b is not None:
            if (a.start, a.end) == (b.start, b.end):
                result.append(coverage.CoverageRange(start=a.start, end=a.end, count=a.count + b.count))
            else:
                result.extend((a, b))
        else:
            result.append(a if a is not None else b)  # type: ignore[arg-type]
    return result


def merge_function_coverage(
    first: Iterable[coverage.FunctionCoverage],
    second: Iterable[coverage.FunctionCoverage],
    source_text: str,
) -> list[coverage.FunctionCoverage]:
    """Merge two function lists of the same script.

    Functions are keyed by name plus the line of their first range
    in *source_text*.  Functions without ranges are dropped.
    """
    index = offsets.LineIndex(source_text)
    merged: dict[str, coverage.FunctionCoverage] = {}

    for func in [*first, *second]:
        ranges = [r for r in func.ranges if r.end > r.start]
        if not ranges:
            continue
        func = func.model_copy(update={"ranges": ranges})
        key = function_key(func, index)
        existing = merged.get(key)
        if existing is None:
            merged[key] = func
            continue
        merged[key] = existing.model_copy(update={
            "ranges": _sum_pairwise(existing.ranges, func.ranges),
            "is_block_coverage": existing.is_block_coverage or func.is_block_coverage,
        })

    return list(merged.values())


# ============================================================================
# Snapshot entries
# ============================================================================


def _to_str_offsets(entry: coverage.CoverageEntry) -> coverage.CoverageEntry:
    """Rewrite the UTF-16 offsets of a raw entry as indexes into its text."""
    index = offsets.Utf16Index(entry.text)
    if not index.has_astral:
        return entry

    def convert(items: list[coverage.CoverageRange]) -> list[coverage.CoverageRange]:
        return [
            r.model_copy(update={"start": index.to_index(r.start), "end": index.to_index(r.end)})
            for r in items
        ]

    update: dict[str, object] = {}
    if entry.ranges is not None:
        update["ranges"] = convert(entry.ranges)
    if entry.raw_script_coverage is not None:
        update["raw_script_coverage"] = entry.raw_script_coverage.model_copy(update={
            "functions": [
                f.model_copy(update={"ranges": convert(f.ranges)})
                for f in entry.raw_script_coverage.functions
            ],
        })
    return entry.model_copy(update=update)


def parse_entries(raw_entries: Iterable[object]) -> tuple[list[coverage.CoverageEntry], int]:
    """Validate raw snapshot entries, skipping the malformed ones.

    Browser offsets count UTF-16 code units; raw entries are
    converted to ``str`` indexes here.  Entries that are already
    :class:`CoverageEntry` instances are taken as converted.

    Returns:
        The parsed entries and the number of entries skipped.
    """
    entries: list[coverage.CoverageEntry] = []
    skipped = 0
    for raw in raw_entries:
        if isinstance(raw, coverage.CoverageEntry):
            entries.append(raw)
            continue
        try:
            entries.append(_to_str_offsets(coverage.CoverageEntry.model_validate(raw)))
        except pydantic.ValidationError as exc:
            skipped += 1
            url = raw.get("url") if isinstance(raw, dict) else None
            log.warn("Skipping malformed coverage entry", {"url": url, "errors": exc.error_count()})
    return entries, skipped


def merge_entry_pair(
    first: coverage.CoverageEntry,
    second: coverage.CoverageEntry,
) -> coverage.CoverageEntry:
    """Merge two entries for the same resource.

    A side without coverage data counts as empty.  The second
    entry's text wins when present since the full snapshot holds
    the superset of source.
    """
    text = second.text or first.text
    url = second.url or first.url

    if not first.has_coverage:
        return second.model_copy(update={"text": text, "url": url})
    if not second.has_coverage:
        return first.model_copy(update={"text": text, "url": url})

    if first.raw_script_coverage is not None or second.raw_script_coverage is not None:
        a = first.raw_script_coverage or coverage.ScriptCoverage()
        b = second.raw_script_coverage or coverage.ScriptCoverage()
        script = coverage.ScriptCoverage(
            script_id=b.script_id or a.script_id,
            url=b.url or a.url,
            functions=merge_function_coverage(a.functions, b.functions, text),
        )
        return coverage.CoverageEntry(url=url, text=text, raw_script_coverage=script)

    return coverage.CoverageEntry(
        url=url,
        text=text,
        ranges=merge_ranges(first.ranges or [], second.ranges or []),
    )


def index_entries(entries: Iterable[coverage.CoverageEntry]) -> dict[str, coverage.CoverageEntry]:
    """Key entries by resource id, folding duplicates of one resource."""
    indexed: dict[str, coverage.CoverageEntry] = {}
    for entry in entries:
        rid = entry.resource_id
        existing = indexed.get(rid)
        indexed[rid] = entry if existing is None else merge_entry_pair(existing, entry)
    return indexed


def merge_entries(
    pre_entries: Iterable[object],
    full_entries: Iterable[object],
) -> dict[str, coverage.CoverageEntry]:
    """Merge the pre-paint and full snapshots per resource.

    A resource present in only one snapshot is carried forward
    unchanged.  Execution counts are additive: merging a result with
    itself keeps its spans but doubles its counts.
    """
    pre, pre_skipped = parse_entries(pre_entries)
    full, full_skipped = parse_entries(full_entries)

    pre_index = index_entries(pre)
    full_index = index_entries(full)

    merged: dict[str, coverage.CoverageEntry] = {}
    for rid in [*pre_index, *(r for r in full_index if r not in pre_index)]:
        a = pre_index.get(rid)
        b = full_index.get(rid)
        if a is not None and b is not None:
            merged[rid] = merge_entry_pair(a, b)
        else:
            merged[rid] = a if a is not None else b  # type: ignore[assignment]

    log.debug("Merged coverage snapshots", {
        "resources": len(merged),
        "preOnly": sum(1 for r in pre_index if r not in full_index),
        "fullOnly": sum(1 for r in full_index if r not in pre_index),
        "skipped": pre_skipped + full_skipped,
    })
    return merged
