"""Pydantic models for coverage snapshots, classifications and findings.

Raw snapshots arrive in the collector's camelCase shape: JS entries
carry ``rawScriptCoverage.functions[].ranges[].{startOffset,
endOffset, count}``, CSS entries carry ``ranges[].{start, end}``.
Both range spellings validate into :class:`CoverageRange`.
"""

from __future__ import annotations

import math
from typing import Literal

import pydantic

from cwv_lab.utils import serialization, url as url_mod

UsageCategory = Literal["pre-paint", "post-paint", "unused"]
ResourceType = Literal["js", "css"]
Severity = Literal["critical", "optimize", "good"]


def percentage(part: float, total: float) -> int:
    """Return ``round(part / total * 100)`` with halves rounded up.

    A zero (or negative) total reports 0 rather than dividing.
    """
    if total <= 0:
        return 0
    return int(math.floor(part / total * 100 + 0.5))


# ── Raw snapshot input ──────────────────────────────────────────


class CoverageRange(pydantic.BaseModel):
    """A byte interval annotated with an execution count.

    CSS coverage from the browser lists only used ranges and
    carries no count, so ``count`` defaults to 1.
    """

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    start: int = pydantic.Field(validation_alias=pydantic.AliasChoices("start", "startOffset"))
    end: int = pydantic.Field(validation_alias=pydantic.AliasChoices("end", "endOffset"))
    count: int = 1

    @property
    def size(self) -> int:
        return max(0, self.end - self.start)

    @property
    def executed(self) -> bool:
        return self.count > 0


class FunctionCoverage(pydantic.BaseModel):
    """Coverage for one V8 function."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    function_name: str = ""
    ranges: list[CoverageRange] = pydantic.Field(default_factory=list)
    is_block_coverage: bool = False

    @property
    def start_offset(self) -> int:
        return self.ranges[0].start if self.ranges else 0

    @property
    def executed(self) -> bool:
        return any(r.executed for r in self.ranges)

    @property
    def execution_count(self) -> int:
        return max((r.count for r in self.ranges), default=0)


class ScriptCoverage(pydantic.BaseModel):
    """The ``rawScriptCoverage`` block of a JS coverage entry."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, extra="ignore"
    )

    script_id: str | None = None
    url: str | None = None
    functions: list[FunctionCoverage] = pydantic.Field(default_factory=list)


class CoverageEntry(pydantic.BaseModel):
    """One resource in a coverage snapshot.

    ``ranges`` and ``raw_script_coverage`` are ``None`` when the
    collector did not report them, which is distinct from an
    empty list of ranges.
    """

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, extra="ignore"
    )

    url: str = ""
    text: str = ""
    ranges: list[CoverageRange] | None = None
    raw_script_coverage: ScriptCoverage | None = None

    @property
    def resource_id(self) -> str:
        return url_mod.resource_id(self.url, self.text)

    @property
    def resource_type(self) -> ResourceType:
        return "js" if self.raw_script_coverage is not None else "css"

    @property
    def has_coverage(self) -> bool:
        return self.ranges is not None or self.raw_script_coverage is not None


# ── Classification output ───────────────────────────────────────


class UnitClassification(pydantic.BaseModel):
    """Usage verdict for one function or CSS rule."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, frozen=True
    )

    usage: UsageCategory
    execution_count: int = 0


class ByteStats(pydantic.BaseModel):
    """File-level byte aggregates with rounded percentages."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    total: int = 0
    used: int = 0
    pre_lcp: int = 0
    post_lcp: int = 0

    @pydantic.computed_field  # type: ignore[prop-decorator]
    @property
    def unused(self) -> int:
        return max(0, self.total - self.used)

    @pydantic.computed_field  # type: ignore[prop-decorator]
    @property
    def unused_percent(self) -> int:
        return percentage(self.unused, self.total)

    @pydantic.computed_field  # type: ignore[prop-decorator]
    @property
    def pre_lcp_percent(self) -> int:
        return percentage(self.pre_lcp, self.total)

    @pydantic.computed_field  # type: ignore[prop-decorator]
    @property
    def post_lcp_percent(self) -> int:
        return percentage(self.post_lcp, self.total)

    def __add__(self, other: ByteStats) -> ByteStats:
        return ByteStats(
            total=self.total + other.total,
            used=self.used + other.used,
            pre_lcp=self.pre_lcp + other.pre_lcp,
            post_lcp=self.post_lcp + other.post_lcp,
        )


class FileClassification(pydantic.BaseModel):
    """All unit verdicts and byte totals for one resource."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    resource_id: str
    url: str = ""
    resource_type: ResourceType
    loaded_pre_paint: bool
    units: dict[str, UnitClassification] = pydantic.Field(default_factory=dict)
    bytes: ByteStats = pydantic.Field(default_factory=ByteStats)

    def count(self, usage: UsageCategory) -> int:
        """Number of units classified as *usage*."""
        return sum(1 for u in self.units.values() if u.usage == usage)

    def unit_names(self, usage: UsageCategory) -> list[str]:
        """Display names (key without the ``:L<line>`` suffix) of *usage* units."""
        return [display_name(key) for key, u in self.units.items() if u.usage == usage]


class CoverageClassification(pydantic.BaseModel):
    """Result of one classification pass over two snapshots.

    ``complete`` is false when at least one resource had to be
    skipped; ``skipped`` lists those resources.
    """

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    files: dict[str, FileClassification] = pydantic.Field(default_factory=dict)
    complete: bool = True
    skipped: list[str] = pydantic.Field(default_factory=list)


# ── Reporter output ─────────────────────────────────────────────


class HotPath(pydantic.BaseModel):
    """A frequently executed function."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    name: str
    execution_count: int
    file: str = ""


class UnitBreakdown(pydantic.BaseModel):
    """Representative unit names for one usage bucket plus overflow."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    names: list[str] = pydantic.Field(default_factory=list)
    more: int = 0


class FileFinding(pydantic.BaseModel):
    """Per-file breakdown emitted for wasteful or late-loading files."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    resource_id: str
    path: str
    resource_type: ResourceType
    is_minified: bool = False
    units: int = 0
    pre_paint: int = 0
    post_paint: int = 0
    unused: int = 0
    unused_percent: int = 0
    bytes: ByteStats = pydantic.Field(default_factory=ByteStats)
    suggest_code_splitting: bool = False
    defer: UnitBreakdown = pydantic.Field(default_factory=UnitBreakdown)
    remove: UnitBreakdown = pydantic.Field(default_factory=UnitBreakdown)
    hot_paths: list[HotPath] = pydantic.Field(default_factory=list)


class CoverageOverview(pydantic.BaseModel):
    """Unit counts and byte totals across every classified file."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    total_files: int = 0
    total_units: int = 0
    pre_paint: int = 0
    post_paint: int = 0
    unused: int = 0
    pre_paint_percent: int = 0
    post_paint_percent: int = 0
    unused_percent: int = 0
    bytes: ByteStats | None = None

    @property
    def waste_percent(self) -> int:
        """Byte-level unused share when bytes are known, else unit-level."""
        if self.bytes is not None and self.bytes.total > 0:
            return self.bytes.unused_percent
        return self.unused_percent

    @property
    def pre_paint_share(self) -> int:
        if self.bytes is not None and self.bytes.total > 0:
            return self.bytes.pre_lcp_percent
        return self.pre_paint_percent


class CoverageFindings(pydantic.BaseModel):
    """Prioritised findings derived from a classification."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    overview: CoverageOverview = pydantic.Field(default_factory=CoverageOverview)
    severity: Severity = "good"
    recommendations: list[str] = pydantic.Field(default_factory=list)
    hot_paths: list[HotPath] = pydantic.Field(default_factory=list)
    js_files: list[FileFinding] = pydantic.Field(default_factory=list)
    css_files: list[FileFinding] = pydantic.Field(default_factory=list)
    complete: bool = True


def display_name(unit_key: str) -> str:
    """Strip the ``:L<line>`` suffix and newlines from a unit key."""
    name, sep, line = unit_key.rpartition(":L")
    if sep and line.isdigit():
        return name.replace("\n", " ")
    return unit_key.replace("\n", " ")
