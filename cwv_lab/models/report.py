"""Top-level lab report model and isolated-failure records."""

from __future__ import annotations

from typing import Literal

import pydantic

from cwv_lab.models import coverage as coverage_models
from cwv_lab.models import layout
from cwv_lab.models import third_party as third_party_models
from cwv_lab.utils import serialization

AnalysisStage = Literal["collection", "coverage", "layout-shift", "third-party", "render"]


class AnalysisIssue(pydantic.BaseModel):
    """One failure that was isolated instead of aborting the run."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    stage: AnalysisStage
    message: str
    resource: str | None = None


class LabReport(pydantic.BaseModel):
    """Structured output of one lab run.

    Each attribution stage carries its own completeness flag so a
    consumer can tell a genuinely clean page from a partial result.
    """

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    url: str
    coverage: coverage_models.CoverageClassification | None = None
    coverage_findings: coverage_models.CoverageFindings | None = None
    layout_shifts: list[layout.EnhancedShift] = pydantic.Field(default_factory=list)
    layout_shift_summary: layout.AttributionSummary | None = None
    third_party: third_party_models.ThirdPartyAnalysis | None = None
    markdown: dict[str, str] = pydantic.Field(default_factory=dict)
    coverage_complete: bool = True
    layout_shifts_complete: bool = True
    third_party_complete: bool = True
    issues: list[AnalysisIssue] = pydantic.Field(default_factory=list)
    steps: int = 0

    @property
    def complete(self) -> bool:
        return self.coverage_complete and self.layout_shifts_complete and self.third_party_complete
