"""
Per-run state and collector dispatch for the lab pipeline.
"""

from __future__ import annotations

import dataclasses
import enum
from typing import Any

from cwv_lab import config
from cwv_lab.browser import controller
from cwv_lab.models import report
from cwv_lab.utils import errors, logger

log = logger.create_logger("Lab")


class CollectorKind(enum.Enum):
    """Raw data a page controller can be asked for."""

    COVERAGE = "coverage"
    HAR = "har"
    PERFORMANCE = "performance"


async def collect(page: controller.PageController, kind: CollectorKind) -> Any:
    """Invoke the controller collector matching *kind*."""
    match kind:
        case CollectorKind.COVERAGE:
            return await page.collect_raw_coverage()
        case CollectorKind.HAR:
            return await page.collect_raw_har()
        case CollectorKind.PERFORMANCE:
            return await page.collect_raw_performance_entries()


@dataclasses.dataclass
class AnalysisContext:
    """State threaded through one lab run.

    ``steps`` counts the pipeline steps taken so far; it lives here
    rather than at module level so concurrent runs never share it.
    """

    url: str
    settings: config.LabSettings
    steps: int = 0
    issues: list[report.AnalysisIssue] = dataclasses.field(default_factory=list)

    def next_step(self, label: str) -> int:
        self.steps += 1
        log.info(f"Step {self.steps}: {label}")
        return self.steps

    def record_issue(
        self,
        stage: report.AnalysisStage,
        error: BaseException | str,
        resource: str | None = None,
    ) -> None:
        """Record an isolated failure and log it."""
        message = error if isinstance(error, str) else errors.get_error_message(error)
        self.issues.append(report.AnalysisIssue(stage=stage, message=message, resource=resource))
        log.warn("Stage failed", {"stage": stage, "error": message})
