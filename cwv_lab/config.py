"""
Lab configuration and attribution thresholds.

Centralises every tunable threshold used by the coverage,
layout-shift and third-party attributors, plus the browser
settings used by the Playwright page controller.

Uses ``pydantic_settings.BaseSettings`` for environment variable
binding (prefix ``CWV_LAB_``, nested groups separated by ``__``,
e.g. ``CWV_LAB_LAYOUT_SHIFT__STYLESHEET_TIMEOUT_S=2``).  A ``.env``
file in the working directory is loaded first via ``python-dotenv``.
"""

from __future__ import annotations

import functools

import dotenv
import pydantic
import pydantic_settings

from cwv_lab.utils import logger

log = logger.create_logger("Config")


class CoverageThresholds(pydantic.BaseModel):
    """Thresholds for coverage findings.

    Attributes:
        hot_path_executions: Functions executed more often than
            this are reported as hot paths.
        hot_path_limit: Maximum hot paths reported per file.
        critical_unused_percent: Overall unused share above which
            the waste finding is critical.
        warning_unused_percent: Overall unused share above which
            the waste finding asks for optimisation.
        heavy_unused_percent: Per-file unused share that triggers
            a per-file breakdown.
        min_pre_paint_percent: Pre-paint share below which the
            report recommends deferring non-critical code.
        display_limit: Unit names listed per bucket before the
            ``+N more`` overflow counter.
    """

    hot_path_executions: int = 10
    hot_path_limit: int = 5
    critical_unused_percent: int = 30
    warning_unused_percent: int = 15
    heavy_unused_percent: int = 50
    min_pre_paint_percent: int = 40
    display_limit: int = 10


class ShiftThresholds(pydantic.BaseModel):
    """Pixel thresholds for layout-shift cause classification.

    Branches are evaluated in a fixed order and the first match
    wins, so changing a value never reorders the heuristics.
    """

    font_swap_min_height: float = 5
    font_swap_max_width: float = 2
    insertion_min_top: float = 10
    insertion_max_height: float = 5
    resize_min: float = 10
    animation_min_left: float = 5
    animation_min_top: float = 5
    animation_max_top: float = 10
    stylesheet_timeout_s: float = 1.0
    top_issues: int = 5


class ThirdPartyThresholds(pydantic.BaseModel):
    """Settings for third-party attribution and its report."""

    long_task_ms: float = 50
    max_initiator_depth: int = 10
    top_categories: int = 8
    top_scripts: int = 5


class BrowserSettings(pydantic.BaseModel):
    """Settings for the Playwright page controller."""

    headless: bool = True
    navigation_timeout_ms: int = 45_000
    lcp_timeout_ms: int = 15_000
    network_idle_timeout_ms: int = 30_000
    viewport_width: int = 1350
    viewport_height: int = 940


class LabSettings(pydantic_settings.BaseSettings):
    """Top-level lab configuration."""

    model_config = pydantic_settings.SettingsConfigDict(
        env_prefix="CWV_LAB_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = "debug"
    write_log_file: bool = False
    coverage: CoverageThresholds = pydantic.Field(default_factory=CoverageThresholds)
    layout_shift: ShiftThresholds = pydantic.Field(default_factory=ShiftThresholds)
    third_party: ThirdPartyThresholds = pydantic.Field(default_factory=ThirdPartyThresholds)
    browser: BrowserSettings = pydantic.Field(default_factory=BrowserSettings)


@functools.cache
def get_settings() -> LabSettings:
    """Return the process-wide settings, loading ``.env`` on first use."""
    dotenv.load_dotenv()
    settings = LabSettings()
    log.debug("Settings loaded", {
        "logLevel": settings.log_level,
        "stylesheetTimeoutS": settings.layout_shift.stylesheet_timeout_s,
        "longTaskMs": settings.third_party.long_task_ms,
        "headless": settings.browser.headless,
    })
    return settings
