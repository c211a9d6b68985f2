"""Pydantic models for HAR input and third-party script attribution.

HAR entries are validated straight from the collector's camelCase
shape, including the Chromium-specific ``_resourceType``,
``_initiator``, ``_priority`` and ``_transferSize`` extensions.
"""

from __future__ import annotations

from typing import Literal

import pydantic

from cwv_lab.utils import serialization

ThirdPartyCategory = Literal[
    "consent",
    "analytics",
    "advertising",
    "social",
    "tag-manager",
    "cdn",
    "payment",
    "support",
    "testing",
    "monitoring",
    "session-replay",
    "feature-flag",
    "marketing",
    "forms",
    "video",
    "other",
]

# Ordered exactly as the category rules are evaluated.
CATEGORY_ORDER: tuple[ThirdPartyCategory, ...] = (
    "consent",
    "analytics",
    "advertising",
    "social",
    "tag-manager",
    "cdn",
    "payment",
    "support",
    "testing",
    "monitoring",
    "session-replay",
    "feature-flag",
    "marketing",
    "forms",
    "video",
    "other",
)

# Categories that never hold the LCP element or its critical path.
NON_CRITICAL_CATEGORIES: frozenset[ThirdPartyCategory] = frozenset({
    "consent",
    "analytics",
    "advertising",
    "social",
    "support",
    "monitoring",
    "marketing",
})

# Categories that can gate rendering, given further evidence.
CONDITIONAL_CATEGORIES: frozenset[ThirdPartyCategory] = frozenset({
    "tag-manager",
    "testing",
    "session-replay",
    "feature-flag",
    "forms",
    "video",
})

PreconnectValue = bool | Literal["conditional", "unknown"]
PolicyPriority = Literal["high", "medium", "low"]


# ── HAR input ───────────────────────────────────────────────────


class HarRequest(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, extra="ignore"
    )

    url: str
    method: str = "GET"


class HarContent(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, extra="ignore"
    )

    mime_type: str = ""
    size: int = 0


class HarResponse(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, extra="ignore"
    )

    status: int = 0
    body_size: int = 0
    transfer_size: int | None = pydantic.Field(
        default=None, validation_alias=pydantic.AliasChoices("_transferSize", "transferSize")
    )
    content: HarContent = pydantic.Field(default_factory=HarContent)


class HarTimings(pydantic.BaseModel):
    """HAR timing phases in milliseconds; ``-1`` means not applicable."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, extra="ignore"
    )

    blocked: float = -1
    dns: float = -1
    connect: float = -1
    ssl: float = -1
    send: float = -1
    wait: float = -1
    receive: float = -1


class HarInitiator(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, extra="ignore"
    )

    type: str | None = None
    url: str | None = None
    line_number: int | None = None


class HarEntry(pydantic.BaseModel):
    """One HAR ``log.entries`` item."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, extra="ignore"
    )

    request: HarRequest
    response: HarResponse = pydantic.Field(default_factory=HarResponse)
    timings: HarTimings = pydantic.Field(default_factory=HarTimings)
    time: float = 0
    started_date_time: str | None = None
    resource_type: str | None = pydantic.Field(
        default=None, validation_alias=pydantic.AliasChoices("_resourceType", "resourceType", "type")
    )
    initiator: HarInitiator | None = pydantic.Field(
        default=None, validation_alias=pydantic.AliasChoices("_initiator", "initiator")
    )
    priority: str | None = pydantic.Field(
        default=None, validation_alias=pydantic.AliasChoices("_priority", "priority")
    )
    start_offset_ms: float | None = pydantic.Field(
        default=None, validation_alias=pydantic.AliasChoices("_startOffsetMs", "startOffsetMs")
    )


# ── Category rules and policy ───────────────────────────────────


class RuleCondition(pydantic.BaseModel):
    """Substrings that must all be present for the condition to hold."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, frozen=True
    )

    domain: str | None = None
    url: str | None = None


class CategoryRule(pydantic.BaseModel):
    """One entry of the ordered categorisation rule list."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, frozen=True
    )

    category: ThirdPartyCategory
    conditions: tuple[RuleCondition, ...]
    exclude_domains: tuple[str, ...] = ()


class CategoryPolicy(pydantic.BaseModel):
    """Static loading policy for one category."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, frozen=True
    )

    preconnect: PreconnectValue
    action: str
    rationale: str
    priority: PolicyPriority | None = None


# ── Attribution output ──────────────────────────────────────────


class NetworkTiming(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    dns: float = 0
    connect: float = 0
    ssl: float = 0
    wait: float = 0
    download: float = 0
    total: float = 0


class LongTaskHit(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    start_time: float
    duration: float
    blocking_duration: float


class ScriptExecution(pydantic.BaseModel):
    """Long-task time attributed to one script."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    duration: float = 0
    blocking_duration: float = 0
    start_time: float = 0
    task_count: int = 0


class InitiatorInfo(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    url: str | None = None
    type: str | None = None
    line_number: int | None = None
    chain: list[str] = pydantic.Field(default_factory=list)
    loaded_via: ThirdPartyCategory | None = None


class ThirdPartyScript(pydantic.BaseModel):
    """One cross-origin script request with its attribution."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    url: str
    domain: str
    category: ThirdPartyCategory
    network: NetworkTiming = pydantic.Field(default_factory=NetworkTiming)
    transfer_size: int = 0
    uncompressed_size: int = 0
    execution: ScriptExecution | None = None
    long_tasks: list[LongTaskHit] = pydantic.Field(default_factory=list)
    initiator: InitiatorInfo = pydantic.Field(default_factory=InitiatorInfo)
    is_render_blocking: bool = False
    start_time: float | None = None

    @property
    def blocking_time(self) -> float:
        return sum(t.blocking_duration for t in self.long_tasks)


class PreconnectSignals(pydantic.BaseModel):
    """Page evidence used to resolve conditional preconnect policies."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, frozen=True
    )

    render_blocking: bool = False
    starts_before_lcp: bool = False
    personalization_markers: tuple[str, ...] = ()


class PreconnectDecision(pydantic.BaseModel):
    """Resolved preconnect verdict; ``recommend`` is ``None`` when undecidable."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, frozen=True
    )

    recommend: bool | None
    basis: PreconnectValue
    reason: str


class CategoryImpact(pydantic.BaseModel):
    """Per-category totals plus the policy verdict."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    category: ThirdPartyCategory
    script_count: int = 0
    total_transfer_size: int = 0
    total_network_time: float = 0
    total_execution_time: float = 0
    total_blocking_time: float = 0
    is_render_blocking: bool = False
    lcp_critical: bool = False
    preconnect: PreconnectValue = "unknown"
    policy: CategoryPolicy
    decision: PreconnectDecision


class ThirdPartySummary(pydantic.BaseModel):
    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    total_scripts: int = 0
    total_transfer_size: int = 0
    total_network_time: float = 0
    total_execution_time: float = 0
    total_blocking_time: float = 0
    render_blocking_count: int = 0


class ThirdPartyAnalysis(pydantic.BaseModel):
    """Complete third-party attribution for one page load."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    scripts: list[ThirdPartyScript] = pydantic.Field(default_factory=list)
    by_category: dict[str, list[ThirdPartyScript]] = pydantic.Field(default_factory=dict)
    category_impact: list[CategoryImpact] = pydantic.Field(default_factory=list)
    summary: ThirdPartySummary = pydantic.Field(default_factory=ThirdPartySummary)
    personalization_markers: list[str] = pydantic.Field(default_factory=list)
    skipped_entries: int = 0
