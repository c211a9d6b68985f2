"""Pydantic models for layout-shift records and their attribution."""

from __future__ import annotations

from typing import Literal

import pydantic

from cwv_lab.utils import serialization

ShiftCauseType = Literal["font-swap", "content-insertion", "unsized-media", "animation", "unknown"]
ShiftPriority = Literal["high", "medium"]


class Rect(pydantic.BaseModel):
    """A DOMRect as reported by the Layout Instability API.

    Accepts either ``x``/``y`` or ``left``/``top`` spellings.
    """

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, extra="ignore", frozen=True
    )

    x: float = pydantic.Field(default=0, validation_alias=pydantic.AliasChoices("x", "left"))
    y: float = pydantic.Field(default=0, validation_alias=pydantic.AliasChoices("y", "top"))
    width: float = 0
    height: float = 0

    @property
    def top(self) -> float:
        return self.y

    @property
    def left(self) -> float:
        return self.x

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2


class ShiftSource(pydantic.BaseModel):
    """One element that moved during a layout shift.

    ``node_id`` refers to a node reference stashed in the page at
    capture time; ``selector`` is filled when the collector could
    already describe the node.
    """

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, extra="ignore"
    )

    previous_rect: Rect | None = None
    current_rect: Rect | None = None
    node_id: int | str | None = None
    selector: str | None = None


class LayoutShift(pydantic.BaseModel):
    """One ``layout-shift`` Performance Observer entry."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, extra="ignore"
    )

    value: float = 0
    start_time: float = 0
    had_recent_input: bool = False
    sources: list[ShiftSource] = pydantic.Field(default_factory=list)


class RectDelta(pydantic.BaseModel):
    """Difference between a source's current and previous rects."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, frozen=True
    )

    width: float
    height: float
    top: float
    left: float


class ShiftCause(pydantic.BaseModel):
    """Heuristic root cause of a shift, fixed once computed."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, frozen=True
    )

    type: ShiftCauseType
    description: str
    recommendation: str
    css_property: str | None = None
    priority: ShiftPriority = "medium"


class ElementInfo(pydantic.BaseModel):
    """A resolved DOM node: short selector plus selected computed styles."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, extra="ignore"
    )

    selector: str
    computed_styles: dict[str, str] = pydantic.Field(default_factory=dict)


class StylesheetMatch(pydantic.BaseModel):
    """A stylesheet rule that sets the cause's CSS property on the element."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True, extra="ignore"
    )

    href: str = "inline"
    selector: str
    property: str
    value: str = ""


class EnhancedShift(pydantic.BaseModel):
    """A shift source with element, cause and stylesheet attribution."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    value: float
    start_time: float = 0
    had_recent_input: bool = False
    element: str
    previous_rect: Rect
    current_rect: Rect
    computed_styles: dict[str, str] = pydantic.Field(default_factory=dict)
    cause: ShiftCause
    stylesheet: StylesheetMatch | None = None


class ShiftTypeSummary(pydantic.BaseModel):
    """Count and summed value for one cause type."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    count: int = 0
    total_value: float = 0
    elements: list[str] = pydantic.Field(default_factory=list)


class TopShiftIssue(pydantic.BaseModel):
    """One of the highest-value attributed shifts."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    element: str
    value: float
    type: ShiftCauseType
    description: str
    recommendation: str
    stylesheet: str | None = None
    priority: ShiftPriority = "medium"


class AttributionSummary(pydantic.BaseModel):
    """Aggregate view of attributed layout shifts."""

    model_config = pydantic.ConfigDict(
        alias_generator=serialization.snake_to_camel, populate_by_name=True
    )

    total_shifts: int = 0
    total_cls: float = pydantic.Field(default=0, alias="totalCLS")
    by_type: dict[str, ShiftTypeSummary] = pydantic.Field(default_factory=dict)
    top_issues: list[TopShiftIssue] = pydantic.Field(default_factory=list)
