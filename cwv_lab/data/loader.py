"""
Data loader for third-party category rules and the category policy table.
Loads JSON files once and validates them against the category taxonomy.

The JSON data files live alongside this module in third_party/ and
policies/ subdirectories.
"""

from __future__ import annotations

import json
import pathlib
import types
from collections.abc import Mapping
from typing import Any

import pydantic

from cwv_lab.models import third_party

# Resolve path to the data directory (same directory as this module)
_DATA_DIR = pathlib.Path(__file__).resolve().parent

# ============================================================================
# JSON File Loading
# ============================================================================


def _load_json(relative_path: str) -> Any:
    """Load and parse a JSON file relative to the data directory.

    Raises:
        FileNotFoundError: If the JSON file does not exist.
        json.JSONDecodeError: If the file contains invalid JSON.
    """
    full_path = _DATA_DIR / relative_path
    if not full_path.exists():
        raise FileNotFoundError(f"Data file not found: {relative_path}")
    with open(full_path, encoding="utf-8") as f:
        try:
            return json.load(f)
        except json.JSONDecodeError as exc:
            raise json.JSONDecodeError(
                f"Invalid JSON in {relative_path}: {exc.msg}",
                exc.doc,
                exc.pos,
            ) from exc


# ============================================================================
# Category Rules
# ============================================================================


def _load_category_rules() -> tuple[third_party.CategoryRule, ...]:
    """Load the ordered categorisation rules.

    Conditions and exclusions are lower-cased at load time so
    matching only has to lower-case the input.
    """
    raw: list[dict[str, Any]] = _load_json("third_party/category-rules.json")
    rules = pydantic.TypeAdapter(list[third_party.CategoryRule]).validate_python(raw)
    return tuple(
        rule.model_copy(update={
            "conditions": tuple(
                third_party.RuleCondition(
                    domain=c.domain.lower() if c.domain else None,
                    url=c.url.lower() if c.url else None,
                )
                for c in rule.conditions
            ),
            "exclude_domains": tuple(d.lower() for d in rule.exclude_domains),
        })
        for rule in rules
    )


_category_rules: tuple[third_party.CategoryRule, ...] | None = None


def get_category_rules() -> tuple[third_party.CategoryRule, ...]:
    """Get the ordered category rules (lazy loaded and cached)."""
    global _category_rules
    if _category_rules is None:
        _category_rules = _load_category_rules()
    return _category_rules


# ============================================================================
# Category Policies
# ============================================================================


def _load_category_policies() -> Mapping[str, third_party.CategoryPolicy]:
    """Load the policy table and check it against the taxonomy.

    Raises:
        ValueError: If a category has no policy, the table names
            an unknown category, ``other`` is not ``unknown``, or a
            policy contradicts its category's criticality.
    """
    raw: dict[str, Any] = _load_json("policies/category-policies.json")
    policies = {
        name: third_party.CategoryPolicy.model_validate(entry)
        for name, entry in raw.items()
    }

    missing = [c for c in third_party.CATEGORY_ORDER if c not in policies]
    if missing:
        raise ValueError(f"Category policy table is missing: {', '.join(missing)}")
    unknown = [name for name in policies if name not in third_party.CATEGORY_ORDER]
    if unknown:
        raise ValueError(f"Category policy table names unknown categories: {', '.join(unknown)}")
    if policies["other"].preconnect != "unknown":
        raise ValueError("Fallback category 'other' must have preconnect 'unknown'")
    contradicting = [
        c for c in third_party.CATEGORY_ORDER
        if (c in third_party.NON_CRITICAL_CATEGORIES and policies[c].preconnect is not False)
        or (c in third_party.CONDITIONAL_CATEGORIES and policies[c].preconnect != "conditional")
    ]
    if contradicting:
        raise ValueError(f"Category policies contradict criticality: {', '.join(contradicting)}")

    return types.MappingProxyType(policies)


_category_policies: Mapping[str, third_party.CategoryPolicy] | None = None


def get_category_policies() -> Mapping[str, third_party.CategoryPolicy]:
    """Get the read-only category policy table (lazy loaded and cached)."""
    global _category_policies
    if _category_policies is None:
        _category_policies = _load_category_policies()
    return _category_policies
