"""
Category loading policy and preconnect resolution.

The policy table itself is static JSON (see
``cwv_lab/data/policies/category-policies.json``).  This module exposes
it read-only and resolves the three-valued ``preconnect`` field into a
concrete decision using page evidence.
"""

from __future__ import annotations

import re

from cwv_lab.data import loader
from cwv_lab.models import third_party

# Anti-flicker snippets and experimentation globals that hide or
# rewrite the page until a third party responds.
_PERSONALIZATION_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("async-hide", re.compile(r"async-hide", re.IGNORECASE)),
    ("anti-flicker", re.compile(r"anti[-_]?flicker", re.IGNORECASE)),
    ("google-optimize", re.compile(r"optimize\.js|googleoptimize|OPTIMIZE_ID", re.IGNORECASE)),
    ("vwo", re.compile(r"_vwo_code|_vwo_settings_timer", re.IGNORECASE)),
    ("optimizely", re.compile(r"window\.optimizely|cdn\.optimizely\.com", re.IGNORECASE)),
    ("adobe-target", re.compile(r"\bat(?:\.min)?\.js|adobe\.target|mboxCreate|targetPageParams", re.IGNORECASE)),
    ("ab-tasty", re.compile(r"abtasty", re.IGNORECASE)),
    ("dynamic-yield", re.compile(r"DY\.recommendationContext|dynamicyield", re.IGNORECASE)),
    ("kameleoon", re.compile(r"kameleoon", re.IGNORECASE)),
    ("launchdarkly", re.compile(r"LDClient|launchdarkly", re.IGNORECASE)),
)


def is_lcp_critical_capable(category: third_party.ThirdPartyCategory) -> bool:
    """True unless the category is in the fixed non-critical set."""
    return category not in third_party.NON_CRITICAL_CATEGORIES


def get_policy(category: third_party.ThirdPartyCategory) -> third_party.CategoryPolicy:
    """Return the policy for *category*, falling back to ``other``."""
    policies = loader.get_category_policies()
    return policies.get(category) or policies["other"]


def detect_personalization_markers(html: str | None) -> list[str]:
    """Return the names of personalisation markers found in *html*."""
    if not html:
        return []
    return [name for name, pattern in _PERSONALIZATION_PATTERNS if pattern.search(html)]


def resolve_preconnect(
    category: third_party.ThirdPartyCategory,
    signals: third_party.PreconnectSignals | None = None,
) -> third_party.PreconnectDecision:
    """Resolve the category's preconnect policy against page signals.

    ``conditional`` policies recommend a preconnect only when the
    category's scripts are render-blocking or start before LCP *and*
    personalisation markers were detected.  ``unknown`` yields
    ``recommend=None``.
    """
    signals = signals or third_party.PreconnectSignals()
    policy = get_policy(category)
    basis = policy.preconnect

    if basis is True:
        return third_party.PreconnectDecision(recommend=True, basis=basis, reason=policy.rationale)
    if basis is False:
        return third_party.PreconnectDecision(
            recommend=False,
            basis=basis,
            reason=f"{category} scripts are not LCP-critical; never preconnect",
        )
    if basis == "unknown":
        return third_party.PreconnectDecision(
            recommend=None,
            basis=basis,
            reason="Unclassified third party; not enough information to decide",
        )

    early = signals.render_blocking or signals.starts_before_lcp
    markers = ", ".join(signals.personalization_markers)
    if early and signals.personalization_markers:
        return third_party.PreconnectDecision(
            recommend=True,
            basis=basis,
            reason=f"Loads before LCP and personalisation markers found ({markers})",
        )
    if not early:
        reason = "Does not load before LCP"
    else:
        reason = "Loads before LCP but no personalisation markers found"
    return third_party.PreconnectDecision(recommend=False, basis=basis, reason=reason)
