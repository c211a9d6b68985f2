"""
Live DOM queries for layout-shift attribution, backed by Playwright.

Node resolution prefers the node stashed by the performance init
script at capture time; when it is gone, the element at the centre of
the source's current rect is used instead.  Stylesheet scanning
guards each sheet separately because cross-origin sheets throw on
``cssRules`` access.
"""

from __future__ import annotations

from playwright import async_api

from cwv_lab.models import layout
from cwv_lab.utils import logger

log = logger.create_logger("DOM")

_RESOLVE_ELEMENT_JS = """
({ nodeId, selector, rect }) => {
    let element = null;
    const state = window.__cwvLab;
    if (nodeId !== null && nodeId !== undefined && state && state.nodes) {
        const node = state.nodes[nodeId];
        if (node && node.isConnected) {
            element = node.nodeType === 1 ? node : node.parentElement;
        }
    }
    if (!element && selector) {
        try { element = document.querySelector(selector); } catch (e) { element = null; }
    }
    if (!element && rect) {
        element = document.elementFromPoint(
            (rect.x || 0) + (rect.width || 0) / 2,
            (rect.y || 0) + (rect.height || 0) / 2,
        );
    }
    if (!element) return null;

    let name = element.tagName.toLowerCase();
    if (element.id) {
        name = `#${element.id}`;
    } else if (element.className && typeof element.className === 'string') {
        const classes = element.className.trim().split(/\\s+/).filter(Boolean);
        if (classes.length > 0) name = `.${classes[0]}`;
    }

    const computed = window.getComputedStyle(element);
    return {
        selector: name,
        computedStyles: {
            position: computed.position,
            display: computed.display,
            width: computed.width,
            height: computed.height,
            marginTop: computed.marginTop,
            marginBottom: computed.marginBottom,
            fontFamily: computed.fontFamily,
            fontSize: computed.fontSize,
            transform: computed.transform,
            aspectRatio: computed.aspectRatio,
            minHeight: computed.minHeight,
        },
    };
}
"""

_FIND_STYLESHEET_JS = """
({ selector, cssProperty }) => {
    let element = null;
    try { element = document.querySelector(selector); } catch (e) { return null; }
    if (!element) return null;

    const parts = selector.replace(/[#.]/g, ' ').trim().split(/\\s+/).filter(Boolean);
    const visit = (rules, href) => {
        for (const rule of rules) {
            if (rule.cssRules && !rule.selectorText) {
                const nested = visit(Array.from(rule.cssRules), href);
                if (nested) return nested;
                continue;
            }
            if (!rule.selectorText || !rule.style) continue;
            const value = rule.style.getPropertyValue(cssProperty);
            if (value && parts.some((part) => rule.selectorText.includes(part))) {
                return { href, selector: rule.selectorText, property: cssProperty, value: value.trim() };
            }
        }
        return null;
    };

    for (const sheet of Array.from(document.styleSheets)) {
        let rules;
        try {
            rules = Array.from(sheet.cssRules || []);
        } catch (e) {
            continue;
        }
        const match = visit(rules, sheet.href || 'inline');
        if (match) return match;
    }
    return null;
}
"""


class PlaywrightDomAccessor:
    """:class:`~cwv_lab.analysis.layout_shift.DomAccessor` over a Playwright page."""

    def __init__(self, page: async_api.Page) -> None:
        self._page = page

    async def resolve_element(self, source: layout.ShiftSource) -> layout.ElementInfo | None:
        rect = source.current_rect
        result = await self._page.evaluate(_RESOLVE_ELEMENT_JS, {
            "nodeId": source.node_id,
            "selector": source.selector,
            "rect": rect.model_dump() if rect else None,
        })
        if not result:
            return None
        return layout.ElementInfo.model_validate(result)

    async def find_stylesheet_rule(self, selector: str, css_property: str) -> layout.StylesheetMatch | None:
        result = await self._page.evaluate(_FIND_STYLESHEET_JS, {
            "selector": selector,
            "cssProperty": css_property,
        })
        if not result:
            return None
        log.debug("Stylesheet rule matched", {"selector": selector, "href": result.get("href")})
        return layout.StylesheetMatch.model_validate(result)
