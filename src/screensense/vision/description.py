"""Human-readable descriptions of nodes, subtrees and screens.

The descriptions are what gets embedded, so they name the element's role,
its visible text, where it sits and which app it belongs to.
"""

from __future__ import annotations

from collections import Counter
from typing import Iterable, Optional, Sequence

from ..utils.helpers import url_domain
from .models import UIScreenState, UISemanticNode, UISubtree

TYPE_LABELS = {
    "button": "Button",
    "input": "Input field",
    "search": "Search box",
    "text": "Text",
    "image": "Image",
    "dialog": "Dialog",
    "modal": "Modal",
    "panel": "Panel",
    "list": "List",
    "checkbox": "Checkbox",
    "radio": "Radio button",
    "dropdown": "Dropdown menu",
    "menu": "Menu",
    "link": "Link",
    "icon": "Icon",
    "tab": "Tab",
    "toolbar": "Toolbar",
    "section": "Section",
    "container": "Container",
    "form": "Form",
    "heading": "Heading",
    "unknown": "UI element",
}

ACTION_KEYWORDS = (
    "save", "submit", "send", "create", "delete", "cancel", "ok", "confirm",
    "export", "download", "upload", "login", "sign in", "signup", "search",
)


def type_label(element_type: str) -> str:
    return TYPE_LABELS.get(element_type, "UI element")


def _count_phrase(nodes: Iterable[UISemanticNode], limit: Optional[int] = None) -> str:
    counts = Counter(type_label(node.type).lower() for node in nodes)
    items = list(counts.items())[:limit] if limit else list(counts.items())
    return ", ".join(f"{count} {label}{'s' if count > 1 else ''}" for label, count in items)


class DescriptionGenerator:
    """Generate embedding text for UI entities."""

    def node_description(
        self,
        node: UISemanticNode,
        app: Optional[str] = None,
        url: Optional[str] = None,
        parent_type: Optional[str] = None,
    ) -> str:
        parts = [type_label(node.type)]
        if node.text and node.text.strip():
            parts.append(f'"{node.text.strip()}"')
        if node.metadata.icon_type:
            parts.append(f"with {node.metadata.icon_type} icon")
        if node.metadata.screen_region:
            parts.append(f"in {node.metadata.screen_region}")
        if parent_type:
            parts.append(f"within {type_label(parent_type).lower()}")
        if app:
            parts.append(f"on {app}")
        domain = url_domain(url)
        if domain:
            parts.append(f"at {domain.removeprefix('www.')}")
        if node.clickable:
            parts.append("(clickable)")
        if node.interactive and node.type in ("input", "search"):
            parts.append("(editable)")
        return " ".join(parts)

    def subtree_description(
        self,
        subtree: UISubtree,
        nodes: Sequence[UISemanticNode],
        app: Optional[str] = None,
    ) -> str:
        parts = [type_label(subtree.type)]
        if subtree.title:
            parts.append(f'titled "{subtree.title}"')
        summary = _count_phrase(nodes, limit=3)
        if summary:
            parts.append(f"containing {summary}")
        interactive = [node for node in nodes if node.clickable or node.interactive]
        if interactive:
            parts.append(f"with {_count_phrase(interactive)}")
        if app:
            parts.append(f"in {app}")
        return " ".join(parts)

    def screen_description(self, screen_state: UIScreenState) -> str:
        parts = [f"{screen_state.app} window"]
        if screen_state.window_title:
            parts.append(f'showing "{screen_state.window_title}"')
        domain = url_domain(screen_state.url)
        if domain:
            parts.append(f"at {domain.removeprefix('www.')}")

        if screen_state.subtrees:
            regions = list(dict.fromkeys(subtree.type for subtree in screen_state.subtrees))
            parts.append(f"with {', '.join(regions)} regions")

        nodes = screen_state.nodes
        contents = []
        text_count = sum(1 for node in nodes if node.type == "text" and len(node.text) > 3)
        button_count = sum(1 for node in nodes if node.type == "button")
        input_count = sum(1 for node in nodes if node.type in ("input", "search"))
        if text_count:
            contents.append(f"{text_count} text elements")
        if button_count:
            contents.append(f"{button_count} buttons")
        if input_count:
            contents.append(f"{input_count} input fields")
        if contents:
            parts.append(f"containing {', '.join(contents)}")

        notable = [
            node for node in nodes
            if node.type == "button" and any(keyword in node.text.lower() for keyword in ACTION_KEYWORDS)
        ][:5]
        if notable:
            parts.append("including " + ", ".join(f'"{node.text}"' for node in notable))
        return " ".join(parts)
