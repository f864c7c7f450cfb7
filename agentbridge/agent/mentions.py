"""
Mention / loop guard over Atlassian Document Format (ADF) comment bodies.

ADF arrives as untyped JSON: a node, or an array of nodes, nested to any
depth. ``parse_adf`` turns it into a small tagged union so the checks below
are plain depth-first walks.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Iterator, List, Optional, Union


@dataclass(frozen=True)
class TextNode:
    text: str


@dataclass(frozen=True)
class MentionNode:
    account_id: Optional[str]
    display_text: str


@dataclass(frozen=True)
class HardBreakNode:
    pass


@dataclass(frozen=True)
class ContainerNode:
    node_type: Optional[str]
    children: List["AdfNode"] = field(default_factory=list)


AdfNode = Union[TextNode, MentionNode, HardBreakNode, ContainerNode]


def parse_adf(raw: Any) -> AdfNode:
    """Convert raw ADF JSON (dict, list, str or None) into AdfNode."""
    if raw is None:
        return ContainerNode(node_type=None)
    if isinstance(raw, str):
        return TextNode(text=raw)
    if isinstance(raw, list):
        return ContainerNode(node_type=None, children=[parse_adf(n) for n in raw])
    if not isinstance(raw, dict):
        return ContainerNode(node_type=None)

    node_type = raw.get("type")
    attrs = raw.get("attrs") or {}
    if node_type == "text":
        return TextNode(text=str(raw.get("text") or ""))
    if node_type == "mention":
        return MentionNode(
            account_id=attrs.get("id"),
            display_text=str(attrs.get("text") or ""),
        )
    if node_type == "hardBreak":
        return HardBreakNode()

    content = raw.get("content")
    if content is None:
        children: List[AdfNode] = []
    elif isinstance(content, list):
        children = [parse_adf(n) for n in content]
    else:
        children = [parse_adf(content)]
    return ContainerNode(node_type=node_type, children=children)


def walk(node: AdfNode) -> Iterator[AdfNode]:
    """Depth-first, pre-order."""
    yield node
    if isinstance(node, ContainerNode):
        for child in node.children:
            yield from walk(child)


def _as_node(body: Any) -> AdfNode:
    if isinstance(body, (TextNode, MentionNode, HardBreakNode, ContainerNode)):
        return body
    return parse_adf(body)


def is_authored_by_self(author_id: Optional[str], self_id: Optional[str]) -> bool:
    return bool(author_id) and bool(self_id) and author_id == self_id


def contains_mention(body: Any, self_id: Optional[str]) -> bool:
    if not self_id:
        return False
    return any(
        isinstance(n, MentionNode) and n.account_id == self_id
        for n in walk(_as_node(body))
    )


def mentioned_account_ids(body: Any) -> List[str]:
    return [
        n.account_id
        for n in walk(_as_node(body))
        if isinstance(n, MentionNode) and n.account_id
    ]


def contains_name_token(text: Optional[str], agent_name: Optional[str]) -> bool:
    """Case-insensitive whole-word match; ``@name`` counts."""
    if not text or not agent_name or not agent_name.strip():
        return False
    pattern = r"(?<![\w-])" + re.escape(agent_name.strip()) + r"(?![\w-])"
    return re.search(pattern, text, re.IGNORECASE) is not None


def extract_plain_text(body: Any) -> str:
    node = _as_node(body)
    if isinstance(node, TextNode):
        return node.text
    if isinstance(node, MentionNode):
        return node.display_text
    if isinstance(node, HardBreakNode):
        return "\n"
    return "".join(extract_plain_text(child) for child in node.children)
