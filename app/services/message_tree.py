"""Rebuild a chat's branching structure from its flat message rows.

Editing or regenerating never rewrites history: it appends a sibling
subtree. The view a client renders by default is therefore derived here
from parent pointers and creation times.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable

from app.schemas.message import Message


@dataclass
class MessageTreeView:
    root_message_ids: list[str] = field(default_factory=list)
    latest_path: list[str] = field(default_factory=list)
    messages: dict[str, Message] = field(default_factory=dict)


def _sort_key(message: Message) -> tuple[str, str]:
    # createdAt is a fixed-width UTC ISO string, so string order is time order
    return (message.createdAt or "", message.id)


def build_view(messages: Iterable[Message]) -> MessageTreeView:
    ordered = sorted(messages, key=_sort_key)
    if not ordered:
        return MessageTreeView()

    by_id = {message.id: message for message in ordered}
    children: dict[str, list[str]] = {message.id: [] for message in ordered}
    root_ids: list[str] = []

    for message in ordered:
        parent_id = message.parentMessageId
        if parent_id is not None and parent_id in by_id and parent_id != message.id:
            children[parent_id].append(message.id)
        else:
            # parentless, or parent outside this chat's rows: starts its own thread
            root_ids.append(message.id)

    leaves = [message for message in ordered if not children[message.id]]
    latest_leaf = max(leaves, key=_sort_key) if leaves else ordered[-1]

    path: list[str] = []
    visited: set[str] = set()
    current: Message | None = latest_leaf
    while current is not None and current.id not in visited:
        visited.add(current.id)
        path.append(current.id)
        parent_id = current.parentMessageId
        current = by_id.get(parent_id) if parent_id is not None else None
    path.reverse()

    view_messages = {
        message.id: message.model_copy(update={"childrenMessageIds": list(children[message.id])})
        for message in ordered
    }
    return MessageTreeView(root_message_ids=root_ids, latest_path=path, messages=view_messages)


def ancestor_chain(messages: Iterable[Message], leaf_id: str | None) -> list[Message]:
    """Messages from the thread root down to ``leaf_id`` inclusive."""

    if leaf_id is None:
        return []
    by_id = {message.id: message for message in messages}
    chain: list[Message] = []
    visited: set[str] = set()
    current = by_id.get(leaf_id)
    while current is not None and current.id not in visited:
        visited.add(current.id)
        chain.append(current)
        current = by_id.get(current.parentMessageId) if current.parentMessageId is not None else None
    chain.reverse()
    return chain
