"""
approval_engines.comments -- Comment thread shaping.

Responsibility:
    Nest flat comment rows into a one-level thread and filter internal
    comments for callers who may not see them.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import replace
from uuid import UUID

from approval_kernel.domain.workflow import Comment


def thread_root(comments: Iterable[Comment], reply_to_id: UUID) -> Comment | None:
    """Top-level comment a reply to ``reply_to_id`` attaches to.

    Replying to a reply attaches to that reply's parent, keeping nesting
    one level deep.  Returns None when ``reply_to_id`` is not in the thread.
    """
    by_id = {c.id: c for c in comments}
    target = by_id.get(reply_to_id)
    if target is None:
        return None
    if target.parent_id is not None:
        return by_id.get(target.parent_id)
    return target


def build_thread(comments: Iterable[Comment], include_internal: bool) -> tuple[Comment, ...]:
    """Nest replies under their parents, oldest first.

    A hidden (internal) parent hides its replies as well.
    """
    visible = [
        c for c in comments if include_internal or not c.is_internal
    ]
    visible.sort(key=lambda c: (c.created_at, str(c.id)))

    replies: dict[UUID, list[Comment]] = {}
    roots: list[Comment] = []
    for c in visible:
        if c.parent_id is None:
            roots.append(c)
        else:
            replies.setdefault(c.parent_id, []).append(c)

    return tuple(
        replace(root, replies=tuple(replies.get(root.id, ()))) for root in roots
    )
