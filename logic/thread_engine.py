"""
Thread Engine for the Fielsdown content platform

Reconstructs the forest of comments attached to one content unit and
assigns it a deterministic render order: a pre-order traversal in which
siblings appear oldest first.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple

from models.database import Comment


logger = logging.getLogger(__name__)


DEFAULT_MAX_DEPTH = 256
DEFAULT_CACHE_SIZE = 128


@dataclass
class ThreadNode:
    """A comment and its replies."""
    comment: Comment
    depth: int
    children: List["ThreadNode"] = field(default_factory=list)


@dataclass(frozen=True)
class ThreadEntry:
    """One line of the render order: a comment and its nesting depth (0 = top level)."""
    comment: Comment
    depth: int


def _sort_key(comment: Comment):
    # id breaks ties between comments created in the same instant
    return (comment.created_at, comment.id)


class ThreadEngine:
    """
    Builds render trees from flat comment sets.

    The input is the set of comments of a single content unit. A comment is
    excluded, together with everything beneath it, when its parent is not in
    the set (missing, or attached to another unit), when it names itself as
    parent, or when it would sit deeper than max_depth. Exclusions are logged
    and never raised.

    Results are a pure function of the comment set, so they are cached per
    unit and recomputed only when the set of comment ids changes. The cache
    holds at most cache_size units; the least recently read unit is evicted.
    """

    def __init__(self, max_depth: int = DEFAULT_MAX_DEPTH, cache_size: int = DEFAULT_CACHE_SIZE):
        """
        Initialize ThreadEngine.

        Args:
            max_depth: Deepest nesting level rendered (0 = top level)
            cache_size: Number of units whose render order is kept
        """
        if cache_size < 1:
            raise ValueError("cache_size must be at least 1")
        self.max_depth = max_depth
        self.cache_size = cache_size
        self._cache: "OrderedDict[object, Tuple[FrozenSet[str], List[ThreadEntry]]]" = OrderedDict()

    def build_forest(self, comments: Iterable[Comment]) -> List[ThreadNode]:
        """
        Arrange comments into trees, one per top-level comment.

        Args:
            comments: All comments of one content unit, in any order

        Returns:
            Top-level nodes sorted oldest first, each with sorted children
        """
        by_id: Dict[str, Comment] = {}
        for comment in comments:
            if comment.id in by_id:
                logger.warning(f"Duplicate comment id {comment.id[:8]} ignored")
                continue
            by_id[comment.id] = comment

        roots: List[Comment] = []
        children: Dict[str, List[Comment]] = {}

        for comment in by_id.values():
            parent_id = comment.parent_id
            if parent_id is None:
                roots.append(comment)
            elif parent_id == comment.id:
                logger.warning(f"Comment {comment.id[:8]} references itself; excluded")
            elif parent_id not in by_id:
                logger.warning(
                    f"Orphan comment {comment.id[:8]}: parent {str(parent_id)[:8]} "
                    f"missing from unit; excluded"
                )
            else:
                children.setdefault(parent_id, []).append(comment)

        roots.sort(key=_sort_key)
        for siblings in children.values():
            siblings.sort(key=_sort_key)

        forest = [ThreadNode(comment=root, depth=0) for root in roots]
        placed = {root.id for root in roots}

        # Iterative expansion; a comment is placed at most once
        stack = list(reversed(forest))
        while stack:
            node = stack.pop()
            replies = children.get(node.comment.id, [])
            if replies and node.depth >= self.max_depth:
                logger.warning(
                    f"Replies below comment {node.comment.id[:8]} exceed depth "
                    f"{self.max_depth}; excluded"
                )
                continue
            for reply in replies:
                if reply.id in placed:
                    continue
                placed.add(reply.id)
                node.children.append(ThreadNode(comment=reply, depth=node.depth + 1))
            stack.extend(reversed(node.children))

        unreachable = len(by_id) - len(placed)
        if unreachable:
            logger.debug(f"{unreachable} comments not reachable from a top-level comment")

        return forest

    def render_order(self, comments: Iterable[Comment]) -> List[ThreadEntry]:
        """
        Flatten the forest into pre-order: each comment is followed by its
        replies (oldest first, depth-first) before its next sibling.

        Args:
            comments: All comments of one content unit, in any order

        Returns:
            Ordered list of ThreadEntry
        """
        order: List[ThreadEntry] = []
        stack = list(reversed(self.build_forest(comments)))
        while stack:
            node = stack.pop()
            order.append(ThreadEntry(comment=node.comment, depth=node.depth))
            stack.extend(reversed(node.children))
        return order

    def ordered_for_unit(self, unit, comments: Iterable[Comment]) -> List[ThreadEntry]:
        """
        Cached render_order for one content unit.

        Comments are immutable and append-only, so the set of ids is a
        complete fingerprint of the input.

        Args:
            unit: Hashable content unit key
            comments: All comments of that unit

        Returns:
            Ordered list of ThreadEntry (a fresh list; callers may mutate it)
        """
        comments = list(comments)
        fingerprint = frozenset(comment.id for comment in comments)

        cached = self._cache.get(unit)
        if cached is not None and cached[0] == fingerprint:
            self._cache.move_to_end(unit)
            return list(cached[1])

        order = self.render_order(comments)
        self._cache[unit] = (fingerprint, order)
        self._cache.move_to_end(unit)
        while len(self._cache) > self.cache_size:
            evicted, _ = self._cache.popitem(last=False)
            logger.debug(f"Evicted cached thread order of {evicted}")
        return list(order)

    def invalidate(self, unit: Optional[object] = None) -> None:
        """Drop the cached order of one unit, or of every unit."""
        if unit is None:
            self._cache.clear()
        else:
            self._cache.pop(unit, None)
