# catalog_sync/domain/services/category_svc.py
from __future__ import annotations
import logging
from typing import Dict, Iterable, List, Optional

from catalog_sync.domain.errors import CategoryTreeError
from catalog_sync.domain.models.catalog import Category

logger = logging.getLogger(__name__)

ROOT_LEVEL = 1


def recompute_levels(categories: Iterable[Category]) -> Dict[int, int]:
    """
    Derive every category's level from its parent chain (root = 1, child = parent + 1).
    Stored levels are ignored. Raises CategoryTreeError on cycles or missing parents.
    """
    by_id = {c.id: c for c in categories}
    levels: Dict[int, int] = {}

    for start in by_id:
        path: List[int] = []
        on_path = set()
        node: Optional[int] = start
        # walk up until a category with a known level (or a root) is found
        while node is not None and node not in levels:
            if node in on_path:
                raise CategoryTreeError(f"category cycle through {path + [node]}")
            category = by_id.get(node)
            if category is None:
                raise CategoryTreeError(f"category {path[-1]} references missing parent {node}")
            path.append(node)
            on_path.add(node)
            node = category.parent_id

        base = levels[node] if node is not None else ROOT_LEVEL - 1
        for depth, cid in enumerate(reversed(path), start=1):
            levels[cid] = base + depth
    return levels


def stale_levels(categories: Iterable[Category]) -> Dict[int, int]:
    """Categories whose stored level disagrees with their depth: id -> correct level."""
    categories = list(categories)
    levels = recompute_levels(categories)
    return {c.id: levels[c.id] for c in categories if c.level != levels[c.id]}


def apply_parent_change(categories: Iterable[Category], category_id: int, new_parent_id: Optional[int]) -> Dict[int, int]:
    """
    Re-parent one category and return the level changes for it and its subtree.
    Rejects moves that would create a cycle.
    """
    categories = list(categories)
    if not any(c.id == category_id for c in categories):
        raise CategoryTreeError(f"category {category_id} does not exist")
    moved = [c.model_copy(update={"parent_id": new_parent_id}) if c.id == category_id else c for c in categories]
    changes = stale_levels(moved)
    logger.info("category %s moved under %s: %d level change(s)", category_id, new_parent_id, len(changes))
    return changes
