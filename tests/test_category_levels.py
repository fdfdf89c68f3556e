import pytest

from catalog_sync.domain.errors import CategoryTreeError
from catalog_sync.domain.models.catalog import Category
from catalog_sync.domain.services.category_svc import apply_parent_change, recompute_levels, stale_levels


def _tree(*edges, level=1):
    """edges: (id, parent_id)"""
    return [Category(id=cid, parent_id=parent, level=level) for cid, parent in edges]


def test_levels_follow_parent_depth():
    categories = _tree((1, None), (2, 1), (3, 2), (4, 1), (5, None))
    assert recompute_levels(categories) == {1: 1, 2: 2, 3: 3, 4: 2, 5: 1}


def test_stored_levels_are_not_trusted():
    categories = [Category(id=1, level=4), Category(id=2, parent_id=1, level=2), Category(id=3, parent_id=2, level=9)]
    assert stale_levels(categories) == {1: 1, 3: 3}


def test_cycles_are_rejected():
    with pytest.raises(CategoryTreeError):
        recompute_levels(_tree((1, 3), (2, 1), (3, 2)))


def test_dangling_parent_is_rejected():
    with pytest.raises(CategoryTreeError):
        recompute_levels(_tree((1, None), (2, 42)))


def test_moving_a_subtree_relevels_it():
    categories = [
        Category(id=1, level=1),
        Category(id=2, parent_id=1, level=2),
        Category(id=3, parent_id=2, level=3),
        Category(id=4, level=1),
    ]
    assert apply_parent_change(categories, 2, 4) == {}
    assert apply_parent_change(categories, 1, 4) == {1: 2, 2: 3, 3: 4}
    assert apply_parent_change(categories, 3, None) == {3: 1}


def test_move_under_own_descendant_is_a_cycle():
    categories = _tree((1, None), (2, 1), (3, 2))
    with pytest.raises(CategoryTreeError):
        apply_parent_change(categories, 1, 3)


def test_move_of_unknown_category():
    with pytest.raises(CategoryTreeError):
        apply_parent_change(_tree((1, None)), 9, 1)
