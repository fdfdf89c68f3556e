# catalog_sync/api/v1/routers/catalog.py
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from catalog_sync.api.deps import category_repo
from catalog_sync.api.v1.schemas.pipeline import CategoryLevelsOut, CategoryMoveOut
from catalog_sync.domain.errors import CategoryTreeError, SourceUnavailable
from catalog_sync.domain.services.category_svc import apply_parent_change, stale_levels

import logging
logger = logging.getLogger(__name__)

router = APIRouter(tags=["catalog"])


@router.post("/catalog/categories/levels", response_model=CategoryLevelsOut,
             summary="Recompute category levels from the parent chain")
async def recompute_category_levels(
    dry_run: bool = Query(False, description="Only report the levels that would change"),
    repo = Depends(category_repo),
):
    try:
        categories = await repo.list_all()
        changed = stale_levels(categories)
        if changed and not dry_run:
            await repo.update_levels(changed)
            logger.info("category levels fixed: %s", changed)
    except CategoryTreeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SourceUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return CategoryLevelsOut(changed=changed, count=len(changed), applied=bool(changed) and not dry_run)


@router.put("/catalog/categories/{category_id}/parent", response_model=CategoryMoveOut,
            summary="Move a category under another parent and re-level its subtree")
async def move_category(
    category_id: int,
    parent_id: Optional[int] = Query(None, description="New parent; omit to make the category a root"),
    dry_run: bool = Query(False, description="Only report the levels that would change"),
    repo = Depends(category_repo),
):
    try:
        categories = await repo.list_all()
        if not any(c.id == category_id for c in categories):
            raise HTTPException(status_code=404, detail=f"category {category_id} not found")
        changed = apply_parent_change(categories, category_id, parent_id)
        if not dry_run:
            await repo.move(category_id, parent_id, changed)
    except CategoryTreeError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except SourceUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return CategoryMoveOut(
        category_id=category_id, parent_id=parent_id, changed=changed, count=len(changed), applied=not dry_run,
    )
