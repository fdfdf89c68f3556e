# catalog_sync/api/v1/routers/pipeline.py
from fastapi import APIRouter, Depends, HTTPException, Query

from catalog_sync.api.deps import dead_letter_repo, require_coordinator
from catalog_sync.api.v1.schemas.pipeline import DeadLettersOut, PipelineStatusOut
from catalog_sync.domain.errors import IndexUnavailable

router = APIRouter(tags=["pipeline"])


@router.get("/pipeline/status", response_model=PipelineStatusOut, summary="Coordinator state, checkpoints and counters")
async def pipeline_status(coordinator = Depends(require_coordinator)):
    return coordinator.status()


@router.get("/pipeline/dead-letters", response_model=DeadLettersOut, summary="Most recent dead-lettered events")
async def dead_letters(
    limit: int = Query(50, ge=1, le=500),
    repo = Depends(dead_letter_repo),
):
    try:
        items = await repo.recent(limit)
    except IndexUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return DeadLettersOut(items=items, count=len(items))
