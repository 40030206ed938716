from datetime import datetime, timedelta, timezone
from typing import List

from fastapi import APIRouter, HTTPException, Query, status

from playergraph.core.exceptions import (
    ExternalStoreError,
    InvalidInputError,
    SyncAlreadyRunningError,
)
from .dependencies import RelationshipGraphServiceDep, RelationshipSyncServiceDep
from .schemas import (
    EdgeStats,
    SymmetryReport,
    SyncCheckpointResponse,
    SyncRequest,
    SyncResult,
    TeammateInfo,
)

router = APIRouter(prefix="/relationships", tags=["relationships"])


@router.post("/sync", response_model=SyncResult)
async def run_sync(
    request: SyncRequest, service: RelationshipSyncServiceDep
) -> SyncResult:
    """Sync a window of closed rounds into the relationship graph"""
    try:
        if request.window_from and request.window_to:
            return await service.sync_window(request.window_from, request.window_to)
        if request.window_from or request.window_to:
            window_to = request.window_to or datetime.now(timezone.utc)
            window_from = request.window_from or window_to - timedelta(
                days=request.days or service.default_lookback_days
            )
            return await service.sync_window(window_from, window_to)
        return await service.sync_recent(request.days)
    except SyncAlreadyRunningError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except ExternalStoreError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Sync aborted, watermark unchanged: {e.message}",
        )


@router.get("/checkpoint", response_model=SyncCheckpointResponse)
async def get_checkpoint(
    service: RelationshipGraphServiceDep,
) -> SyncCheckpointResponse:
    """Get the current sync high-watermark"""
    checkpoint = await service.get_checkpoint()
    if not checkpoint:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No sync has completed yet"
        )
    return checkpoint


@router.get("/verify", response_model=SymmetryReport)
async def verify_graph(service: RelationshipGraphServiceDep) -> SymmetryReport:
    """Report edges violating the symmetry or timeline invariants"""
    try:
        return await service.verify_graph()
    except ExternalStoreError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=e.message
        )


@router.get("/edge", response_model=EdgeStats)
async def get_edge(
    service: RelationshipGraphServiceDep,
    player1: str = Query(..., min_length=1),
    player2: str = Query(..., min_length=1),
) -> EdgeStats:
    """Get co-play stats of a pair (order of the two names does not matter)"""
    try:
        edge = await service.get_edge_stats(player1, player2)
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if edge is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Players have never played together",
        )
    return edge


@router.get("/{player_name}/teammates", response_model=List[TeammateInfo])
async def get_teammates(
    player_name: str,
    service: RelationshipGraphServiceDep,
    limit: int = Query(default=50, ge=1, le=500),
) -> List[TeammateInfo]:
    """Get a player's most frequent teammates"""
    try:
        return await service.get_teammates(player_name, limit)
    except InvalidInputError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
