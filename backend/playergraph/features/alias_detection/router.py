from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request, status

from playergraph.core.config import get_global_settings
from playergraph.core.enums import SuspicionLevel
from playergraph.core.exceptions import (
    ExternalStoreError,
    InvalidInputError,
    PlayerNotFoundError,
)
from playergraph.core.rate_limiter import limiter
from .dependencies import AliasConfigDep, AliasDetectionServiceDep
from .schemas import (
    ActivityTimeline,
    BatchReport,
    ComparisonRequest,
    CustomWeights,
    ExplainResponse,
    SimilarityReport,
    WeightsResponse,
)
from .service import DEFAULT_TIMELINE_LOOKBACK_DAYS
from .transformers import AliasReportTransformer

router = APIRouter(prefix="/aliases", tags=["aliases"])


def _to_http_error(error: Exception) -> HTTPException:
    if isinstance(error, PlayerNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.message)
    if isinstance(error, InvalidInputError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error.message)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Player data is temporarily unavailable, try again later",
    )


@router.post("/compare", response_model=SimilarityReport)
@limiter.limit(lambda: get_global_settings().compare_rate_limit)
async def compare_players(
    request: Request,
    comparison: ComparisonRequest,
    service: AliasDetectionServiceDep,
) -> SimilarityReport:
    """Compare two players for alias patterns"""
    try:
        return await service.compare(
            comparison.player1,
            comparison.player2,
            lookback_days=comparison.lookback_days,
            weights=comparison.weights,
        )
    except (InvalidInputError, ExternalStoreError) as e:
        raise _to_http_error(e)


@router.post("/explain", response_model=ExplainResponse)
async def explain_report(report: SimilarityReport) -> ExplainResponse:
    """Explain a similarity report as prose with a recommendation"""
    return AliasReportTransformer.to_explain_response(report)


@router.get("/weights", response_model=WeightsResponse)
async def get_default_weights(config: AliasConfigDep) -> WeightsResponse:
    """Get the configured signal weights and suspicion thresholds"""
    weights = {signal.value: weight for signal, weight in config.weights.items()}
    return WeightsResponse(
        weights=CustomWeights(**weights),
        thresholds={
            SuspicionLevel.POTENTIAL: config.threshold_potential,
            SuspicionLevel.LIKELY: config.threshold_likely,
            SuspicionLevel.VERY_LIKELY: config.threshold_very_likely,
        },
        description={
            "stat": "Statistical similarity (K/D, kill rate, maps, servers)",
            "behavioral": "Behavioral patterns (play times, servers, ping, sessions)",
            "network": "Network similarity (shared teammates, network shape)",
            "temporal": "Temporal consistency (direct co-sessions, activity windows)",
            "switchover": "Account switchover pattern (flags only when weight is 0)",
        },
    )


@router.get("/timeline", response_model=ActivityTimeline)
async def get_activity_timeline(
    service: AliasDetectionServiceDep,
    player1: str = Query(..., min_length=1),
    player2: str = Query(..., min_length=1),
    lookback_days: int = Query(default=DEFAULT_TIMELINE_LOOKBACK_DAYS, ge=1, le=3650),
) -> ActivityTimeline:
    """Get activity periods and switchover analysis for two players"""
    try:
        return await service.get_activity_timeline(player1, player2, lookback_days)
    except (InvalidInputError, ExternalStoreError) as e:
        raise _to_http_error(e)


@router.get("/{player_name}/candidates", response_model=BatchReport)
async def find_potential_aliases(
    player_name: str,
    service: AliasDetectionServiceDep,
    limit: int = Query(default=10, ge=1, le=50),
    lookback_days: Optional[int] = Query(default=None, ge=0, le=3650),
    min_score: float = Query(default=0.0, ge=0.0, le=1.0),
) -> BatchReport:
    """Compare a player against graph candidates and return top suspects"""
    try:
        return await service.find_potential_aliases(
            player_name,
            lookback_days=lookback_days,
            limit=limit,
            min_score=min_score,
        )
    except (InvalidInputError, ExternalStoreError) as e:
        raise _to_http_error(e)
