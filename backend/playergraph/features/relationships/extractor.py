"""Co-play extraction for a single round."""

from collections import defaultdict
from itertools import combinations
from typing import Dict, List, Tuple

import structlog

from playergraph.features.sessions.repository import SessionStoreInterface
from playergraph.features.sessions.schemas import RoundObservation
from .schemas import CoPlayPair

logger = structlog.get_logger(__name__)


class CoPlayExtractor:
    """Emit every same-timestamp player pair of one round.

    Only the observations of the round being extracted are held in memory.
    """

    def __init__(self, session_store: SessionStoreInterface):
        self.session_store = session_store

    async def extract(self, round_id: str) -> List[CoPlayPair]:
        observations = await self.session_store.get_round_observations(round_id)
        pairs = self.pairs_from_observations(observations)

        logger.debug(
            "Extracted co-play pairs",
            round_id=round_id,
            observations=len(observations),
            pairs=len(pairs),
        )
        return pairs

    @staticmethod
    def pairs_from_observations(
        observations: List[RoundObservation],
    ) -> List[CoPlayPair]:
        """Bucket observations by (server, timestamp) and pair the players.

        A player observed twice in the same bucket counts once (first score wins).
        """
        buckets: Dict[Tuple[str, object], Dict[str, int]] = defaultdict(dict)
        for obs in observations:
            name = obs.player_name.strip()
            if not name:
                continue
            bucket = buckets[(obs.server_guid, obs.timestamp)]
            bucket.setdefault(name, obs.score)

        pairs: List[CoPlayPair] = []
        for (server_guid, timestamp), players in buckets.items():
            if len(players) < 2:
                continue
            for p1, p2 in combinations(sorted(players), 2):
                pairs.append(
                    CoPlayPair(
                        player1=p1,
                        player2=p2,
                        timestamp=timestamp,
                        server_guid=server_guid,
                        score_diff=abs(players[p1] - players[p2]),
                    )
                )
        return pairs
