"""In-memory relationship tally owned by a single sync run."""

from typing import Dict, Iterable, List, Set, Tuple

from .schemas import CoPlayPair, RelationshipMetrics

PairKey = Tuple[str, str]


def metrics_for_round(
    pairs: Iterable[CoPlayPair], observation_interval_seconds: int
) -> Dict[PairKey, RelationshipMetrics]:
    """Collapse one round's co-play pairs into one metrics entry per pair.

    Each round contributes one session per pair; minutes are the number of
    shared observation ticks times the poll interval.
    """
    per_pair: Dict[PairKey, RelationshipMetrics] = {}
    minutes_per_tick = observation_interval_seconds / 60.0

    for pair in pairs:
        key = (pair.player1, pair.player2)
        metrics = per_pair.get(key)
        if metrics is None:
            per_pair[key] = RelationshipMetrics(
                player1=pair.player1,
                player2=pair.player2,
                observation_count=1,
                session_count=1,
                total_minutes=minutes_per_tick,
                first_seen=pair.timestamp,
                last_seen=pair.timestamp,
                server_guids={pair.server_guid},
                score_diff_total=pair.score_diff,
            )
            continue

        metrics.observation_count += 1
        metrics.total_minutes += minutes_per_tick
        metrics.first_seen = min(metrics.first_seen, pair.timestamp)
        metrics.last_seen = max(metrics.last_seen, pair.timestamp)
        metrics.server_guids.add(pair.server_guid)
        metrics.score_diff_total += pair.score_diff

    return per_pair


class RelationshipTally:
    """Pending relationship metrics between two flushes.

    Contributions are kept per round so a failed batch can be retried one
    round at a time.
    """

    def __init__(self) -> None:
        self._rounds: Dict[str, Dict[PairKey, RelationshipMetrics]] = {}
        self._pair_keys: Set[PairKey] = set()

    def add_round(
        self, round_id: str, per_pair: Dict[PairKey, RelationshipMetrics]
    ) -> None:
        self._rounds[round_id] = per_pair
        self._pair_keys.update(per_pair)

    @property
    def round_count(self) -> int:
        return len(self._rounds)

    @property
    def relationship_count(self) -> int:
        return len(self._pair_keys)

    @property
    def round_ids(self) -> List[str]:
        return list(self._rounds)

    def is_empty(self) -> bool:
        return not self._rounds

    def round_metrics(self, round_id: str) -> List[RelationshipMetrics]:
        return list(self._rounds.get(round_id, {}).values())

    def merged(self) -> List[RelationshipMetrics]:
        """All pending contributions merged into one entry per pair."""
        merged: Dict[PairKey, RelationshipMetrics] = {}
        for per_pair in self._rounds.values():
            for key, metrics in per_pair.items():
                existing = merged.get(key)
                if existing is None:
                    merged[key] = metrics.model_copy(
                        update={"server_guids": set(metrics.server_guids)}
                    )
                else:
                    existing.absorb(metrics)
        return list(merged.values())

    def clear(self) -> None:
        self._rounds.clear()
        self._pair_keys.clear()
