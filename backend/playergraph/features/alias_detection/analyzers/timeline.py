"""
Activity timeline analyzer.

Looks for the account switchover pattern: one account goes quiet and the
other starts shortly after, with little or no overlap. Works on grouped
session aggregates only (one activity-period row and at most one row per
active day for each player).
"""

from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from playergraph.core.enums import SignalName
from playergraph.features.sessions.repository import SessionStoreInterface
from playergraph.features.sessions.schemas import ActivityPeriod, DailyActivity
from playergraph.utils.concurrency import gather_or_cancel
from playergraph.utils.statistics import clamp, safe_divide
from ..schemas import (
    ActivityTimeline,
    GapAnalysis,
    TimelineActivityPeriod,
    TimelineDay,
)
from .base_analyzer import BaseSignalAnalyzer

SECONDS_PER_DAY = 86400
TIMEBAR_WIDTH = 40
ACTIVE_MARK = "|"
DORMANT_MARK = "."


def _whole_days(delta: timedelta) -> int:
    """Whole days of a timedelta, truncated toward zero."""
    return int(delta.total_seconds() / SECONDS_PER_DAY)


class ActivityTimelineAnalyzer(BaseSignalAnalyzer):
    """Analyzer for activity periods, gaps and switchover suspicion."""

    def __init__(self, session_store: SessionStoreInterface):
        super().__init__(SignalName.SWITCHOVER)
        self.session_store = session_store

    async def analyze(
        self,
        player1: str,
        player2: str,
        lookback_days: int,
        now: Optional[datetime] = None,
    ) -> ActivityTimeline:
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(days=lookback_days)
        self._log_analysis_start(player1, player2, {"lookback_days": lookback_days})

        period1, period2, daily1, daily2 = await gather_or_cancel(
            self.session_store.get_activity_period(player1, since),
            self.session_store.get_activity_period(player2, since),
            self.session_store.get_daily_activity(player1, since),
            self.session_store.get_daily_activity(player2, since),
        )

        activity1 = self.build_period(period1, daily1, now)
        activity2 = self.build_period(period2, daily2, now)

        if not period1.has_activity or not period2.has_activity:
            return ActivityTimeline(
                player1_activity=activity1,
                player2_activity=activity2,
                gap=GapAnalysis(pattern_description="Insufficient data"),
                text_timeline="Not enough data",
                analysis="Need more session history",
                insufficient_data=True,
            )

        gap = self.analyze_gap(activity1, activity2)
        score = self.switchover_score(activity1, activity2, gap)
        self._log_analysis_result(
            player1,
            player2,
            score,
            {"days_between": gap.days_between, "overlap_ratio": round(gap.overlap_ratio, 4)},
        )

        return ActivityTimeline(
            player1_activity=activity1,
            player2_activity=activity2,
            gap=gap,
            player1_timeline=self._timeline_days(daily1),
            player2_timeline=self._timeline_days(daily2),
            text_timeline=self.render_text_timeline(
                activity1, activity2, gap, since.date(), lookback_days
            ),
            analysis=self.describe(activity1, activity2, gap),
            switchover_suspicion_score=score,
        )

    @staticmethod
    def build_period(
        period: ActivityPeriod, daily: List[DailyActivity], now: datetime
    ) -> TimelineActivityPeriod:
        if not period.has_activity:
            return TimelineActivityPeriod(player_name=period.player_name)

        span_days = (period.last_activity - period.first_activity).total_seconds() / SECONDS_PER_DAY
        return TimelineActivityPeriod(
            player_name=period.player_name,
            first_seen=period.first_activity,
            last_seen=period.last_activity,
            total_sessions=period.session_count,
            total_active_days=len(daily),
            total_minutes=period.total_minutes,
            days_since_last=max(0, _whole_days(now - period.last_activity)),
            avg_sessions_per_day=safe_divide(period.session_count, span_days),
        )

    @staticmethod
    def analyze_gap(
        period1: TimelineActivityPeriod, period2: TimelineActivityPeriod
    ) -> GapAnalysis:
        """Which account stopped first, how long until the other started, and overlap."""
        if period1.last_seen <= period2.last_seen:
            stopped, started = period1, period2
            stopped_label, started_label = "Player 1", "Player 2"
        else:
            stopped, started = period2, period1
            stopped_label, started_label = "Player 2", "Player 1"

        switchover_start = stopped.last_seen
        switchover_end = started.first_seen
        days_between = _whole_days(switchover_end - switchover_start)

        overlap_start = max(period1.first_seen, period2.first_seen)
        overlap_end = min(period1.last_seen, period2.last_seen)
        overlap_days = max(0.0, (overlap_end - overlap_start).total_seconds() / SECONDS_PER_DAY)
        total_span = max(
            (period1.last_seen - period1.first_seen).total_seconds(),
            (period2.last_seen - period2.first_seen).total_seconds(),
        ) / SECONDS_PER_DAY
        overlap_ratio = clamp(safe_divide(overlap_days, total_span))

        return GapAnalysis(
            days_between=days_between,
            account_stopped_first=stopped_label,
            account_started_second=started_label,
            switchover_start=switchover_start,
            switchover_end=switchover_end,
            switchover_window_days=abs(days_between),
            overlap_ratio=overlap_ratio,
            pattern_description=ActivityTimelineAnalyzer.describe_pattern(
                days_between, overlap_ratio
            ),
        )

    @staticmethod
    def describe_pattern(days_between: int, overlap_ratio: float) -> str:
        if overlap_ratio > 0.3:
            return f"Significant overlap ({overlap_ratio:.0%}) - accounts played simultaneously"
        if days_between < 0:
            return (
                f"Accounts overlapped - second account started {abs(days_between)} days "
                "before the first one ended"
            )
        if days_between == 0:
            return "Perfect handoff - one account started exactly when the other stopped"
        if days_between <= 3:
            return f"Very tight switchover - gap of only {days_between} days (highly suspicious)"
        if days_between <= 7:
            return f"Tight switchover - gap of {days_between} days (suspicious pattern)"
        if days_between <= 30:
            return f"Moderate gap - {days_between} days between accounts (possible alt)"
        return f"Large gap - {days_between} days between accounts (less suspicious)"

    @staticmethod
    def switchover_score(
        period1: TimelineActivityPeriod,
        period2: TimelineActivityPeriod,
        gap: GapAnalysis,
    ) -> float:
        """Switchover suspicion in [0, 1]."""
        score = 0.0
        if gap.overlap_ratio == 0:
            score += 0.40

        window = gap.switchover_window_days
        if window == 0:
            score += 0.40
        elif window <= 3:
            score += 0.35
        elif window <= 7:
            score += 0.25
        elif window <= 30:
            score += 0.10

        intensity_ratio = (
            period2.avg_sessions_per_day / period1.avg_sessions_per_day
            if period1.avg_sessions_per_day > 0
            else 1.0
        )
        if 0.8 < intensity_ratio < 1.2:
            score += 0.15

        session_ratio = period1.total_sessions / (period2.total_sessions + 1)
        if 0.7 < session_ratio < 1.3:
            score += 0.10

        return clamp(score)

    @staticmethod
    def describe(
        period1: TimelineActivityPeriod,
        period2: TimelineActivityPeriod,
        gap: GapAnalysis,
    ) -> str:
        parts = [
            f"Timeline: {period1.total_sessions} sessions vs {period2.total_sessions} sessions"
        ]
        if gap.overlap_ratio == 0:
            parts.append("No temporal overlap - accounts never played simultaneously")
        else:
            parts.append(f"Temporal overlap: {gap.overlap_ratio:.1%} - accounts played at same time")

        if gap.switchover_window_days <= 3:
            parts.append(
                f"Tight switchover: only {gap.switchover_window_days} day window between accounts"
            )
        elif gap.switchover_window_days <= 7:
            parts.append(
                f"Suspicious timing: {gap.switchover_window_days}-day gap suggests planned switchover"
            )

        if gap.overlap_ratio == 0 and -7 <= gap.days_between <= 3:
            parts.append("Classic pattern: clean account switchover with minimal or no overlap")
        return "; ".join(parts)

    @staticmethod
    def render_text_timeline(
        period1: TimelineActivityPeriod,
        period2: TimelineActivityPeriod,
        gap: GapAnalysis,
        start: date,
        day_range: int,
    ) -> str:
        lines = [f"Activity Timeline (last {day_range} days)", "=" * 35, ""]
        for label, period in (("Player 1", period1), ("Player 2", period2)):
            status = (
                "ACTIVE"
                if period.is_currently_active
                else f"DORMANT ({period.days_since_last} days)"
            )
            lines.extend(
                [
                    f"{label}: {period.first_seen:%Y-%m-%d} -> {period.last_seen:%Y-%m-%d}",
                    f"  Sessions: {period.total_sessions} | Active days: {period.total_active_days}",
                    f"  Status: {status}",
                    "",
                ]
            )

        lines.extend(
            [
                "Switchover Analysis:",
                f"  {gap.account_stopped_first} last seen: {gap.switchover_start:%Y-%m-%d}",
                f"  {gap.account_started_second} first seen: {gap.switchover_end:%Y-%m-%d}",
                f"  Gap: {gap.days_between} days (window: {gap.switchover_window_days} days)",
                f"  Overlap: {gap.overlap_ratio:.0%}",
                "",
                f"Timeline ({ACTIVE_MARK} = active, {DORMANT_MARK} = dormant):",
                f"Player1: {ActivityTimelineAnalyzer.timebar(period1, start, day_range)}",
                f"Player2: {ActivityTimelineAnalyzer.timebar(period2, start, day_range)}",
            ]
        )
        return "\n".join(lines)

    @staticmethod
    def timebar(
        period: TimelineActivityPeriod,
        start: date,
        day_range: int,
        width: int = TIMEBAR_WIDTH,
    ) -> str:
        bar = [DORMANT_MARK] * width
        if day_range > 0 and period.first_seen and period.last_seen:
            first_offset = max(0, (period.first_seen.date() - start).days)
            last_offset = min(day_range - 1, (period.last_seen.date() - start).days)
            for offset in range(first_offset, last_offset + 1):
                bar[min(width - 1, offset * width // day_range)] = ACTIVE_MARK
        return "[" + "".join(bar) + "]"

    @staticmethod
    def _timeline_days(daily: List[DailyActivity]) -> List[TimelineDay]:
        return [
            TimelineDay(
                day=d.day, session_count=d.session_count, total_minutes=d.total_minutes
            )
            for d in daily
        ]
