# proofmeet/services/duration_calculator.py
from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Sequence

from proofmeet.core.exceptions import IncompleteSessionError
from proofmeet.schemas.activity import ActivityEvent, ActivityKind
from proofmeet.schemas.evaluation import AwayPeriod, DurationBreakdown
from proofmeet.utils.timestamps import ensure_utc


def _whole_minutes(start: datetime, end: datetime) -> int:
    return max(int((end - start).total_seconds() // 60), 0)


class DurationCalculator:
    """
    Derives total, active and idle minutes for one session.

    Rules
    -----
    1) total = floor((leave - join) / 60s), never negative.
    2) Every LEAVE mark opens an away period closed by the next REJOIN, or by
       the session end when no REJOIN follows. Marks are clamped to the
       [join, leave] window; a second LEAVE while already away is ignored and
       so is a REJOIN without a preceding LEAVE.
    3) idle = sum of away periods, capped at total; active = total - idle.
    4) attendance % = total / scheduled * 100, capped at 100.

    Without LEAVE/REJOIN marks all attended time is active: presence is the
    ground truth signal, not fine-grained attentiveness.
    """

    @staticmethod
    def calculate(
        join_time: datetime,
        leave_time: Optional[datetime],
        timeline: Sequence[ActivityEvent],
        meeting_duration_minutes: int,
    ) -> DurationBreakdown:
        if leave_time is None:
            raise IncompleteSessionError(
                "Duration cannot be computed before the authoritative leave time is known"
            )
        if meeting_duration_minutes <= 0:
            raise ValueError("meeting_duration_minutes must be positive")

        join = ensure_utc(join_time)
        leave = ensure_utc(leave_time)

        total = _whole_minutes(join, leave)
        periods = DurationCalculator._away_periods(join, leave, timeline)

        idle = min(sum(p.minutes for p in periods), total)
        active = total - idle

        attendance_percent = min(100.0, total / meeting_duration_minutes * 100.0)

        return DurationBreakdown(
            total_duration_min=total,
            active_duration_min=active,
            idle_duration_min=idle,
            attendance_percent=round(attendance_percent, 2),
            away_periods=periods,
        )

    @staticmethod
    def _away_periods(
        join: datetime,
        leave: datetime,
        timeline: Sequence[ActivityEvent],
    ) -> List[AwayPeriod]:
        periods: List[AwayPeriod] = []
        left_at: Optional[datetime] = None

        for event in timeline:
            if event.kind not in (ActivityKind.LEAVE, ActivityKind.REJOIN):
                continue

            at = min(max(ensure_utc(event.timestamp), join), leave)

            if event.kind is ActivityKind.LEAVE:
                if left_at is None:
                    left_at = at
            elif left_at is not None:
                periods.append(
                    AwayPeriod(
                        left_at=left_at,
                        returned_at=at,
                        minutes=_whole_minutes(left_at, at),
                        closed_by_rejoin=True,
                    )
                )
                left_at = None

        if left_at is not None:
            periods.append(
                AwayPeriod(
                    left_at=left_at,
                    returned_at=leave,
                    minutes=_whole_minutes(left_at, leave),
                    closed_by_rejoin=False,
                )
            )

        return periods
