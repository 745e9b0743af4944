# proofmeet/services/fraud_detection.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, List, Optional, Sequence

from proofmeet.schemas.activity import ActivityEvent, ActivityKind
from proofmeet.schemas.evaluation import (
    DurationBreakdown,
    EngagementAnalysis,
    FraudAssessment,
    FraudFinding,
    FraudSeverity,
    Recommendation,
)

logger = logging.getLogger(__name__)


SEVERITY_WEIGHTS = {
    FraudSeverity.CRITICAL: 40,
    FraudSeverity.HIGH: 25,
    FraudSeverity.MEDIUM: 15,
    FraudSeverity.LOW: 5,
}

WEBHOOK_VERIFICATION_METHODS = ("ZOOM_WEBHOOK", "BOTH")

# Events arriving faster than the monitor heartbeat with near-zero jitter
# (variance in ms^2) look scripted.
HEARTBEAT_INTERVAL_MS = 30_000
MAX_BOT_INTERVAL_VARIANCE = 100.0
MIN_PATTERN_INTERVALS = 11


@dataclass(frozen=True)
class FraudContext:
    durations: DurationBreakdown
    engagement: EngagementAnalysis
    events: Sequence[ActivityEvent]
    scheduled_minutes: int
    verification_method: Optional[str]


@dataclass(frozen=True)
class FraudRule:
    name: str
    description: str
    severity: FraudSeverity
    action: Recommendation
    check: Callable[[FraudContext], bool]


def _has_scripted_timing(ctx: FraudContext) -> bool:
    stamps = [e.timestamp for e in ctx.events]
    intervals = [(b - a) // timedelta(milliseconds=1) for a, b in zip(stamps, stamps[1:])]
    if len(intervals) < MIN_PATTERN_INTERVALS:
        return False
    mean = sum(intervals) / len(intervals)
    variance = sum((i - mean) ** 2 for i in intervals) / len(intervals)
    return variance < MAX_BOT_INTERVAL_VARIANCE and mean < HEARTBEAT_INTERVAL_MS


def _idle_fraction(ctx: FraudContext) -> float:
    total = ctx.durations.total_duration_min
    return ctx.durations.idle_duration_min / total if total > 0 else 0.0


FRAUD_RULES: List[FraudRule] = [
    FraudRule(
        name="IMPOSSIBLE_DURATION",
        description="Duration exceeds the scheduled meeting time by more than 15 minutes",
        severity=FraudSeverity.CRITICAL,
        action=Recommendation.REJECT,
        check=lambda ctx: ctx.durations.total_duration_min > ctx.scheduled_minutes + 15,
    ),
    FraudRule(
        name="ZERO_DURATION",
        description="No attendance duration recorded",
        severity=FraudSeverity.CRITICAL,
        action=Recommendation.REJECT,
        check=lambda ctx: ctx.durations.total_duration_min == 0,
    ),
    FraudRule(
        name="INSUFFICIENT_DURATION",
        description="Duration is below the 5 minute minimum",
        severity=FraudSeverity.HIGH,
        action=Recommendation.FLAG_FOR_REVIEW,
        check=lambda ctx: 0 < ctx.durations.total_duration_min < 5,
    ),
    FraudRule(
        name="NO_ENGAGEMENT_SIGNALS",
        description="Zero activity detected during the entire meeting",
        severity=FraudSeverity.CRITICAL,
        action=Recommendation.REJECT,
        check=lambda ctx: (
            ctx.durations.total_duration_min > 10
            and not any(e.kind is ActivityKind.ACTIVE for e in ctx.events)
        ),
    ),
    FraudRule(
        name="LOW_ENGAGEMENT_SCORE",
        description="Engagement score below 30 indicates likely absence",
        severity=FraudSeverity.HIGH,
        action=Recommendation.FLAG_FOR_REVIEW,
        check=lambda ctx: ctx.engagement.score < 30,
    ),
    FraudRule(
        name="SUSPICIOUS_ACTIVITY_PATTERN",
        description="Activity arrives at machine-regular intervals faster than the heartbeat",
        severity=FraudSeverity.HIGH,
        action=Recommendation.FLAG_FOR_REVIEW,
        check=_has_scripted_timing,
    ),
    FraudRule(
        name="RAPID_JOIN_LEAVE_CYCLES",
        description="More than 5 leave/rejoin marks in one session",
        severity=FraudSeverity.MEDIUM,
        action=Recommendation.FLAG_FOR_REVIEW,
        check=lambda ctx: sum(
            1 for e in ctx.events if e.kind in (ActivityKind.LEAVE, ActivityKind.REJOIN)
        ) > 5,
    ),
    FraudRule(
        name="MISSING_VERIFICATION_DATA",
        description="No webhook-sourced join/leave data received",
        severity=FraudSeverity.MEDIUM,
        action=Recommendation.FLAG_FOR_REVIEW,
        check=lambda ctx: (
            ctx.verification_method not in WEBHOOK_VERIFICATION_METHODS
            and ctx.durations.total_duration_min > 15
        ),
    ),
    FraudRule(
        name="ATTENDANCE_BELOW_THRESHOLD",
        description="Attendance percentage below the 80% threshold",
        severity=FraudSeverity.HIGH,
        action=Recommendation.FLAG_FOR_REVIEW,
        check=lambda ctx: ctx.durations.attendance_percent < 80.0,
    ),
    FraudRule(
        name="EXTREMELY_HIGH_IDLE_TIME",
        description="Idle time exceeds 50% of the attended time",
        severity=FraudSeverity.MEDIUM,
        action=Recommendation.FLAG_FOR_REVIEW,
        check=lambda ctx: _idle_fraction(ctx) > 0.5,
    ),
]


class FraudRiskAssessor:
    """
    Rule-based fraud risk for a finalized session.

    Scoring
    -------
    - Every triggered rule adds its severity weight
      (CRITICAL 40, HIGH 25, MEDIUM 15, LOW 5).
    - An engagement recommendation of REJECT adds 25 (ENGAGEMENT_ANALYSIS_FAILED),
      FLAG_FOR_REVIEW adds 15 (ENGAGEMENT_CONCERNS).
    - The score is capped at 100.

    Recommendation: REJECT if any finding carries a REJECT action,
    FLAG_FOR_REVIEW if anything was found or the score exceeds 50,
    APPROVE otherwise.

    The assessment is informational. The compliance verdict is decided by
    the validator alone.
    """

    FLAG_SCORE_THRESHOLD = 50

    @staticmethod
    def assess(
        durations: DurationBreakdown,
        engagement: EngagementAnalysis,
        events: Sequence[ActivityEvent],
        scheduled_minutes: int,
        verification_method: Optional[str],
        rules: Sequence[FraudRule] = FRAUD_RULES,
    ) -> FraudAssessment:
        ctx = FraudContext(
            durations=durations,
            engagement=engagement,
            events=list(events),
            scheduled_minutes=scheduled_minutes,
            verification_method=verification_method,
        )

        findings: List[FraudFinding] = []
        risk_score = 0

        for rule in rules:
            if rule.check(ctx):
                findings.append(
                    FraudFinding(
                        rule=rule.name,
                        severity=rule.severity,
                        action=rule.action,
                        description=rule.description,
                    )
                )
                risk_score += SEVERITY_WEIGHTS[rule.severity]

        flags = ", ".join(engagement.flags) or "none"
        if engagement.recommendation is Recommendation.REJECT:
            findings.append(
                FraudFinding(
                    rule="ENGAGEMENT_ANALYSIS_FAILED",
                    severity=FraudSeverity.HIGH,
                    action=Recommendation.REJECT,
                    description=f"Engagement score {engagement.score} with flags: {flags}",
                )
            )
            risk_score += 25
        elif engagement.recommendation is Recommendation.FLAG_FOR_REVIEW:
            findings.append(
                FraudFinding(
                    rule="ENGAGEMENT_CONCERNS",
                    severity=FraudSeverity.MEDIUM,
                    action=Recommendation.FLAG_FOR_REVIEW,
                    description=f"Engagement score {engagement.score}: {flags}",
                )
            )
            risk_score += 15

        risk_score = min(risk_score, 100)

        if any(f.action is Recommendation.REJECT for f in findings):
            recommendation = Recommendation.REJECT
        elif findings or risk_score > FraudRiskAssessor.FLAG_SCORE_THRESHOLD:
            recommendation = Recommendation.FLAG_FOR_REVIEW
        else:
            recommendation = Recommendation.APPROVE

        if findings:
            logger.warning(
                "Fraud rules triggered (risk %d, %s): %s",
                risk_score,
                recommendation.value,
                ", ".join(f.rule for f in findings),
            )

        return FraudAssessment(
            risk_score=risk_score,
            recommendation=recommendation,
            findings=findings,
        )
