# proofmeet/services/compliance_validator.py
from __future__ import annotations

from typing import List, Sequence

from proofmeet.schemas.evaluation import (
    ComplianceVerdict,
    ConfidenceLevel,
    DurationBreakdown,
    EngagementAnalysis,
    Severity,
    ValidationStatus,
    Violation,
)

INSUFFICIENT_ATTENDANCE = "INSUFFICIENT_ATTENDANCE"
EXCESSIVE_IDLE_TIME = "EXCESSIVE_IDLE_TIME"
MISSING_VERIFICATION_DATA = "MISSING_VERIFICATION_DATA"
LOW_ATTENDANCE_WARNING = "LOW_ATTENDANCE_WARNING"


class ComplianceValidator:
    """
    Applies the attendance rules to a DurationBreakdown and EngagementAnalysis.

    Rules (evaluated in order, each adds at most one violation)
    ------------------------------------------------------------
    1) attendance < 80%                      => CRITICAL INSUFFICIENT_ATTENDANCE
    2) idle > 30% of attended time           => WARNING  EXCESSIVE_IDLE_TIME
       (suppressed entirely when engagement score >= 90)
    3) no webhook-sourced join/leave and no
       activity monitoring at all            => WARNING  MISSING_VERIFICATION_DATA
    4) 80% <= attendance < 90%               => INFO     LOW_ATTENDANCE_WARNING

    Verdict
    -------
    PASSED iff no CRITICAL violation is present. WARNING and INFO never fail a
    session on their own.
    """

    MIN_ATTENDANCE_PERCENT = 80.0
    RECOMMENDED_ATTENDANCE_PERCENT = 90.0
    MAX_IDLE_FRACTION = 0.3
    IDLE_OVERRIDE_ENGAGEMENT_SCORE = 90

    @staticmethod
    def evaluate(
        durations: DurationBreakdown,
        engagement: EngagementAnalysis,
        has_verification_data: bool = True,
    ) -> ComplianceVerdict:
        violations: List[Violation] = []
        cls = ComplianceValidator

        attendance = durations.attendance_percent
        total = durations.total_duration_min
        idle = durations.idle_duration_min

        # Rule 1: Not enough of the scheduled meeting attended
        if attendance < cls.MIN_ATTENDANCE_PERCENT:
            violations.append(
                Violation(
                    type=INSUFFICIENT_ATTENDANCE,
                    severity=Severity.CRITICAL,
                    message=(
                        f"Attended {total} minutes ({attendance:.1f}% of the scheduled meeting). "
                        f"Required: {cls.MIN_ATTENDANCE_PERCENT:.0f}%."
                    ),
                )
            )

        # Rule 2: Too much time away, unless engagement evidence outweighs it
        if (
            idle > cls.MAX_IDLE_FRACTION * total
            and engagement.score < cls.IDLE_OVERRIDE_ENGAGEMENT_SCORE
        ):
            idle_percent = (idle / total * 100.0) if total > 0 else 0.0
            violations.append(
                Violation(
                    type=EXCESSIVE_IDLE_TIME,
                    severity=Severity.WARNING,
                    message=(
                        f"Idle for {idle} minutes ({idle_percent:.1f}% of attendance). "
                        f"Maximum expected: {cls.MAX_IDLE_FRACTION * 100:.0f}%."
                    ),
                )
            )

        # Rule 3: Nothing corroborates the attendance
        if not has_verification_data:
            violations.append(
                Violation(
                    type=MISSING_VERIFICATION_DATA,
                    severity=Severity.WARNING,
                    message="No webhook-sourced join/leave times and no activity monitoring received.",
                )
            )

        # Rule 4: Acceptable but below the recommended level
        if cls.MIN_ATTENDANCE_PERCENT <= attendance < cls.RECOMMENDED_ATTENDANCE_PERCENT:
            violations.append(
                Violation(
                    type=LOW_ATTENDANCE_WARNING,
                    severity=Severity.INFO,
                    message=(
                        f"Attendance {attendance:.1f}% is acceptable but below the recommended "
                        f"{cls.RECOMMENDED_ATTENDANCE_PERCENT:.0f}%."
                    ),
                )
            )

        return ComplianceVerdict(
            status=cls.status_for(violations),
            violations=violations,
        )

    @staticmethod
    def status_for(violations: Sequence[Violation]) -> ValidationStatus:
        """
        Deterministic verdict for a violation set.
        """
        if any(v.severity is Severity.CRITICAL for v in violations):
            return ValidationStatus.FAILED
        return ValidationStatus.PASSED

    @staticmethod
    def confidence_level(
        durations: DurationBreakdown,
        status: ValidationStatus,
    ) -> ConfidenceLevel:
        """
        Coarse confidence shown on the card next to the verdict.
        """
        if status is ValidationStatus.FAILED:
            return ConfidenceLevel.LOW
        if (
            durations.attendance_percent >= 95.0
            and durations.active_duration_min >= durations.total_duration_min * 0.95
        ):
            return ConfidenceLevel.HIGH
        if durations.attendance_percent >= ComplianceValidator.MIN_ATTENDANCE_PERCENT:
            return ConfidenceLevel.MEDIUM
        return ConfidenceLevel.LOW
