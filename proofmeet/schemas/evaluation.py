# proofmeet/schemas/evaluation.py
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class EngagementLevel(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    SUSPICIOUS = "SUSPICIOUS"


class Recommendation(str, Enum):
    APPROVE = "APPROVE"
    FLAG_FOR_REVIEW = "FLAG_FOR_REVIEW"
    REJECT = "REJECT"


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    INFO = "INFO"


class ValidationStatus(str, Enum):
    PENDING = "PENDING"
    PASSED = "PASSED"
    FAILED = "FAILED"


class ConfidenceLevel(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class AwayPeriod(BaseModel):
    """
    A LEAVE mark and the REJOIN (or session end) that closed it.
    """

    left_at: datetime
    returned_at: datetime
    minutes: int = Field(..., ge=0)
    closed_by_rejoin: bool = Field(
        ...,
        description="False when the participant never rejoined and the session end closed the gap.",
    )


class DurationBreakdown(BaseModel):
    """
    Durations derived from authoritative join/leave timestamps and the
    LEAVE/REJOIN marks of the timeline.

    `active_duration_min + idle_duration_min == total_duration_min` always holds.
    """

    total_duration_min: int = Field(..., ge=0, examples=[50])
    active_duration_min: int = Field(..., ge=0, examples=[30])
    idle_duration_min: int = Field(..., ge=0, examples=[20])
    attendance_percent: float = Field(
        ...,
        ge=0.0,
        le=100.0,
        description="Attended minutes over scheduled minutes, capped at 100.",
        examples=[83.33],
    )
    away_periods: list[AwayPeriod] = Field(default_factory=list)


class EngagementDetails(BaseModel):
    focus_time_percent: float = 0.0
    activity_rate: float = Field(0.0, description="ACTIVE events per attended minute.")
    focus_score: float = 0.0
    activity_rate_score: float = 0.0
    audio_video_score: float = 0.0
    consistency_score: float = 0.0
    engagement_pattern: str = "NO_ACTIVITY"


class EngagementAnalysis(BaseModel):
    score: int = Field(..., ge=0, le=100)
    level: EngagementLevel
    flags: list[str] = Field(default_factory=list)
    recommendation: Recommendation
    details: EngagementDetails = Field(default_factory=EngagementDetails)


class Violation(BaseModel):
    type: str = Field(..., examples=["INSUFFICIENT_ATTENDANCE"])
    severity: Severity
    message: str


class ComplianceVerdict(BaseModel):
    """
    Result of the compliance validator. A FAILED status is a valid outcome,
    not an error.
    """

    status: ValidationStatus
    violations: list[Violation] = Field(default_factory=list)

    @property
    def violation_types(self) -> list[str]:
        return [v.type for v in self.violations]


class FraudSeverity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class FraudFinding(BaseModel):
    rule: str = Field(..., examples=["IMPOSSIBLE_DURATION"])
    severity: FraudSeverity
    action: Recommendation
    description: str


class FraudAssessment(BaseModel):
    """
    Informational fraud-risk view of a session. Stored on the card next to
    the verdict; it never changes PASSED/FAILED.
    """

    risk_score: int = Field(0, ge=0, le=100)
    recommendation: Recommendation = Recommendation.APPROVE
    findings: list[FraudFinding] = Field(default_factory=list)

    @property
    def rules(self) -> list[str]:
        return [f.rule for f in self.findings]

    @property
    def reasons(self) -> list[str]:
        return [f.description for f in self.findings]
