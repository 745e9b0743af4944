# proofmeet/schemas/compliance_card.py
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from proofmeet.schemas.evaluation import (
    ConfidenceLevel,
    EngagementLevel,
    Recommendation,
    ValidationStatus,
    Violation,
)


class ComplianceCardRead(BaseModel):
    """
    Public representation of a Court Card.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(..., examples=[1])
    card_number: str = Field(..., examples=["CC-2025-12345-001"])
    session_id: int
    participant_id: str
    participant_name: str | None = None
    case_number: str | None = None

    meeting_id: str
    meeting_name: str
    meeting_date: datetime
    meeting_duration_minutes: int
    join_time: datetime
    leave_time: datetime

    total_duration_min: int
    active_duration_min: int
    idle_duration_min: int
    attendance_percent: float

    engagement_score: int
    engagement_level: EngagementLevel
    engagement_recommendation: Recommendation
    engagement_flags: list[str] = Field(default_factory=list)

    validation_status: ValidationStatus
    violations: list[Violation] = Field(default_factory=list)
    confidence_level: ConfidenceLevel

    fraud_risk_score: int = Field(0, ge=0, le=100)
    fraud_recommendation: Recommendation = Recommendation.APPROVE
    fraud_rules: list[str] = Field(default_factory=list)
    fraud_reasons: list[str] = Field(default_factory=list)

    content_hash: str
    chain_hash: str
    previous_card_hash: str | None = None
    chain_position: int = Field(..., ge=1)
    is_tampered: bool = False
    generated_at: datetime | None = None


class CardVerification(BaseModel):
    """
    Result of recomputing a single card's content hash.
    """

    card_id: int
    card_number: str
    is_valid: bool
    is_tampered: bool
    stored_hash: str
    recomputed_hash: str


class ChainVerification(BaseModel):
    """
    Result of replaying a participant's whole chain of trust.
    """

    participant_id: str
    chain_length: int = 0
    is_valid: bool
    errors: list[str] = Field(default_factory=list)


class FinalizationRunSummary(BaseModel):
    """
    Summary payload returned by the /internal/run-finalization endpoint.
    """

    checked: int = Field(..., description="COMPLETED sessions without a card that were picked up.")
    finalized: int = Field(..., description="Cards created or confirmed in this run.")
    failed: int = Field(..., description="Sessions whose finalization raised and stays retriable.")
    cards: list[ComplianceCardRead] = Field(default_factory=list)


class ParticipantComplianceSummary(BaseModel):
    """
    Aggregate of a participant's court cards.
    """

    participant_id: str
    total_cards: int = 0
    passed_count: int = 0
    failed_count: int = 0
    tampered_count: int = 0
    total_hours_completed: float = Field(
        0.0,
        description="Sum of attended minutes across all cards, in hours (2 decimals).",
    )
    meeting_ids: list[str] = Field(default_factory=list)
    compliance_pct: float = Field(
        0.0,
        description="PASSED / total_cards * 100. Zero when there are no cards.",
    )
