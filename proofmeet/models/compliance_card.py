# proofmeet/models/compliance_card.py
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    func,
)

from proofmeet.db.base import Base


class ComplianceCard(Base):
    """
    The Court Card: immutable attendance verdict for a single completed
    session, linked into the participant's hash chain.

    Only `is_tampered` may change after creation.
    """

    __tablename__ = "compliance_cards"

    id = Column(Integer, primary_key=True, index=True)

    card_number = Column(String(64), nullable=False, index=True)

    session_id = Column(
        Integer,
        ForeignKey("attendance_sessions.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )

    participant_id = Column(String(128), nullable=False, index=True)
    participant_name = Column(String(255), nullable=True)
    case_number = Column(String(64), nullable=True)

    meeting_id = Column(String(128), nullable=False)
    meeting_name = Column(String(255), nullable=False)
    meeting_date = Column(DateTime(timezone=True), nullable=False)
    meeting_duration_minutes = Column(Integer, nullable=False)
    join_time = Column(DateTime(timezone=True), nullable=False)
    leave_time = Column(DateTime(timezone=True), nullable=False)

    total_duration_min = Column(Integer, nullable=False, default=0)
    active_duration_min = Column(Integer, nullable=False, default=0)
    idle_duration_min = Column(Integer, nullable=False, default=0)
    attendance_percent = Column(Float, nullable=False, default=0.0)

    engagement_score = Column(Integer, nullable=False, default=0)
    engagement_level = Column(String(16), nullable=False)
    engagement_recommendation = Column(String(32), nullable=False)
    engagement_flags = Column(JSON, nullable=False, default=list)

    validation_status = Column(
        String(16),
        nullable=False,
        default="PENDING",
        index=True,
    )
    violations = Column(JSON, nullable=False, default=list)
    confidence_level = Column(String(16), nullable=False, default="LOW")

    fraud_risk_score = Column(Integer, nullable=False, default=0)
    fraud_recommendation = Column(String(32), nullable=False, default="APPROVE")
    fraud_rules = Column(JSON, nullable=False, default=list)
    fraud_reasons = Column(JSON, nullable=False, default=list)

    content_hash = Column(String(64), nullable=False)
    chain_hash = Column(String(64), nullable=False)
    previous_card_hash = Column(String(64), nullable=True)
    chain_position = Column(Integer, nullable=False)

    is_tampered = Column(Boolean, nullable=False, default=False)

    generated_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint(
            "participant_id",
            "chain_position",
            name="uq_compliance_cards_participant_position",
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<ComplianceCard id={self.id} card_number={self.card_number} "
            f"session_id={self.session_id} status={self.validation_status} "
            f"position={self.chain_position}>"
        )
