# proofmeet/services/integrity_chain.py
from __future__ import annotations

import hashlib
import json
from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

from pydantic import BaseModel, Field

from proofmeet.core.exceptions import IntegrityViolation
from proofmeet.utils.timestamps import canonical_timestamp

GENESIS_MARKER = "0"


class CardHashFields(BaseModel):
    """
    Every stored card field except the chain bookkeeping (hashes, position),
    the tamper flag and the generation timestamp.
    """

    card_number: str
    session_id: int
    participant_id: str
    participant_name: Optional[str] = None
    case_id: Optional[str] = None
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
    engagement_level: str
    engagement_recommendation: str
    engagement_flags: List[str] = Field(default_factory=list)

    validation_status: str
    violations: List[Dict[str, Any]] = Field(default_factory=list)
    confidence_level: str

    fraud_risk_score: int = 0
    fraud_recommendation: str = "APPROVE"
    fraud_rules: List[str] = Field(default_factory=list)
    fraud_reasons: List[str] = Field(default_factory=list)

    def canonical_payload(self) -> Dict[str, Any]:
        return {
            "cardNumber": self.card_number,
            "sessionId": self.session_id,
            "participantId": self.participant_id,
            "participantName": self.participant_name,
            "caseId": self.case_id,
            "meetingId": self.meeting_id,
            "meetingName": self.meeting_name,
            "meetingDate": canonical_timestamp(self.meeting_date),
            "meetingDurationMinutes": int(self.meeting_duration_minutes),
            "joinTime": canonical_timestamp(self.join_time),
            "leaveTime": canonical_timestamp(self.leave_time),
            "totalDurationMin": int(self.total_duration_min),
            "activeDurationMin": int(self.active_duration_min),
            "idleDurationMin": int(self.idle_duration_min),
            "attendancePercent": float(self.attendance_percent),
            "engagementScore": int(self.engagement_score),
            "engagementLevel": self.engagement_level,
            "engagementRecommendation": self.engagement_recommendation,
            "engagementFlags": list(self.engagement_flags),
            "validationStatus": self.validation_status,
            "violations": [
                {
                    "type": str(v.get("type")),
                    "severity": str(v.get("severity")),
                    "message": str(v.get("message")),
                }
                for v in self.violations
            ],
            "confidenceLevel": self.confidence_level,
            "fraudRiskScore": int(self.fraud_risk_score),
            "fraudRecommendation": self.fraud_recommendation,
            "fraudRules": list(self.fraud_rules),
            "fraudReasons": list(self.fraud_reasons),
        }


class ChainLink(BaseModel):
    content_hash: str
    chain_hash: str
    chain_position: int = Field(..., ge=1)
    previous_card_hash: Optional[str] = None


class ChainedCard(Protocol):
    """
    Anything stored in a chain: the ORM card or its read schema.
    """

    id: Any
    card_number: str
    session_id: int
    participant_id: str
    participant_name: Optional[str]
    case_number: Optional[str]
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
    engagement_level: Any
    engagement_recommendation: Any
    engagement_flags: List[str]
    validation_status: Any
    violations: List[Any]
    confidence_level: Any
    fraud_risk_score: int
    fraud_recommendation: Any
    fraud_rules: List[str]
    fraud_reasons: List[str]
    content_hash: str
    chain_hash: str
    previous_card_hash: Optional[str]
    chain_position: int


def canonical_json(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def sha256_hex(data: str) -> str:
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def compute_content_hash(fields: CardHashFields) -> str:
    return sha256_hex(canonical_json(fields.canonical_payload()))


def compute_chain_hash(previous_card_hash: Optional[str], content_hash: str) -> str:
    return sha256_hex(f"{previous_card_hash or GENESIS_MARKER}:{content_hash}")


def _plain(value: Any) -> Any:
    # Enum members from the read schema hash like their stored strings.
    return getattr(value, "value", value)


def _plain_violation(violation: Any) -> Dict[str, Any]:
    if isinstance(violation, BaseModel):
        return violation.model_dump(mode="json")
    return dict(violation)


def hash_fields_from_card(card: ChainedCard) -> CardHashFields:
    return CardHashFields(
        card_number=card.card_number,
        session_id=card.session_id,
        participant_id=card.participant_id,
        participant_name=card.participant_name,
        case_id=card.case_number,
        meeting_id=card.meeting_id,
        meeting_name=card.meeting_name,
        meeting_date=card.meeting_date,
        meeting_duration_minutes=card.meeting_duration_minutes,
        join_time=card.join_time,
        leave_time=card.leave_time,
        total_duration_min=card.total_duration_min,
        active_duration_min=card.active_duration_min,
        idle_duration_min=card.idle_duration_min,
        attendance_percent=card.attendance_percent,
        engagement_score=card.engagement_score,
        engagement_level=_plain(card.engagement_level),
        engagement_recommendation=_plain(card.engagement_recommendation),
        engagement_flags=list(card.engagement_flags or []),
        validation_status=_plain(card.validation_status),
        violations=[_plain_violation(v) for v in card.violations or []],
        confidence_level=_plain(card.confidence_level),
        fraud_risk_score=card.fraud_risk_score,
        fraud_recommendation=_plain(card.fraud_recommendation),
        fraud_rules=list(card.fraud_rules or []),
        fraud_reasons=list(card.fraud_reasons or []),
    )


class IntegrityChainBuilder:
    """
    Append-only hash chain over a participant's cards.

    A stored hash is never recomputed to match new data: a mismatch is
    evidence of tampering and is reported, not corrected.
    """

    @staticmethod
    def link(
        fields: CardHashFields,
        previous_card_hash: Optional[str],
        prior_card_count: int,
    ) -> ChainLink:
        if prior_card_count < 0:
            raise ValueError("prior_card_count must not be negative")
        if prior_card_count == 0 and previous_card_hash is not None:
            raise ValueError("the first card of a chain cannot have a predecessor")
        if prior_card_count > 0 and previous_card_hash is None:
            raise ValueError("a non-first card must link to its predecessor")

        content_hash = compute_content_hash(fields)
        return ChainLink(
            content_hash=content_hash,
            chain_hash=compute_chain_hash(previous_card_hash, content_hash),
            chain_position=prior_card_count + 1,
            previous_card_hash=previous_card_hash,
        )

    @staticmethod
    def verify_content(card: ChainedCard) -> str:
        """
        Recompute the card's content hash from its own fields.

        Returns the recomputed hash, raises IntegrityViolation on mismatch.
        """
        recomputed = compute_content_hash(hash_fields_from_card(card))
        if recomputed != card.content_hash:
            raise IntegrityViolation(
                expected_hash=recomputed,
                stored_hash=card.content_hash,
                card_id=card.id,
            )
        return recomputed

    @staticmethod
    def replay(cards: Sequence[ChainedCard]) -> List[str]:
        """
        Replay a participant's chain, ordered by position, and list every
        broken invariant. An empty list means the chain is intact.
        """
        errors: List[str] = []
        ordered = sorted(cards, key=lambda c: c.chain_position)

        previous: Optional[ChainedCard] = None
        for expected_position, card in enumerate(ordered, start=1):
            label = f"card {card.id} (position {card.chain_position})"

            if card.chain_position != expected_position:
                errors.append(f"{label}: expected chain position {expected_position}")

            if previous is None:
                if card.previous_card_hash not in (None, GENESIS_MARKER):
                    errors.append(f"{label}: first card must not reference a previous hash")
            elif card.previous_card_hash != previous.content_hash:
                errors.append(
                    f"{label}: previous hash does not match content hash of card {previous.id}"
                )

            if card.chain_hash != compute_chain_hash(card.previous_card_hash, card.content_hash):
                errors.append(f"{label}: chain hash does not match its links")

            try:
                IntegrityChainBuilder.verify_content(card)
            except IntegrityViolation:
                errors.append(f"{label}: content hash does not match stored fields (tampered)")

            previous = card

        return errors
