# proofmeet/api/routes/participants.py
from typing import List

from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from proofmeet.db.session import get_db
from proofmeet.schemas.compliance_card import (
    ChainVerification,
    ComplianceCardRead,
    ParticipantComplianceSummary,
)
from proofmeet.services.card_verification import list_participant_cards, verify_chain
from proofmeet.services.participant_summary import compute_participant_summary

router = APIRouter(prefix="/participants", tags=["Participants"])


@router.get(
    "/{participant_id}/cards",
    response_model=List[ComplianceCardRead],
    summary="List a participant's court cards in chain order",
    description=(
        "Returns every court card of the participant ordered by `chain_position` "
        "ascending. An unknown participant yields an empty list."
    ),
)
async def get_participant_cards(
    participant_id: str = Path(..., min_length=1, description="Participant identifier."),
    db: AsyncSession = Depends(get_db),
) -> List[ComplianceCardRead]:
    cards = await list_participant_cards(db, participant_id)
    return [ComplianceCardRead.model_validate(card) for card in cards]


@router.get(
    "/{participant_id}/chain/verify",
    response_model=ChainVerification,
    summary="Verify a participant's chain of trust",
    description=(
        "Replays the participant's cards in position order and checks that:\n\n"
        "- positions run 1..N without gaps\n"
        "- every card links to the content hash of its predecessor\n"
        "- every chain hash and content hash recomputes\n\n"
        "An empty chain is valid."
    ),
    responses={
        200: {
            "description": "Chain verification result.",
            "content": {
                "application/json": {
                    "example": {
                        "participant_id": "p-123",
                        "chain_length": 2,
                        "is_valid": False,
                        "errors": [
                            "card 2 (position 2): previous hash does not match "
                            "content hash of card 1"
                        ],
                    }
                }
            },
        }
    },
)
async def verify_participant_chain(
    participant_id: str = Path(..., min_length=1, description="Participant identifier."),
    db: AsyncSession = Depends(get_db),
) -> ChainVerification:
    return await verify_chain(db, participant_id)


@router.get(
    "/{participant_id}/summary",
    response_model=ParticipantComplianceSummary,
    summary="Compliance summary for a participant",
    description=(
        "Aggregates the participant's cards: PASSED / FAILED / tampered counts, total "
        "hours attended and the compliance percentage."
    ),
)
async def get_participant_summary(
    participant_id: str = Path(..., min_length=1, description="Participant identifier."),
    db: AsyncSession = Depends(get_db),
) -> ParticipantComplianceSummary:
    return await compute_participant_summary(db, participant_id)
