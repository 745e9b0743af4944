# proofmeet/api/routes/cards.py
from http import HTTPStatus

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.ext.asyncio import AsyncSession

from proofmeet.core.exceptions import CardNotFoundError
from proofmeet.db.session import get_db
from proofmeet.schemas.compliance_card import CardVerification, ComplianceCardRead
from proofmeet.services.card_verification import get_card_or_raise, verify_card

router = APIRouter(prefix="/cards", tags=["Court Cards"])


@router.get(
    "/{card_id}",
    response_model=ComplianceCardRead,
    summary="Get a court card",
    description="Returns the stored court card exactly as persisted at finalization.",
    responses={404: {"description": "Card not found."}},
)
async def get_card(
    card_id: int = Path(..., ge=1, description="Numeric ID of the court card."),
    db: AsyncSession = Depends(get_db),
) -> ComplianceCardRead:
    try:
        card = await get_card_or_raise(db, card_id)
    except CardNotFoundError as exc:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail=str(exc))
    return ComplianceCardRead.model_validate(card)


@router.post(
    "/{card_id}/verify",
    response_model=CardVerification,
    summary="Verify a court card's content hash",
    description=(
        "Recomputes the content hash from the card's stored fields and compares it to "
        "the stored hash.\n\n"
        "- Match: `is_valid = true` (unless the card was flagged before)\n"
        "- Mismatch: the card is flagged `is_tampered = true` permanently and "
        "`is_valid = false`"
    ),
    responses={
        200: {
            "description": "Verification result.",
            "content": {
                "application/json": {
                    "example": {
                        "card_id": 1,
                        "card_number": "CC-2025-12345-001",
                        "is_valid": True,
                        "is_tampered": False,
                        "stored_hash": "9f2c...",
                        "recomputed_hash": "9f2c...",
                    }
                }
            },
        },
        404: {"description": "Card not found."},
    },
)
async def verify(
    card_id: int = Path(..., ge=1, description="Numeric ID of the court card."),
    db: AsyncSession = Depends(get_db),
) -> CardVerification:
    try:
        return await verify_card(db, card_id)
    except CardNotFoundError as exc:
        raise HTTPException(status_code=HTTPStatus.NOT_FOUND, detail=str(exc))
