# proofmeet/core/exceptions.py
from __future__ import annotations


class ProofMeetError(RuntimeError):
    """
    Base class for every structural failure raised by the compliance core.

    A FAILED validation verdict is *not* an error and never raises.
    """

    retriable: bool = False


class IncompleteSessionError(ProofMeetError):
    """
    Raised when durations are requested for a session whose authoritative
    leave time is not known yet.
    """


class NotReadyError(ProofMeetError):
    """
    Raised by finalization when the session has not been completed by the
    provider leave callback. The caller may retry later.
    """

    retriable = True

    def __init__(self, session_id: int | None, reason: str) -> None:
        self.session_id = session_id
        self.reason = reason
        super().__init__(f"Session {session_id} is not ready for finalization: {reason}")


class AnalysisError(ProofMeetError):
    """
    Raised inside the engagement scorer on malformed input. Never escapes the
    scorer; it is replaced by a safe default analysis.
    """


class IntegrityViolation(ProofMeetError):
    """
    A recomputed content hash disagrees with the stored one.
    """

    def __init__(self, expected_hash: str, stored_hash: str, card_id: int | None = None) -> None:
        self.expected_hash = expected_hash
        self.stored_hash = stored_hash
        self.card_id = card_id
        super().__init__(
            f"Content hash mismatch for card {card_id}: "
            f"stored={stored_hash} recomputed={expected_hash}"
        )


class DuplicateCardError(ProofMeetError):
    """
    Raised by the card insert when a card for the same session already exists.
    Finalization resolves it by returning the existing card.
    """

    def __init__(self, session_id: int) -> None:
        self.session_id = session_id
        super().__init__(f"A compliance card already exists for session {session_id}")


class ChainPositionConflictError(ProofMeetError):
    """
    Another card of the same participant claimed the chain position first.
    """

    retriable = True

    def __init__(self, participant_id: str, chain_position: int) -> None:
        self.participant_id = participant_id
        self.chain_position = chain_position
        super().__init__(
            f"Chain position {chain_position} for participant {participant_id} "
            "was taken concurrently"
        )


class SessionAlreadyCompletedError(ProofMeetError):
    """
    The leave callback may set leave_time and COMPLETED exactly once.
    """

    def __init__(self, session_id: int) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id} already has an authoritative leave time")


class SessionNotFoundError(LookupError):
    def __init__(self, session_id: int) -> None:
        self.session_id = session_id
        super().__init__(f"Attendance session with id={session_id} not found")


class CardNotFoundError(LookupError):
    def __init__(self, card_id: int) -> None:
        self.card_id = card_id
        super().__init__(f"Compliance card with id={card_id} not found")
