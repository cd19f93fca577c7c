"""Schemas module initialization."""

from schemas.poll import (
    CloseOutcome,
    CloseRequest,
    CloseResponse,
    CloseStatus,
    ElectionFinalize,
    ElectionFinalizeResponse,
    PollActionResponse,
    ReconcileOutcome,
    ReconcileResponse,
    ReconcileStatus,
)
from schemas.vote import VoteCreate, VoteResult

__all__ = [
    "CloseOutcome",
    "CloseRequest",
    "CloseResponse",
    "CloseStatus",
    "ElectionFinalize",
    "ElectionFinalizeResponse",
    "PollActionResponse",
    "ReconcileOutcome",
    "ReconcileResponse",
    "ReconcileStatus",
    "VoteCreate",
    "VoteResult",
]
