"""
Delivery: card persistence and review sessions.

Components:
- CardStore: JSON sidecar persistence with atomic rewrites
- StudySession: Selecting -> Reviewing -> Complete session state machine
- transcript: Markdown session reports under .sessions/
"""

from .session import ReviewOutcome, SessionMode, SessionPhase, SessionStateError, SortOrder, StudySession
from .state_store import CardReadError, CardStore, ReconciledCard
from .transcript import SessionCardRecord, SessionSummary, save_session_transcript

__all__ = [
    # Persistence
    "CardReadError",
    "CardStore",
    "ReconciledCard",
    # Sessions
    "StudySession",
    "SessionPhase",
    "SessionMode",
    "SortOrder",
    "SessionStateError",
    "ReviewOutcome",
    # Transcripts
    "SessionCardRecord",
    "SessionSummary",
    "save_session_transcript",
]
