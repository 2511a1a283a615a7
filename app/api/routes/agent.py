"""
Agent API Endpoint.

Accepts one caller utterance per request and returns the reply text.

Each session id gets its own Orchestrator and therefore its own office
context cache. Sessions live in a bounded in-memory map; the oldest is
evicted once the limit is reached.
"""

import logging
import uuid
from collections import OrderedDict
from typing import Literal, Optional

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from app.config import settings
from app.core.scheduling.orchestrator import Orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/agent", tags=["Agent"])


class ConversationTurn(BaseModel):
    """One prior turn of the conversation."""

    role: Literal["user", "assistant"]
    content: str


class UtteranceRequest(BaseModel):
    """Caller utterance request."""

    text: str = Field(
        ...,
        min_length=1,
        max_length=2000,
        description="Caller's utterance",
        examples=["Can I move my appointment to next week?"],
    )
    conversation_history: list[ConversationTurn] = Field(
        default_factory=list,
        description="Prior turns, oldest first",
    )
    session_id: Optional[str] = Field(
        default=None,
        description="Existing session ID; a new one is issued when omitted",
        examples=["550e8400-e29b-41d4-a716-446655440000"],
    )


class UtteranceResponse(BaseModel):
    """Agent reply."""

    response: str = Field(..., description="Reply text to speak or display")
    session_id: str = Field(..., description="Session ID for the next turn")
    intent: str = Field(..., description="Classified intent of the utterance")
    state_path: list[str] = Field(..., description="Turn states visited")
    outcome: Optional[str] = Field(default=None, description="Workflow outcome, if one ran")
    error: Optional[str] = Field(default=None, description="Error code when the turn failed")


class SessionRegistry:
    """Bounded map of session id to Orchestrator."""

    def __init__(self, max_sessions: int = 500, factory=Orchestrator):
        self.max_sessions = max_sessions
        self._factory = factory
        self._sessions: "OrderedDict[str, Orchestrator]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def get_or_create(self, session_id: Optional[str] = None) -> tuple[str, Orchestrator]:
        """Return the session's orchestrator, creating it when unknown."""
        if session_id and session_id in self._sessions:
            self._sessions.move_to_end(session_id)
            return session_id, self._sessions[session_id]

        session_id = session_id or str(uuid.uuid4())
        orchestrator = self._factory()
        self._sessions[session_id] = orchestrator
        logger.debug(f"Session created: {session_id}")

        while len(self._sessions) > self.max_sessions:
            evicted, _ = self._sessions.popitem(last=False)
            logger.debug(f"Session evicted: {evicted}")

        return session_id, orchestrator

    def drop(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None


_registry: Optional[SessionRegistry] = None


def get_session_registry() -> SessionRegistry:
    """Get the process-wide session registry."""
    global _registry
    if _registry is None:
        _registry = SessionRegistry(max_sessions=settings.max_sessions)
    return _registry


@router.post(
    "/utterance",
    response_model=UtteranceResponse,
    status_code=status.HTTP_200_OK,
    summary="Send a caller utterance",
    description="Process one caller utterance and return the agent's reply.",
)
async def utterance(
    request: UtteranceRequest,
    registry: SessionRegistry = Depends(get_session_registry),
) -> UtteranceResponse:
    """
    Process a caller utterance.

    The orchestrator converts every scheduling failure into reply text,
    so this endpoint answers 200 for any well-formed request.
    """
    session_id, orchestrator = registry.get_or_create(request.session_id)
    history = [turn.model_dump() for turn in request.conversation_history]

    result = await orchestrator.process(request.text, history)

    return UtteranceResponse(
        response=result.text,
        session_id=session_id,
        intent=result.intent.value,
        state_path=result.trace.to_list(),
        outcome=result.outcome.value if result.outcome else None,
        error=result.error,
    )


@router.delete(
    "/session/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="End a session",
    description="Drop a session and its cached office context.",
)
async def end_session(
    session_id: str,
    registry: SessionRegistry = Depends(get_session_registry),
) -> None:
    """End a session; unknown ids are ignored."""
    if registry.drop(session_id):
        logger.debug(f"Session ended: {session_id}")
