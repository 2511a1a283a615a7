"""
LLM-based intent classification using Claude Haiku.

Maps a caller utterance onto one of the scheduling workflows. No keyword
matching; low-confidence results are retried on the fallback model.
"""

import json
import logging
import time
from typing import Optional

from app.config import settings
from app.infra.claude import ClaudeClient, get_claude_client, ClaudeClientError, strip_code_fence
from .types import Intent, IntentResult

logger = logging.getLogger(__name__)


CLASSIFICATION_PROMPT = """You are an intent classifier for a dental office's phone scheduling assistant.

Classify the caller's latest message into ONE intent category.

## Intent Categories

WORKFLOW INTENTS:
- book: Caller wants to BOOK a NEW appointment (including picking one of the times the assistant offered)
- reschedule: Caller wants to MOVE an existing appointment to a different day or time
- cancel: Caller wants to CANCEL an existing appointment, or reports they missed it
- confirm: Caller is CONFIRMING an upcoming appointment, or checking in / being seated / leaving
- check_availability: Caller asks what times are OPEN without committing to book
- recall: Caller wants their regular CLEANING / checkup / hygiene recall
- planned: Caller wants to schedule TREATMENT the dentist already planned (crown, filling, root canal follow-up)
- asap: Caller wants to be put on (or taken off) the ASAP / short-notice list, or staff asks who is on it

CONVERSATION INTENTS:
- greeting: Hello, hi, good morning (and nothing else)
- goodbye: Bye, thanks, that's all
- unknown: Cannot determine intent

When the caller is answering the assistant's question (giving a name, a date,
a yes/no), classify by the workflow the conversation is already in.

## Recent Conversation

{context}

## Caller Message

"{message}"

## Response

Respond with ONLY valid JSON:
{{
    "intent": "<intent>",
    "confidence": <0.0-1.0>
}}"""


def format_history(conversation_history: Optional[list[dict]], turns: int = 6) -> str:
    """Render the last few conversation turns for a prompt."""
    if not conversation_history:
        return ""

    lines = []
    for turn in conversation_history[-turns:]:
        role = turn.get("role", "unknown")
        content = str(turn.get("content", ""))[:200]
        lines.append(f"- {role}: {content}")
    return "\n".join(lines)


class IntentClassifier:
    """
    LLM-based intent classifier using Claude Haiku.

    Falls back to Sonnet for low confidence.
    """

    def __init__(self, claude_client: Optional[ClaudeClient] = None):
        """Initialize classifier.

        Args:
            claude_client: Optional Claude client (for testing)
        """
        self._client = claude_client
        self._confidence_threshold = settings.claude_intent_confidence_threshold

    async def _get_client(self) -> ClaudeClient:
        """Get or create Claude client."""
        if self._client is None:
            self._client = await get_claude_client()
        return self._client

    async def classify(
        self,
        message: str,
        conversation_history: Optional[list[dict]] = None,
    ) -> IntentResult:
        """
        Classify caller message intent using LLM.

        Args:
            message: Caller's message
            conversation_history: Prior turns as {"role", "content"} dicts

        Returns:
            IntentResult with intent and confidence
        """
        message = message.strip()
        start_time = time.time()

        if not message:
            return IntentResult(intent=Intent.UNKNOWN, confidence=1.0)

        context_str = format_history(conversation_history)
        try:
            client = await self._get_client()
        except ClaudeClientError as e:
            logger.error(f"Claude client unavailable: {e}")
            return IntentResult(intent=Intent.UNKNOWN, confidence=0.0)

        result = await self._classify_with_model(
            client=client,
            message=message,
            context=context_str,
            model=settings.claude_intent_model,
        )

        # If very low confidence, try Sonnet
        if result.confidence < self._confidence_threshold:
            logger.debug(f"Haiku confidence {result.confidence:.2f}, trying Sonnet")
            result = await self._classify_with_model(
                client=client,
                message=message,
                context=context_str,
                model=settings.claude_fallback_model,
            )
            result.fallback_used = True

        result.processing_time_ms = (time.time() - start_time) * 1000
        logger.debug(f"Classified intent: {result.intent.value} (confidence: {result.confidence:.2f})")

        return result

    async def _classify_with_model(
        self,
        client: ClaudeClient,
        message: str,
        context: str,
        model: str,
    ) -> IntentResult:
        """Run classification with specified model."""
        prompt = CLASSIFICATION_PROMPT.format(
            context=context or "New conversation, no prior context.",
            message=message,
        )

        try:
            response = await client.generate(
                prompt=prompt,
                model=model,
                max_tokens=100,
                temperature=0,
                use_fallback_on_error=False,
            )

            return self._parse_response(response.content)

        except ClaudeClientError as e:
            logger.error(f"Claude API error: {e}")
            return IntentResult(intent=Intent.UNKNOWN, confidence=0.0)
        except Exception as e:
            logger.error(f"Classification failed: {e}")
            return IntentResult(intent=Intent.UNKNOWN, confidence=0.0)

    def _parse_response(self, response: str) -> IntentResult:
        """Parse LLM JSON response."""
        response = strip_code_fence(response)

        try:
            data = json.loads(response)

            intent_str = str(data.get("intent", "unknown")).lower()
            try:
                intent = Intent(intent_str)
            except ValueError:
                intent = Intent.UNKNOWN

            return IntentResult(
                intent=intent,
                confidence=float(data.get("confidence", 0.5)),
                raw_response=response,
            )

        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse: {e}\nResponse: {response}")
            return IntentResult(
                intent=Intent.UNKNOWN,
                confidence=0.0,
                raw_response=response,
            )


# Singleton
_classifier: Optional[IntentClassifier] = None


async def get_intent_classifier() -> IntentClassifier:
    """Get singleton IntentClassifier."""
    global _classifier
    if _classifier is None:
        _classifier = IntentClassifier()
    return _classifier


async def classify_intent(
    message: str,
    conversation_history: Optional[list[dict]] = None,
) -> IntentResult:
    """Convenience function to classify intent."""
    classifier = await get_intent_classifier()
    return await classifier.classify(message, conversation_history)
