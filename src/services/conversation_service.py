"""
ConversationService - Chat Turns

Gets a reply from the response provider for the user's message and the
recent conversation window, classifies the message's risk tier and logs
the turn.

If the provider fails the turn is still logged, with the fixed fallback
reply and risk tier LOW, so the history stays complete.
"""

import logging
from typing import Any, Dict, List, Sequence, Tuple

from src.config import CONTEXT_WINDOW_SIZE
from src.agent.response_provider import FALLBACK_RESPONSE, ResponseProvider
from src.db.repository import ProgressRepository
from src.exceptions import CompanionError, MissingFieldError, ValidationError
from src.gamification.conversation_logger import DEFAULT_HISTORY_LIMIT, ConversationLogger
from src.gamification.risk_classifier import classify_risk
from src.models.progress import ConversationEntry, RiskTier
from src.models.result import OperationResult
from src.resilience.fallback import FallbackStrategy, execute_with_fallbacks

logger = logging.getLogger(__name__)

MAX_HISTORY_LIMIT = 100


class ConversationService:
    """Service for chat turns and conversation history"""

    def __init__(
        self,
        repository: ProgressRepository,
        provider: ResponseProvider,
        context_window: int = CONTEXT_WINDOW_SIZE
    ):
        self.provider = provider
        self.context_window = context_window
        self.conversation_logger = ConversationLogger(repository)

    async def _provider_reply(self, message: str, context: Sequence[ConversationEntry]) -> Tuple[str, bool]:
        return await self.provider.generate_reply(message, context), False

    async def _fallback_reply(self, message: str, context: Sequence[ConversationEntry]) -> Tuple[str, bool]:
        return FALLBACK_RESPONSE, True

    async def log_conversation_turn(self, user_id: str, message: Any) -> OperationResult[Dict[str, Any]]:
        """
        Reply to a message and log the turn.

        Returns:
            OperationResult with {
                'ai_response_text': str,
                'risk_tier': RiskTier,
                'entry_id': int,
                'degraded': bool   # True when the fallback reply was used
            }
        """
        try:
            if not user_id:
                raise MissingFieldError("user_id")
            if not isinstance(message, str) or not message.strip():
                raise MissingFieldError("message", user_id=user_id)

            context = await self.conversation_logger.recent_context(user_id, self.context_window)

            reply, degraded = await execute_with_fallbacks(
                [
                    FallbackStrategy(self.provider.name, self._provider_reply, priority=1),
                    FallbackStrategy("fallback_reply", self._fallback_reply, priority=2),
                ],
                message,
                context
            )

            risk_tier = RiskTier.LOW if degraded else classify_risk(message)
            entry = await self.conversation_logger.log_turn(user_id, message, reply, risk_tier)
        except CompanionError as e:
            return OperationResult.failure(e)

        if degraded:
            logger.warning(f"Logged fallback reply for {user_id} (entry {entry.id})")

        return OperationResult.success({
            'ai_response_text': reply,
            'risk_tier': risk_tier,
            'entry_id': entry.id,
            'degraded': degraded,
        })

    async def get_conversation_history(
        self,
        user_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
        offset: int = 0
    ) -> List[ConversationEntry]:
        """Newest-first page of the user's chat history"""
        if not user_id:
            raise MissingFieldError("user_id")
        if limit < 1 or limit > MAX_HISTORY_LIMIT:
            raise ValidationError(
                f"limit must be between 1 and {MAX_HISTORY_LIMIT}",
                field="limit",
                value=limit,
                user_id=user_id
            )
        if offset < 0:
            raise ValidationError("offset must be >= 0", field="offset", value=offset, user_id=user_id)
        return await self.conversation_logger.get_history(user_id, limit=limit, offset=offset)
