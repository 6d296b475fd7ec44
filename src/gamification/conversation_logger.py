"""
Conversation Logger

Appends chat turns and serves the recent-context window handed to the
response provider. Storage returns entries newest first; the context
window is always returned oldest first.
"""

from typing import List
import logging

from src.db.repository import ProgressRepository
from src.models.progress import ConversationEntry, RiskTier

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_LIMIT = 50


class ConversationLogger:
    """Append-only chat log for one repository"""

    def __init__(self, repository: ProgressRepository):
        self.repository = repository

    async def log_turn(
        self,
        user_id: str,
        message: str,
        ai_response: str,
        risk_tier: RiskTier
    ) -> ConversationEntry:
        entry = await self.repository.append_conversation(ConversationEntry(
            user_id=user_id,
            message=message,
            ai_response=ai_response,
            risk_tier=risk_tier,
        ))
        if risk_tier in (RiskTier.CRITICAL, RiskTier.HIGH):
            logger.warning(f"{risk_tier.value} risk message logged for user {user_id} (entry {entry.id})")
        return entry

    async def recent_context(self, user_id: str, limit: int) -> List[ConversationEntry]:
        """
        The newest *limit* turns, oldest first

        Args:
            user_id: User whose history to read
            limit: Window size (0 or less gives an empty window)

        Returns:
            Chronologically ordered entries
        """
        if limit <= 0:
            return []
        newest_first = await self.repository.list_conversation(user_id, limit=limit)
        return list(reversed(newest_first))

    async def get_history(
        self,
        user_id: str,
        limit: int = DEFAULT_HISTORY_LIMIT,
        offset: int = 0
    ) -> List[ConversationEntry]:
        """Paginated history, newest first"""
        return await self.repository.list_conversation(user_id, limit=limit, offset=max(offset, 0))
