"""
Service Container - Dependency Injection Container

Holds the repository and response provider for one application and
builds the services from them on first access. The API lifespan creates
one container per app; tests build their own around a memory repository.
"""

from dataclasses import dataclass, field
from typing import Optional
import logging

from src.agent.response_provider import ResponseProvider
from src.db.connection import Database
from src.db.repository import ProgressRepository

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """
    Dependency injection container for services.

    Services are lazy-loaded on first access via properties.
    Infrastructure dependencies are injected.
    """

    # Infrastructure dependencies (injected)
    repository: ProgressRepository
    response_provider: ResponseProvider
    database: Optional[Database] = None  # set when backed by Postgres

    # Services (lazy-loaded via properties)
    _progress_service: Optional[object] = field(default=None, init=False, repr=False)
    _conversation_service: Optional[object] = field(default=None, init=False, repr=False)

    @property
    def progress_service(self):
        """Get ProgressService instance (lazy-loaded)"""
        if self._progress_service is None:
            from src.services.progress_service import ProgressService
            self._progress_service = ProgressService(self.repository)
            logger.debug("ProgressService instantiated")
        return self._progress_service

    @property
    def conversation_service(self):
        """Get ConversationService instance (lazy-loaded)"""
        if self._conversation_service is None:
            from src.services.conversation_service import ConversationService
            self._conversation_service = ConversationService(self.repository, self.response_provider)
            logger.debug("ConversationService instantiated")
        return self._conversation_service

    async def close(self) -> None:
        """Release infrastructure (connection pool) held by the container"""
        if self.database is not None:
            await self.database.close_pool()


async def build_container(storage_backend: str) -> ServiceContainer:
    """
    Build a container for the configured storage backend.

    Args:
        storage_backend: 'postgres' (opens the connection pool) or 'memory'

    Returns:
        ServiceContainer ready to serve requests
    """
    from src.agent.response_provider import GeminiResponseProvider

    provider = GeminiResponseProvider()

    if storage_backend == "memory":
        from src.db.memory_repository import MemoryProgressRepository
        logger.warning("Using in-memory storage - progress is NOT persisted across restarts")
        return ServiceContainer(repository=MemoryProgressRepository(), response_provider=provider)

    from src.db.postgres_repository import PostgresProgressRepository
    database = Database()
    await database.init_pool()
    logger.info("Service container initialized (postgres)")
    return ServiceContainer(
        repository=PostgresProgressRepository(database),
        response_provider=provider,
        database=database,
    )
