"""Response message lookup by alert code, backed by the Redis cache."""

from typing import Optional

import structlog

from src.models.response_message import ResponseMessage
from src.services.credential_store import CredentialStore, CredentialStoreError
from src.services.redis_service import RedisService

logger = structlog.get_logger(__name__)


class ResponseMessageService:
    """Resolves alert codes to (type, message) pairs.

    The whole catalogue is loaded from the store on a cache miss and cached
    as one JSON document; lookups are case-insensitive.
    """

    def __init__(self, store: CredentialStore, cache: RedisService):
        self.store = store
        self.cache = cache

    async def _load_messages(self) -> list[ResponseMessage]:
        cached = await self.cache.get_cached_messages()
        if cached is not None:
            return [ResponseMessage(**item) for item in cached]

        messages = await self.store.list_response_messages()
        if messages:
            await self.cache.cache_messages([m.model_dump() for m in messages])
            logger.info("response_messages_loaded", count=len(messages))
        return messages

    async def get_message(self, alert_code: Optional[str]) -> tuple[str, str]:
        """Look up the message for an alert code.

        Returns:
            Tuple of (type, message); errors degrade to an ("Error", ...) pair
        """
        if not alert_code:
            return "Error", "Alert code is required."

        try:
            messages = await self._load_messages()
        except CredentialStoreError:
            return "Error", "Something went wrong while retrieving response message."

        wanted = alert_code.lower()
        for message in messages:
            if message.alert_code.lower() == wanted:
                return message.type or "Info", message.message or "Message not found."

        logger.debug("response_message_not_found", alert_code=alert_code)
        return "Error", "Response message not found."
