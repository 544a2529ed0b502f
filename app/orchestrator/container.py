from functools import lru_cache

from app.core.config import Settings, get_settings
from app.services.assistant import MockAssistantService
from app.services.chat_service import ChatService


def build_chat_service(settings: Settings | None = None) -> ChatService:
    settings = settings or get_settings()
    assistant = MockAssistantService(
        delay_ms=settings.mock_delay_ms,
        max_text_length=settings.max_text_length,
    )
    return ChatService(assistant=assistant, settings=settings)


@lru_cache(maxsize=1)
def get_chat_service() -> ChatService:
    return build_chat_service()
