from app.orchestrator.container import build_chat_service, get_chat_service

__all__ = ["build_chat_service", "get_chat_service"]
