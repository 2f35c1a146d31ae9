"""Dependency injection for FastAPI routes."""

from typing import Annotated

from fastapi import Depends, Request

from commerce_assistant.services.action_registry import RegistryManager
from commerce_assistant.services.chat_service import ChatService


def get_registry_manager(request: Request) -> RegistryManager:
    """Return the registry manager built during application startup."""
    manager: RegistryManager = request.app.state.registry_manager
    return manager


def get_chat_service(
    manager: RegistryManager = Depends(get_registry_manager),
) -> ChatService:
    return ChatService(manager, manager.commerce)


Registries = Annotated[RegistryManager, Depends(get_registry_manager)]
ChatServiceDep = Annotated[ChatService, Depends(get_chat_service)]


__all__ = [
    "ChatServiceDep",
    "Registries",
    "get_chat_service",
    "get_registry_manager",
]
