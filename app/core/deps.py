from fastapi import Request

from app.core.config import Settings, get_settings
from app.services.chat_service import ChatGPT
from app.services.realtime import ConnectionManager
from app.services.storage import FlashCardDatabase


def get_settings_dep(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_database(request: Request) -> FlashCardDatabase:
    """
    Base de cartes ouverte au démarrage (lifespan) et partagée par l'app.
    """
    return request.app.state.database


def get_chat_service(request: Request) -> ChatGPT:
    return request.app.state.chat


def get_connections(request: Request) -> ConnectionManager:
    return request.app.state.connections
