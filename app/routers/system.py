import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.core.config import Settings
from app.core.deps import get_settings_dep
from app.core.logging import log_entry, parse_level, set_log_level
from app.utils.env_file import update_env_file

logger = logging.getLogger(__name__)

router = APIRouter(tags=["system"])

MIN_PORT = 1024
MAX_PORT = 49151


class LogLevelRequest(BaseModel):
    logLevel: Optional[str] = None
    level: Optional[str] = None


class LogEntryRequest(BaseModel):
    message: Any = None
    level: Optional[str] = "info"


class ServerPortRequest(BaseModel):
    newPort: Any = None
    port: Any = None


@router.get("/health")
def health(s: Settings = Depends(get_settings_dep)):
    return {"status": "ok", "version": s.APP_VERSION}


@router.get("/version")
def version(s: Settings = Depends(get_settings_dep)):
    return {"name": s.APP_NAME, "version": s.APP_VERSION, "env": s.APP_ENV}


@router.post("/api/setLogLevel")
def set_level(body: LogLevelRequest, settings: Settings = Depends(get_settings_dep)):
    requested = body.logLevel or body.level
    if not requested:
        return {"status": "error", "reason": "log level not found"}
    if parse_level(requested) is None or not set_log_level(requested):
        logger.error("Niveau de log invalide : %s", requested)
        return {"status": "error", "reason": "invalid log level"}

    logger.info("Niveau de log : %s", requested)
    update_env_file(settings.ENV_FILE, "LOG_LEVEL", requested.strip().lower())
    return {"status": "ok", "logLevel": requested.strip().lower()}


@router.post("/api/addLogEntry")
def add_log_entry(body: LogEntryRequest):
    if body.message is None or body.message == "":
        return {"status": "error", "reason": "message not found"}
    message = body.message if isinstance(body.message, str) else repr(body.message)
    log_entry(message, body.level)
    return {"status": "ok"}


@router.post("/api/setNewServerPort")
def set_new_server_port(body: ServerPortRequest, settings: Settings = Depends(get_settings_dep)):
    """
    Enregistre le port d'écoute dans le .env. Pris en compte au prochain
    démarrage du serveur.
    """
    requested = body.newPort if body.newPort is not None else body.port
    try:
        port = int(requested)
    except (TypeError, ValueError):
        return {"status": "error", "reason": "invalid port"}
    if isinstance(requested, bool) or not MIN_PORT < port < MAX_PORT:
        return {"status": "error", "reason": f"port must be between {MIN_PORT} and {MAX_PORT}"}

    if not update_env_file(settings.ENV_FILE, "PORT", str(port)):
        return {"status": "error", "reason": "could not save port"}
    logger.info("Nouveau port enregistré : %d (redémarrage requis)", port)
    return {"status": "ok", "port": port, "restartRequired": True}
