import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from app.core.config import Settings, get_settings
from app.core.logging import setup_logging
from app.routers import chat, flashcards, realtime, system
from app.services.chat_service import ChatGPT, ClientFactory
from app.services.realtime import ConnectionManager
from app.services.storage import FlashCardDatabase

logger = logging.getLogger("app.main")


def create_app(settings: Optional[Settings] = None, chat_client_factory: Optional[ClientFactory] = None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.LOG_LEVEL, settings.log_file_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        data_path = Path(settings.DATA_PATH)
        data_path.mkdir(parents=True, exist_ok=True)
        logger.info("Chargement des cartes depuis %s", data_path)

        app.state.database = FlashCardDatabase(
            data_path,
            progress_cb=lambda p: logger.debug("Chargement : %d%%", p),
            override_lock=settings.OVERRIDE_LOCK,
        )
        app.state.chat = ChatGPT(
            settings.OPENAI_SECRET_KEY,
            model=settings.OPENAI_MODEL,
            max_input_chars=settings.MAX_INPUT_CHARS,
            client_factory=chat_client_factory,
        )
        app.state.connections = ConnectionManager()
        try:
            yield
        finally:
            app.state.database.finalize()
            logger.info("Arrêt : données sauvegardées")

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="API backend CleverDecks (cartes de révision, génération par chat)",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Middleware CORS
    origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins or ["*"],  # fallback si mal configuré
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        logger.error("Requête invalide sur %s: %s", request.url.path, exc.errors())
        return JSONResponse(
            status_code=422,
            content={"status": "error", "reason": "invalid request", "detail": jsonable_encoder(exc.errors())},
        )

    # Routers
    app.include_router(system.router)
    app.include_router(flashcards.router)
    app.include_router(chat.router)
    app.include_router(realtime.router)

    # Redirect root → docs
    @app.get("/", include_in_schema=False)
    async def root():
        return RedirectResponse(url="/docs")

    return app


app = create_app()
