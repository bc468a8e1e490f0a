from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Base
    APP_ENV: str = "dev"  # dev | staging | prod | test
    APP_NAME: str = "CleverDecks API"
    APP_VERSION: str = "0.1.0"

    # CORS
    CORS_ORIGINS: str = "*"

    # Serveur (PORT vide = premier port libre dans la plage)
    HOST: str = "0.0.0.0"
    PORT: Optional[int] = None
    PORT_RANGE_START: int = 1024
    PORT_RANGE_END: int = 49151

    # Stockage des cartes
    DATA_PATH: str = str(Path.home() / "CleverDecks")
    OVERRIDE_LOCK: bool = False

    # OpenAI
    OPENAI_SECRET_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4-0125-preview"
    MAX_INPUT_CHARS: int = 16384

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FILE: Optional[str] = None  # None = <DATA_PATH>/logs.txt, "" = pas de fichier

    # Fichier .env où sont persistés les réglages modifiés à chaud
    ENV_FILE: str = ".env"

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def log_file_path(self) -> Optional[Path]:
        if self.LOG_FILE == "":
            return None
        if self.LOG_FILE is None:
            return Path(self.DATA_PATH) / "logs.txt"
        return Path(self.LOG_FILE)


@lru_cache
def get_settings() -> Settings:
    return Settings()
