import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

# Niveau "off" : au-dessus de CRITICAL, plus rien ne passe
OFF = logging.CRITICAL + 10

# Vocabulaire du client web (off/info/warn/error/debug/trace) + noms Python standard
LEVEL_NAMES = {
    "off": OFF,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
    "debug": logging.DEBUG,
    "trace": TRACE,
}

APP_LOGGER = "app"
LOG_FORMAT = "%(asctime)s - %(levelname)-7s - %(name)s: %(message)s"
LOG_FILE_MAX_BYTES = 1024 * 1024
LOG_FILE_BACKUPS = 1


def parse_level(level: Union[str, int, None]) -> Optional[int]:
    """
    Convertit un nom de niveau ("warn", "DEBUG", "trace"...) ou un entier
    en niveau logging. Retourne None si le niveau est inconnu.
    """
    if isinstance(level, bool):
        return None
    if isinstance(level, int):
        return level
    if not isinstance(level, str):
        return None
    return LEVEL_NAMES.get(level.strip().lower())


def setup_logging(level: Union[str, int] = "INFO", log_file: Optional[Path] = None) -> logging.Logger:
    """
    Configure le logger "app" : console + fichier rotatif optionnel.
    Idempotent : les handlers posés par un appel précédent sont remplacés.
    """
    logger = logging.getLogger(APP_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    logger.addHandler(console)

    if log_file is not None:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_file,
                maxBytes=LOG_FILE_MAX_BYTES,
                backupCount=LOG_FILE_BACKUPS,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning("Fichier de logs indisponible (%s): %s", log_file, e)

    resolved = parse_level(level)
    logger.setLevel(resolved if resolved is not None else logging.INFO)
    logger.propagate = False
    return logger


def set_log_level(level: Union[str, int]) -> bool:
    resolved = parse_level(level)
    if resolved is None:
        return False
    logging.getLogger(APP_LOGGER).setLevel(resolved)
    return True


def log_entry(message: str, level: Union[str, int, None] = "info") -> bool:
    """Journalise un message venant du client. Niveau inconnu -> info."""
    resolved = parse_level(level)
    if resolved is None or resolved == OFF:
        resolved = logging.INFO
    logging.getLogger(f"{APP_LOGGER}.client").log(resolved, message)
    return True
