import logging
import socket

import uvicorn

from app.core.config import get_settings
from app.core.logging import setup_logging

logger = logging.getLogger("app.launcher")


def find_free_port(host: str, start: int, end: int) -> int:
    """Premier port libre de [start, end] sur `host`."""
    for port in range(start, end + 1):
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            try:
                sock.bind((host, port))
            except OSError:
                continue
            return port
    raise RuntimeError(f"No free port between {start} and {end}")


def run() -> None:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    port = settings.PORT or find_free_port(settings.HOST, settings.PORT_RANGE_START, settings.PORT_RANGE_END)
    logger.info("Serveur sur http://%s:%d", settings.HOST, port)
    uvicorn.run("app.main:app", host=settings.HOST, port=port)


if __name__ == "__main__":
    run()
