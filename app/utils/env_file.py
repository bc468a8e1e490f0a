import logging
from pathlib import Path
from typing import Union

from dotenv import set_key

logger = logging.getLogger(__name__)


def update_env_file(env_path: Union[str, Path], key: str, value: str) -> bool:
    """
    Écrit (ou remplace) KEY="value" dans le fichier .env.
    Le fichier est créé s'il n'existe pas. Retourne False en cas d'échec.
    """
    if not isinstance(key, str) or not isinstance(value, str):
        logger.error("update_env_file attend des chaînes (key=%r)", key)
        return False

    path = Path(env_path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.touch(exist_ok=True)
        set_key(str(path), key, value, quote_mode="always")
    except OSError as e:
        logger.error("Impossible de mettre à jour %s: %s", path, e)
        return False

    logger.debug("%s mis à jour dans %s", key, path)
    return True
