import logging
from typing import List, Optional

from fastapi import APIRouter, Cookie, Depends, Query

from app.core.config import Settings
from app.core.deps import get_chat_service, get_connections, get_database, get_settings_dep
from app.models.chat import (
    MAX_WRONG_ANSWERS,
    ApiKeyRequest,
    EnabledResponse,
    GenerateCardsRequest,
    GenerateCardsResponse,
    InterpretMathResponse,
    RephraseResponse,
    WrongAnswersResponse,
)
from app.services.chat_service import ChatGPT, ChatServiceError
from app.services.realtime import ConnectionManager, SocketMessageType
from app.services.storage import FlashCardDatabase
from app.utils.env_file import update_env_file

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])

CHAT_DISABLED = "OpenAI API key not set"


def _error(reason: str, **extra) -> dict:
    return {"status": "error", "reason": reason, **extra}


@router.post("/generateCards")
async def generate_cards(
    body: GenerateCardsRequest,
    socketId: Optional[str] = Cookie(default=None),
    chat: ChatGPT = Depends(get_chat_service),
    connections: ConnectionManager = Depends(get_connections),
):
    if body.text is None:
        return _error("text property not found")
    if body.text == "":
        return {"status": "empty"}
    if len(body.text) > chat.max_input_chars:
        return _error(f"text too long (max {chat.max_input_chars} characters)")
    if not chat.api_key_found:
        return _error(CHAT_DISABLED)

    push = connections.progress_callback(socketId, SocketMessageType.card_generation)
    try:
        cards = await chat.flash_card_generator(
            body.text,
            body.numberOfCards,
            body.difficulty,
            stream_cb=push,
            enable_extrapolation=True,
        )
    except ChatServiceError as e:
        return _error(str(e))
    finally:
        await connections.send_done(socketId)

    return GenerateCardsResponse(cards=cards)


@router.get("/getWrongAnswers")
async def get_wrong_answers(
    cardId: Optional[int] = None,
    numberOfAnswers: int = Query(default=3, ge=1, le=MAX_WRONG_ANSWERS),
    socketId: Optional[str] = Cookie(default=None),
    db: FlashCardDatabase = Depends(get_database),
    chat: ChatGPT = Depends(get_chat_service),
    connections: ConnectionManager = Depends(get_connections),
):
    card = db.get_card_by_id(cardId)
    if card is None:
        return _error("card not found", answers=[])
    if not chat.api_key_found:
        return _error(CHAT_DISABLED, answers=[])

    push = connections.progress_callback(socketId, SocketMessageType.wrong_answer_generation)
    try:
        answers = await chat.wrong_answer_generator(card, numberOfAnswers, stream_cb=push)
    except ChatServiceError as e:
        logger.error("Échec de génération des mauvaises réponses: %s", e)
        return _error(str(e), answers=[])
    finally:
        await connections.send_done(socketId)

    return WrongAnswersResponse(answers=answers)


@router.get("/rephrase")
async def rephrase(
    text: Optional[str] = None,
    socketId: Optional[str] = Cookie(default=None),
    chat: ChatGPT = Depends(get_chat_service),
    connections: ConnectionManager = Depends(get_connections),
):
    if not text:
        return _error("text not found")
    if not chat.api_key_found:
        return _error(CHAT_DISABLED)

    push = connections.progress_callback(socketId, SocketMessageType.card_generation)
    try:
        rephrased = await chat.rephrase_text(text, stream_cb=push)
    except ChatServiceError as e:
        return _error(str(e))
    finally:
        await connections.send_done(socketId)

    return RephraseResponse(rephrased=rephrased)


@router.get("/interpretMath")
async def interpret_math(
    expression: Optional[List[str]] = Query(default=None),
    chat: ChatGPT = Depends(get_chat_service),
):
    if not expression:
        logger.error("Expression absente")
        return _error("expression not found")
    if not chat.api_key_found:
        return _error(CHAT_DISABLED)

    try:
        result = await chat.interpret_math_expression(expression[0] if len(expression) == 1 else expression)
    except ChatServiceError as e:
        logger.error("Échec d'interprétation: %s", e)
        return _error(str(e))
    return InterpretMathResponse(result=result)


@router.get("/getGPTenabled", response_model=EnabledResponse)
def get_gpt_enabled(chat: ChatGPT = Depends(get_chat_service)):
    return EnabledResponse(enabled=chat.api_key_found)


@router.post("/setGPTapiKey")
def set_gpt_api_key(
    body: ApiKeyRequest,
    chat: ChatGPT = Depends(get_chat_service),
    settings: Settings = Depends(get_settings_dep),
):
    if not chat.is_valid_openai_key(body.apiKey):
        return _error("invalid")
    if not chat.set_api_key(body.apiKey):
        return _error("client unavailable")
    if not update_env_file(settings.ENV_FILE, "OPENAI_SECRET_KEY", body.apiKey.strip()):
        logger.warning("Clé OpenAI active mais non persistée dans %s", settings.ENV_FILE)
    return {"status": "ok"}
