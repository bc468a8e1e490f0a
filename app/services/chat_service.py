import inspect
import logging
import re
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Union

from openai import AsyncOpenAI, OpenAIError
from pydantic import ValidationError

from app.core.logging import TRACE
from app.models.flashcards import (
    DEFAULT_COLLECTION,
    DEFAULT_DIFFICULTY,
    MAX_DIFFICULTY,
    MIN_DIFFICULTY,
    FlashCard,
)
from app.utils.text_utils import extract_math_expressions, parse_json_response

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4-0125-preview"
DEFAULT_MAX_INPUT_CHARS = 16384
MAX_GENERATION_ROUNDS = 3

# "sk-" + 48 alphanumériques (anciennes clés) ou "sk-proj-..." (clés projet)
_KEY_RE = re.compile(r"sk-[A-Za-z0-9_-]{32,}")

StreamCallback = Callable[[str], Union[None, Awaitable[None]]]
ClientFactory = Callable[[str], Any]


class ChatServiceError(RuntimeError):
    """Erreur remontée par l'API OpenAI."""


async def _emit(cb: Optional[StreamCallback], chunk: str) -> None:
    if cb is None:
        return
    result = cb(chunk)
    if inspect.isawaitable(result):
        await result


def _clamp_difficulty(value: Any, default: int) -> int:
    try:
        level = int(value)
    except (TypeError, ValueError):
        level = default
    return max(MIN_DIFFICULTY, min(MAX_DIFFICULTY, level))


def normalize_generated_cards(items: Any, difficulty: int) -> List[dict]:
    """
    Ne garde que les cartes exploitables renvoyées par le modèle :
    question/réponse non vides, au moins un tag, collection renseignée,
    difficulté ramenée dans [1, 5].
    """
    if isinstance(items, dict):
        items = items.get("cards", items.get("flashcards", [items]))
    if not isinstance(items, list):
        return []

    cards: List[dict] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        tags = item.get("tags")
        if isinstance(tags, str):
            tags = tags.split(",")
        if not isinstance(tags, list):
            tags = []
        tags = [str(t).strip() for t in tags if str(t).strip()]
        collection = str(item.get("collection") or "").strip() or DEFAULT_COLLECTION
        data = {
            "question": str(item.get("question") or "").strip(),
            "answer": str(item.get("answer") or "").strip(),
            "tags": tags or [collection],
            "difficulty": _clamp_difficulty(item.get("difficulty"), difficulty),
            "collection": collection,
        }
        try:
            FlashCard.model_validate(data)
        except ValidationError as e:
            logger.warning("Carte générée rejetée: %s", e.errors())
            continue
        cards.append(data)
    return cards


class ChatGPT:
    """
    Client de chat (OpenAI) pour générer des cartes, des mauvaises réponses,
    des expressions LaTeX et des reformulations.

    Sans clé valide le service est désactivé : toutes les générations
    renvoient une réponse vide.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        max_input_chars: int = DEFAULT_MAX_INPUT_CHARS,
        client_factory: Optional[ClientFactory] = None,
    ):
        self.model = model
        self.max_input_chars = max_input_chars
        self._client_factory = client_factory or (lambda key: AsyncOpenAI(api_key=key))
        self.client = None
        self.api_key_found = False
        self.set_api_key(api_key)

    # ---------- clé API ----------

    @staticmethod
    def is_valid_openai_key(key: Any) -> bool:
        if not isinstance(key, str):
            return False
        logger.log(TRACE, "Vérification d'une clé de %d caractères", len(key))
        return _KEY_RE.fullmatch(key.strip()) is not None

    def set_api_key(self, key: Optional[str]) -> bool:
        if not self.is_valid_openai_key(key):
            self.client = None
            self.api_key_found = False
            logger.warning("Clé OpenAI absente ou invalide : génération désactivée")
            return False
        try:
            self.client = self._client_factory(key.strip())
        except OpenAIError as e:
            logger.error("Client OpenAI indisponible: %s", e)
            self.client = None
            self.api_key_found = False
            return False
        self.api_key_found = True
        logger.info("Clé OpenAI chargée")
        return True

    # ---------- appel brut ----------

    async def generate_response(
        self,
        input_text: str,
        stream: bool = False,
        stream_cb: Optional[StreamCallback] = None,
    ) -> str:
        if not self.api_key_found or self.client is None:
            logger.error("Clé OpenAI absente : aucune réponse générée")
            return ""

        messages = [{"role": "user", "content": input_text}]
        try:
            if not stream:
                comp = await self.client.chat.completions.create(model=self.model, messages=messages)
                return (comp.choices[0].message.content or "") if comp.choices else ""

            response = ""
            chunks = await self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                stream=True,
            )
            async for chunk in chunks:
                delta = chunk.choices[0].delta.content if chunk.choices else None
                if not delta:
                    continue
                response += delta
                await _emit(stream_cb, delta)
            return response
        except OpenAIError as e:
            logger.error("Erreur OpenAI: %s", e)
            raise ChatServiceError(str(e)) from e

    # ---------- générateurs ----------

    def _card_prompt(self, text: str, count: int, difficulty: int, extrapolate: bool) -> str:
        prompt = (
            f"Please generate {count} flash cards (based on the text below) with concise answers, "
            "returning the data as a JSON array of objects following the schema "
            '{"question":"the flash card question","answer":"the flash card answer",'
            f'"tags":["tag1","tag2"],"difficulty":{difficulty},'
            '"collection":"The broad category the card belong to such as world geography"} '
            f"(difficulty is a number from {MIN_DIFFICULTY} to {MAX_DIFFICULTY})."
        )
        prompt += " All based on the following text (it is important that the flash cards be based on the following text)"
        if extrapolate:
            prompt += ", extrapolating on the given text to generate the desired number of cards"
        return prompt + ":\n" + text

    async def flash_card_generator(
        self,
        text: Any,
        number_of_cards: int,
        difficulty: int = DEFAULT_DIFFICULTY,
        stream_cb: Optional[StreamCallback] = None,
        enable_extrapolation: bool = False,
    ) -> Union[List[dict], str, None]:
        """
        Génère exactement `number_of_cards` cartes à partir de `text`.

        Si le modèle en renvoie moins, on redemande le complément (au plus
        MAX_GENERATION_ROUNDS appels). Une première réponse non JSON est
        renvoyée brute. None si le texte est absent ou trop long.
        """
        if not isinstance(text, str):
            logger.error("flash_card_generator attend une chaîne")
            return None
        if len(text) > self.max_input_chars:
            logger.error("Texte trop long (max %d caractères)", self.max_input_chars)
            return None
        if number_of_cards < 1:
            return []
        difficulty = _clamp_difficulty(difficulty, DEFAULT_DIFFICULTY)

        logger.info("Génération de %d cartes", number_of_cards)
        cards: List[dict] = []
        for round_ in range(MAX_GENERATION_ROUNDS):
            missing = number_of_cards - len(cards)
            if missing <= 0:
                break
            extrapolate = enable_extrapolation or round_ > 0
            raw = await self.generate_response(
                self._card_prompt(text, missing, difficulty, extrapolate),
                stream=True,
                stream_cb=stream_cb,
            )
            parsed = parse_json_response(raw)
            if isinstance(parsed, str) and round_ == 0:
                return parsed
            new_cards = normalize_generated_cards(parsed, difficulty)
            if not new_cards:
                logger.warning("Aucune carte exploitable au tour %d", round_ + 1)
            cards.extend(new_cards)

        if len(cards) < number_of_cards:
            logger.warning("Seulement %d/%d cartes générées", len(cards), number_of_cards)
        return cards[:number_of_cards]

    async def wrong_answer_generator(
        self,
        card: Optional[FlashCard],
        number_of_answers: int,
        stream_cb: Optional[StreamCallback] = None,
    ) -> Union[List[str], str, None]:
        if card is None:
            logger.error("wrong_answer_generator attend une carte")
            raise ValueError("wrong_answer_generator requires a FlashCard")

        prompt = (
            f"Please generate {number_of_answers} wrong answers for the following flash card:\n"
            f"Card front: {card.question}\n"
            f"Correct answer: {card.answer}\n"
            f"Flash Card Tags: {', '.join(card.tags)}\n"
            f"Flash Card Collection: {card.collection}\n"
            f"Flash Card Difficulty: {card.difficulty} of {MAX_DIFFICULTY}\n"
            "Return the wrong answers as a JSON array of strings."
        )
        logger.info("Génération de mauvaises réponses pour la carte %s", card.id)
        parsed = parse_json_response(await self.generate_response(prompt, stream=True, stream_cb=stream_cb))
        if isinstance(parsed, list):
            return [str(a) for a in parsed if str(a).strip()][:number_of_answers]
        return parsed

    async def interpret_math_expression(self, expression: Union[str, Sequence[str]]) -> List[str]:
        """Convertit une ou plusieurs expressions en LaTeX $$...$$ (MathJax)."""
        prompt = (
            "Please convert the following mathematical expression(s) into LaTeX expression(s) "
            "for use in MathJax and wrap them in $$...$$ delimiters. "
            "I only need the wrapped expressions, nothing else.\n"
        )
        if isinstance(expression, str):
            prompt += expression
        elif isinstance(expression, (list, tuple)) and all(isinstance(e, str) for e in expression):
            prompt += "".join(f"{e}\n" for e in expression)
        else:
            raise TypeError("interpret_math_expression requires a string or a list of strings")

        logger.info("Interprétation d'expression(s) mathématique(s)")
        return extract_math_expressions(await self.generate_response(prompt))

    async def rephrase_text(self, text: str, stream_cb: Optional[StreamCallback] = None) -> str:
        if not isinstance(text, str) or not text.strip():
            return ""
        if len(text) > self.max_input_chars:
            logger.error("Texte trop long (max %d caractères)", self.max_input_chars)
            return ""
        prompt = (
            "Please rephrase the following text so that it is clear and concise, "
            "keeping its meaning. Return only the rephrased text.\n" + text
        )
        return (await self.generate_response(prompt, stream=True, stream_cb=stream_cb)).strip()
