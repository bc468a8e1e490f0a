from typing import List, Optional, Union

from pydantic import BaseModel, Field

from app.models.flashcards import DEFAULT_DIFFICULTY, MAX_DIFFICULTY, MIN_DIFFICULTY

MAX_CARDS_PER_REQUEST = 50
MAX_WRONG_ANSWERS = 10


class GenerateCardsRequest(BaseModel):
    # text absent / vide : géré par l'endpoint (réponses "error" / "empty")
    text: Optional[str] = None
    numberOfCards: int = Field(default=5, ge=1, le=MAX_CARDS_PER_REQUEST)
    difficulty: int = Field(default=DEFAULT_DIFFICULTY, ge=MIN_DIFFICULTY, le=MAX_DIFFICULTY)


class GeneratedCard(BaseModel):
    question: str
    answer: str
    tags: List[str]
    difficulty: int
    collection: str


class GenerateCardsResponse(BaseModel):
    status: str = "ok"
    cards: Union[List[GeneratedCard], str, None]


class WrongAnswersResponse(BaseModel):
    status: str = "ok"
    answers: Union[List[str], str, None]


class RephraseResponse(BaseModel):
    status: str = "ok"
    rephrased: str


class InterpretMathResponse(BaseModel):
    status: str = "ok"
    result: List[str]


class ApiKeyRequest(BaseModel):
    apiKey: Optional[str] = None


class EnabledResponse(BaseModel):
    status: str = "ok"
    enabled: bool
