from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

MIN_DIFFICULTY = 1
MAX_DIFFICULTY = 5
DEFAULT_DIFFICULTY = 3
DEFAULT_COLLECTION = "Uncategorized"
NULLABLE_FIELDS = ("dateLastStudied",)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FlashCard(BaseModel):
    """
    Carte de révision, telle que stockée dans <collection>.json.
    Les champs optionnels absents prennent leur valeur par défaut.
    """

    id: Optional[int] = Field(default=None, ge=0, description="Attribué par la base")
    question: str = Field(..., min_length=1, description="Recto")
    answer: str = Field(..., min_length=1, description="Verso")
    tags: List[str] = Field(..., min_length=1)
    difficulty: int = Field(default=DEFAULT_DIFFICULTY, ge=MIN_DIFFICULTY, le=MAX_DIFFICULTY)
    collection: str = Field(default=DEFAULT_COLLECTION, min_length=1)

    dateCreated: datetime = Field(default_factory=utcnow)
    dateModified: datetime = Field(default_factory=utcnow)
    dateLastStudied: Optional[datetime] = None

    timesStudied: int = Field(default=0, ge=0)
    timesCorrect: int = Field(default=0, ge=0)
    timesIncorrect: int = Field(default=0, ge=0)
    timesSkipped: int = Field(default=0, ge=0)
    timesFlagged: int = Field(default=0, ge=0)

    model_config = {"validate_assignment": True}

    @field_validator("difficulty", "collection", mode="before")
    @classmethod
    def _none_means_default(cls, v, info):
        if v is None:
            return DEFAULT_DIFFICULTY if info.field_name == "difficulty" else DEFAULT_COLLECTION
        return v

    @field_validator("dateCreated", "dateModified", mode="before")
    @classmethod
    def _none_means_now(cls, v):
        return utcnow() if v is None else v

    @field_validator("dateLastStudied", mode="before")
    @classmethod
    def _empty_means_never(cls, v):
        # L'ancien client écrit "" pour "jamais révisée"
        return None if v == "" else v

    @field_validator("tags")
    @classmethod
    def _clean_tags(cls, v: List[str]) -> List[str]:
        tags = [t.strip() for t in v if isinstance(t, str) and t.strip()]
        if not tags:
            raise ValueError("tags must contain at least one non-empty string")
        return tags

    def to_json(self) -> dict:
        return self.model_dump(mode="json")

    def __str__(self) -> str:
        last = self.dateLastStudied.isoformat() if self.dateLastStudied else "never"
        return (
            f"Question: {self.question}\n"
            f"Answer: {self.answer}\n"
            f"Tags: {', '.join(self.tags)}\n"
            f"Difficulty: {self.difficulty}\n"
            f"Collection: {self.collection}\n"
            f"Date Created: {self.dateCreated.isoformat()}\n"
            f"Date Modified: {self.dateModified.isoformat()}\n"
            f"Date Last Studied: {last}\n"
            f"Times Studied: {self.timesStudied}\n"
            f"Times Correct: {self.timesCorrect}\n"
            f"Times Incorrect: {self.timesIncorrect}\n"
            f"Times Skipped: {self.timesSkipped}\n"
            f"Times Flagged: {self.timesFlagged}\n"
        )


class CardUpdate(BaseModel):
    """Mise à jour partielle : seuls les champs fournis sont appliqués."""

    id: int = Field(..., ge=0)
    question: Optional[str] = Field(default=None, min_length=1)
    answer: Optional[str] = Field(default=None, min_length=1)
    tags: Optional[List[str]] = Field(default=None, min_length=1)
    difficulty: Optional[int] = Field(default=None, ge=MIN_DIFFICULTY, le=MAX_DIFFICULTY)
    collection: Optional[str] = Field(default=None, min_length=1)
    dateLastStudied: Optional[datetime] = None
    timesStudied: Optional[int] = Field(default=None, ge=0)
    timesCorrect: Optional[int] = Field(default=None, ge=0)
    timesIncorrect: Optional[int] = Field(default=None, ge=0)
    timesSkipped: Optional[int] = Field(default=None, ge=0)
    timesFlagged: Optional[int] = Field(default=None, ge=0)

    @field_validator("dateLastStudied", mode="before")
    @classmethod
    def _empty_means_never(cls, v):
        return None if v == "" else v

    def changes(self) -> dict:
        # null explicite : seul dateLastStudied peut être remis à zéro
        data = self.model_dump(exclude={"id"}, exclude_unset=True)
        return {k: v for k, v in data.items() if v is not None or k in NULLABLE_FIELDS}


class CardCountResponse(BaseModel):
    status: str = "ok"
    count: int


class CollectionListResponse(BaseModel):
    status: str = "ok"
    collections: List[str]


class TagMatchResponse(BaseModel):
    status: str = "ok"
    tagsMatchFuzzy: List[str]
    tagsMatchFirstChars: List[str]
    tagsExistExact: bool
    tagsExistFuzzy: bool


class CollectionMatchResponse(BaseModel):
    status: str = "ok"
    collectionsMatchFuzzy: List[str]
    collectionsMatchFirstChars: List[str]
