import logging
from typing import Any, List, Optional

from fastapi import APIRouter, Body, Depends, Query
from pydantic import ValidationError

from app.core.deps import get_database
from app.models.flashcards import (
    CardCountResponse,
    CardUpdate,
    CollectionListResponse,
    CollectionMatchResponse,
    FlashCard,
    TagMatchResponse,
)
from app.services.storage import FlashCardDatabase

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["flashcards"])


def _error(reason: str, **extra: Any) -> dict:
    return {"status": "error", "reason": reason, **extra}


def _split_csv(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    return [v.strip() for v in value.split(",") if v.strip()]


def _filter_params(
    collection: Optional[str],
    tags: Optional[str],
    difficulty: Optional[int],
    search: Optional[str],
    dateCreatedRange: Optional[str],
    dateModifiedRange: Optional[str],
    id: Optional[int],
) -> dict:
    return {
        "collection": collection,
        "tags": _split_csv(tags),
        "difficulty": difficulty,
        "search": search or None,
        "dateCreatedRange": dateCreatedRange,
        "dateModifiedRange": dateModifiedRange,
        "id": id,
    }


def _parse_id(payload: Any) -> Optional[int]:
    if not isinstance(payload, dict):
        return None
    try:
        card_id = int(payload.get("id"))
    except (TypeError, ValueError):
        return None
    return card_id if card_id >= 0 else None


@router.get("/getCards")
def get_cards(
    numberOfCards: int = Query(default=10, ge=0),
    offset: int = Query(default=0, ge=0),
    collection: Optional[str] = None,
    tags: Optional[str] = Query(default=None, description="Liste séparée par des virgules"),
    difficulty: Optional[int] = Query(default=None, ge=1, le=5),
    search: Optional[str] = None,
    dateCreatedRange: Optional[str] = Query(default=None, description="YYYY-MM-DD,YYYY-MM-DD"),
    dateModifiedRange: Optional[str] = Query(default=None, description="YYYY-MM-DD,YYYY-MM-DD"),
    id: Optional[int] = None,
    method: str = "AND",
    db: FlashCardDatabase = Depends(get_database),
):
    params = _filter_params(collection, tags, difficulty, search, dateCreatedRange, dateModifiedRange, id)
    cards = db.get_cards(params, method)
    page = cards[offset:offset + numberOfCards]
    return {"status": "ok", "cards": [c.to_json() for c in page]}


@router.get("/getCardCount", response_model=CardCountResponse)
def get_card_count(
    all: bool = False,
    collection: Optional[str] = None,
    tags: Optional[str] = None,
    difficulty: Optional[int] = Query(default=None, ge=1, le=5),
    search: Optional[str] = None,
    dateCreatedRange: Optional[str] = None,
    dateModifiedRange: Optional[str] = None,
    id: Optional[int] = None,
    method: str = "AND",
    db: FlashCardDatabase = Depends(get_database),
):
    if id is not None:
        found = db.get_card_by_id(id) is not None
        return CardCountResponse(count=1 if found else 0)

    params = _filter_params(collection, tags, difficulty, search, dateCreatedRange, dateModifiedRange, None)
    params["all"] = all
    count = db.get_count_of_cards(params, method)
    logger.debug("Nombre de cartes : %d", count)
    return CardCountResponse(count=count)


@router.get("/getCollections", response_model=CollectionListResponse)
def get_collections(db: FlashCardDatabase = Depends(get_database)):
    return CollectionListResponse(collections=db.get_collection_names())


@router.get("/collectionMatch")
def collection_match(name: Optional[str] = None, db: FlashCardDatabase = Depends(get_database)):
    if not isinstance(name, str):
        return _error("invalid data type")
    return CollectionMatchResponse(
        collectionsMatchFuzzy=db.collection_name_match_fuzzy(name),
        collectionsMatchFirstChars=db.collection_name_match_first_chars(name),
    )


@router.get("/tagMatch")
def tag_match(tag: Optional[str] = None, db: FlashCardDatabase = Depends(get_database)):
    if not isinstance(tag, str):
        logger.error("Tag invalide : %r", tag)
        return _error("invalid data type")
    return TagMatchResponse(
        tagsMatchFuzzy=db.tag_match_fuzzy(tag),
        tagsMatchFirstChars=db.tag_match_first_chars(tag),
        tagsExistExact=db.tag_exists_exact(tag),
        tagsExistFuzzy=db.tag_exists_fuzzy(tag),
    )


@router.post("/saveNewCards")
def save_new_cards(payload: Any = Body(...), db: FlashCardDatabase = Depends(get_database)):
    if not isinstance(payload, list):
        logger.error("saveNewCards : un tableau de cartes est attendu")
        return _error("Invalid data. Expected an array of cards.")

    cards: List[FlashCard] = []
    for index, item in enumerate(payload):
        if isinstance(item, dict):
            item = {k: v for k, v in item.items() if k != "id"}
        try:
            cards.append(FlashCard.model_validate(item))
        except ValidationError as e:
            logger.error("Carte %d invalide: %s", index, e.errors())
            return _error(f"invalid card at index {index}")

    logger.debug("Enregistrement de %d carte(s)", len(cards))
    success = True
    for card in cards:
        if not db.add_card(card):
            success = False
            logger.error("Échec d'enregistrement : %.100s", card.question)

    if not success:
        return _error("error saving card")
    return {
        "status": "ok",
        "card": cards[-1].to_json() if cards else None,
        "cards": [c.to_json() for c in cards],
    }


@router.post("/updateCard")
def update_card(payload: Any = Body(...), db: FlashCardDatabase = Depends(get_database)):
    card_id = _parse_id(payload)
    if card_id is None:
        logger.error("Id de carte invalide")
        return _error("invalid id")

    try:
        update = CardUpdate.model_validate({**payload, "id": card_id})
    except ValidationError as e:
        logger.error("Mise à jour invalide: %s", e.errors())
        update = None

    # instantané et mise à jour sous le même verrou
    with db.lock:
        existing = db.get_card_by_id(card_id)
        if existing is None:
            return _error("card not found")
        if update is None:
            return _error("invalid card data")
        old_card = existing.to_json()
        new_card = db.update_card(card_id, update.changes())
        new_json = (new_card or existing).to_json()

    logger.debug("Carte %s mise à jour : %s", card_id, new_card is not None)
    return {
        "status": "ok",
        "oldCard": old_card,
        "newCard": new_json,
        "success": new_card is not None,
    }


@router.post("/deleteCard")
def delete_card(payload: Any = Body(...), db: FlashCardDatabase = Depends(get_database)):
    card_id = _parse_id(payload)
    if card_id is None:
        logger.error("Id de carte invalide")
        return _error("invalid id")

    card = db.get_card_by_id(card_id)
    if card is None:
        return _error("card not found")

    success = db.delete_card(card_id)
    logger.debug("Carte %s supprimée : %s", card_id, success)
    return {"status": "ok", "card": card.to_json(), "success": success}
