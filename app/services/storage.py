import json
import logging
import re
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Union
from urllib.parse import quote

from pydantic import ValidationError
from rapidfuzz.distance import Levenshtein

from app.core.logging import TRACE
from app.models.flashcards import FlashCard, utcnow
from app.utils.text_utils import fuzzy_contains, rank_fuzzy

logger = logging.getLogger(__name__)

FLASHCARDS_DIR = "flashcards"
METADATA_FILE = "metadata.json"
LOCK_FILE = "metadata.lock"
METADATA_BACKUPS_KEPT = 5
COLLECTION_BACKUPS_KEPT = 2

FILTER_METHODS = ("AND", "OR")

ProgressCallback = Callable[[float], None]
SimilarCardsCallback = Callable[[List[FlashCard]], None]


class DatabaseLockedError(RuntimeError):
    """Le fichier metadata.lock existe : une autre instance utilise les données."""


def _backup_stamp() -> str:
    # ordre lexical == ordre chronologique
    return datetime.now().strftime("%Y-%m-%d_%H-%M-%S-%f")


def backup_file(path: Path, keep: int) -> Optional[Path]:
    """
    Copie `path` en `<nom>-<horodatage>.bak` puis supprime les copies les plus
    anciennes au-delà de `keep`. Les erreurs sont journalisées, jamais levées.
    """
    backup = path.with_name(f"{path.name}-{_backup_stamp()}.bak")
    try:
        backup.write_bytes(path.read_bytes())
        logger.debug("Sauvegarde créée : %s", backup.name)
        backups = sorted(
            p for p in path.parent.iterdir()
            if p.name.startswith(f"{path.name}-") and p.name.endswith(".bak")
        )
        for old in backups[:-keep] if keep > 0 else backups:
            old.unlink()
            logger.log(TRACE, "Ancienne sauvegarde supprimée : %s", old.name)
    except OSError as e:
        logger.error("Échec de la sauvegarde de %s: %s", path, e)
        return None
    return backup


def write_json_atomic(path: Path, data: Any) -> None:
    tmp = path.with_name(path.name + ".tmp")
    tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
    tmp.replace(path)  # atomique sous POSIX


def collection_file_name(name: str) -> str:
    """
    Nom de fichier d'une collection, injectif : "%" est lui-même encodé,
    donc "a/b" et "a_b" donnent deux fichiers distincts.
    """
    return f"{quote(name, safe=' ')}.json"


def _as_list(value: Any) -> Optional[list]:
    if value is None:
        return None
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def _parse_date(value: Any) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value.strip():
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    return None


def _in_range(moment: Optional[datetime], bounds: Any) -> bool:
    if moment is None:
        return False
    start, end = (_parse_date(b) for b in bounds)
    if start is None or end is None:
        return False
    # comparaison naïve/aware : on aligne sur le fuseau de la carte
    if moment.tzinfo is not None:
        start = start if start.tzinfo else start.replace(tzinfo=moment.tzinfo)
        end = end if end.tzinfo else end.replace(tzinfo=moment.tzinfo)
    else:
        start = start.replace(tzinfo=None)
        end = end.replace(tzinfo=None)
    return start <= moment <= end


def _combine(method: str, acc: Optional[List[FlashCard]], found: List[FlashCard]) -> List[FlashCard]:
    if acc is None:
        return list(found)
    if method == "AND":
        keep = {id(c) for c in found}
        return [c for c in acc if id(c) in keep]
    seen = {id(c) for c in acc}
    return acc + [c for c in found if id(c) not in seen]


class FlashCardCollection:
    """
    Collection nommée de cartes, persistée dans un fichier JSON (tableau).
    `largest_id` garde le plus grand id rencontré dans le fichier.
    """

    def __init__(self, name: str, file_path: Union[str, Path], largest_id: int = 0):
        self.name = name
        self.file_path = Path(file_path)
        self.cards: List[FlashCard] = []
        self.largest_id = largest_id
        logger.debug("Création de la collection %s (%s)", name, self.file_path)
        if not self.load_collection():
            logger.warning("Collection non chargée : %s", name)

    # ---------- persistance ----------

    def load_collection(self) -> bool:
        if not self.file_path.exists():
            logger.warning("Fichier de collection introuvable : %s", self.file_path)
            return False

        try:
            raw = self.file_path.read_text(encoding="utf-8")
        except OSError as e:
            logger.error("Lecture impossible de %s: %s", self.file_path, e)
            return False

        backup_file(self.file_path, COLLECTION_BACKUPS_KEPT)

        try:
            items = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("Collection %s illisible (JSON): %s", self.name, e)
            return False
        if not isinstance(items, list):
            logger.error("Collection %s : un tableau JSON est attendu", self.name)
            return False

        cards: List[FlashCard] = []
        for item in items:
            try:
                card = FlashCard.model_validate(item)
            except ValidationError as e:
                ident = item.get("id") if isinstance(item, dict) else None
                logger.error("Carte %s ignorée dans %s: %s", ident, self.name, e.errors())
                continue
            if card.id is None:
                logger.error("Carte sans id ignorée dans %s : %.50s", self.name, card.question)
                continue
            if card.id > self.largest_id:
                self.largest_id = card.id
            cards.append(card)

        self.cards = cards
        logger.debug("Collection %s chargée (%d cartes)", self.name, len(cards))
        return True

    def save_collection(self) -> bool:
        logger.debug("Sauvegarde de la collection %s", self.name)
        try:
            self.file_path.parent.mkdir(parents=True, exist_ok=True)
            write_json_atomic(self.file_path, [c.to_json() for c in self.cards])
        except (OSError, TypeError, ValueError) as e:
            logger.error("Échec de sauvegarde de la collection %s: %s", self.name, e)
            return False
        return True

    # ---------- mutations ----------

    def add_card(self, card: FlashCard, similar_card_cb: Optional[SimilarCardsCallback] = None) -> bool:
        if similar_card_cb is not None:
            similar = self.get_cards({"search": card.question})
            for other in self.get_cards({"search": card.answer}):
                if all(other is not s for s in similar):
                    similar.append(other)
            if similar:
                similar_card_cb(similar)

        self.cards.append(card)
        if card.id is not None and card.id > self.largest_id:
            self.largest_id = card.id
        return self.save_collection()

    def update_card(self, card: FlashCard) -> bool:
        if card.collection != self.name:
            logger.error("La carte %s n'appartient pas à la collection %s", card.id, self.name)
            return False
        if card.id is None:
            logger.error("Un id est requis pour mettre à jour une carte")
            return False
        for index, existing in enumerate(self.cards):
            if existing.id == card.id:
                self.cards[index] = card
                return self.save_collection()
        logger.error("Carte %s introuvable dans %s", card.id, self.name)
        return False

    def delete_card(self, card_id: Optional[int]) -> bool:
        if card_id is None:
            logger.error("Un id est requis pour supprimer une carte")
            return False
        for index, existing in enumerate(self.cards):
            if existing.id == card_id:
                del self.cards[index]
                return self.save_collection()
        logger.error("Carte %s introuvable dans %s", card_id, self.name)
        return False

    # ---------- lecture ----------

    def get_card_by_id(self, card_id: Union[int, str, None]) -> Optional[FlashCard]:
        try:
            wanted = int(card_id)
        except (TypeError, ValueError):
            return None
        for card in self.cards:
            if card.id == wanted:
                return card
        return None

    def get_cards(self, params: Optional[Dict[str, Any]], method: str = "AND") -> List[FlashCard]:
        """
        Filtre les cartes. Filtres reconnus : tags, difficulty, search,
        dateCreatedRange, dateModifiedRange, id. Chaque filtre présent est
        combiné au résultat courant par intersection (AND) ou union (OR).
        Sans filtre : toutes les cartes.
        """
        method = (method or "AND").upper()
        if method not in FILTER_METHODS:
            logger.error("Méthode de filtrage invalide : %s", method)
            return []
        if not params:
            return list(self.cards)

        acc: Optional[List[FlashCard]] = None

        tags = params.get("tags")
        if tags is not None:
            if isinstance(tags, str):
                tags = [tags]
            if isinstance(tags, (list, tuple)):
                for tag in tags:
                    acc = _combine(method, acc, [c for c in self.cards if tag in c.tags])
            else:
                logger.error("Paramètre tags invalide : %r", tags)

        difficulty = params.get("difficulty")
        if difficulty is not None:
            try:
                level = int(difficulty)
            except (TypeError, ValueError):
                logger.error("Paramètre difficulty invalide : %r", difficulty)
            else:
                acc = _combine(method, acc, [c for c in self.cards if c.difficulty == level])

        search = params.get("search")
        if search:
            search = str(search)
            acc = _combine(method, acc, [
                c for c in self.cards
                if fuzzy_contains(c.question, search) or fuzzy_contains(c.answer, search)
            ])
            literal = re.compile(re.escape(search), re.IGNORECASE)
            acc = _combine(method, acc, [
                c for c in self.cards
                if literal.search(c.question) or literal.search(c.answer)
            ])

        for key, attr in (("dateCreatedRange", "dateCreated"), ("dateModifiedRange", "dateModified")):
            bounds = params.get(key)
            if bounds is None:
                continue
            if isinstance(bounds, str):
                bounds = bounds.split(",")
            bounds = list(bounds)
            if len(bounds) != 2:
                logger.error("Paramètre %s invalide : %r", key, bounds)
                continue
            try:
                acc = _combine(method, acc, [c for c in self.cards if _in_range(getattr(c, attr), bounds)])
            except ValueError as e:
                logger.error("Paramètre %s invalide : %s", key, e)

        ids = _as_list(params.get("id"))
        if ids:
            try:
                wanted = {int(i) for i in ids}
            except (TypeError, ValueError):
                logger.error("Paramètre id invalide : %r", params.get("id"))
            else:
                acc = _combine(method, acc, [c for c in self.cards if c.id in wanted])

        if acc is None:
            return list(self.cards)
        return acc


class FlashCardDatabase:
    """
    Ensemble des collections d'un dossier de données + index des tags.

    Arborescence : <data_path>/flashcards/{metadata.json, metadata.lock,
    <collection>.json, *.bak}. Le verrou est posé à l'ouverture et retiré par
    finalize().
    """

    def __init__(
        self,
        data_path: Union[str, Path],
        progress_cb: Optional[ProgressCallback] = None,
        override_lock: bool = False,
    ):
        self.data_path = Path(data_path)
        if not self.data_path.exists():
            raise FileNotFoundError(f"Data path does not exist: {self.data_path}")
        self.folder = self.data_path / FLASHCARDS_DIR
        self.metadata_path = self.folder / METADATA_FILE
        self.lock_path = self.folder / LOCK_FILE

        self.collections: List[FlashCardCollection] = []
        self.largest_id = 0
        self.all_tags: List[str] = []
        self._lock = threading.RLock()

        self.load_collections(progress_cb, override_lock)
        self.find_duplicate_ids()

    @property
    def lock(self) -> threading.RLock:
        """Verrou des mutations, pour enchaîner lecture et écriture d'une carte."""
        return self._lock

    # ---------- chargement / verrou ----------

    def _acquire_lock(self, progress: ProgressCallback, override_lock: bool) -> None:
        if self.lock_path.exists():
            logger.error("Les métadonnées sont verrouillées (%s)", self.lock_path)
            if not override_lock:
                raise DatabaseLockedError("metadata is locked")
            logger.warning("Verrou des métadonnées forcé")
            progress(10)
            self.lock_path.unlink(missing_ok=True)
        try:
            # création exclusive (O_EXCL)
            with open(self.lock_path, "x", encoding="utf-8") as lock:
                lock.write("locked")
        except FileExistsError:
            logger.error("Verrou pris par une autre instance (%s)", self.lock_path)
            raise DatabaseLockedError("metadata is locked") from None

    def load_collections(self, progress_cb: Optional[ProgressCallback] = None, override_lock: bool = False) -> bool:
        progress = progress_cb or (lambda _p: None)
        progress(5)
        self.folder.mkdir(parents=True, exist_ok=True)
        self._acquire_lock(progress, override_lock)

        if not self.metadata_path.exists():
            logger.warning("%s introuvable, création d'un manifeste vide", METADATA_FILE)
            write_json_atomic(self.metadata_path, [])
            progress(100)
            return True

        raw = self.metadata_path.read_text(encoding="utf-8")
        progress(15)
        backup_file(self.metadata_path, METADATA_BACKUPS_KEPT)
        progress(20)

        try:
            entries = json.loads(raw)
        except json.JSONDecodeError as e:
            logger.error("%s illisible: %s", METADATA_FILE, e)
            return False
        if not isinstance(entries, list):
            logger.error("%s : un tableau JSON est attendu", METADATA_FILE)
            return False

        progress(25)
        done = 25.0
        step = 65.0 / len(entries) if entries else 0
        for entry in entries:
            done += step
            progress(done)
            if not isinstance(entry, dict) or not entry.get("name"):
                logger.error("Entrée de manifeste invalide : %r", entry)
                continue
            path = self._collection_path(entry["name"], entry.get("path"))
            if path is None:
                continue
            collection = FlashCardCollection(entry["name"], path, self.largest_id)
            self.largest_id = max(self.largest_id, collection.largest_id)
            self._index_tags(c for card in collection.cards for c in card.tags)
            self.collections.append(collection)

        logger.debug("Tags connus : %s", self.all_tags)
        progress(100)
        return True

    def _index_tags(self, tags: Iterable[str]) -> None:
        for tag in tags:
            if tag not in self.all_tags:
                self.all_tags.append(tag)

    def find_duplicate_ids(self) -> List[int]:
        seen = set()
        duplicates: List[int] = []
        for collection in self.collections:
            for card in collection.cards:
                if card.id in seen:
                    logger.warning("Id en double : %s", card.id)
                    duplicates.append(card.id)
                else:
                    seen.add(card.id)
        return duplicates

    # ---------- tags / collections ----------

    def tag_exists_exact(self, tag: str) -> bool:
        return tag in self.all_tags

    def tag_exists_fuzzy(self, tag: str) -> bool:
        return any(Levenshtein.distance(tag, t) <= len(tag) * 0.5 for t in self.all_tags)

    def tag_match_first_chars(self, tag: str) -> List[str]:
        return [t for t in self.all_tags if t.startswith(tag)]

    def tag_match_fuzzy(self, tag: str, number: int = 5) -> List[str]:
        if not self.all_tags:
            return []
        if len(self.all_tags) < number:
            return list(self.all_tags)
        matches = rank_fuzzy(tag, self.all_tags, number)
        logger.log(TRACE, "Tags proches de %r : %s", tag, matches)
        return matches

    def collection_name_match_fuzzy(self, name: str, number: int = 5) -> List[str]:
        names = self.get_collection_names()
        if not names:
            return []
        return rank_fuzzy(name, names, number)

    def collection_name_match_first_chars(self, name: str) -> List[str]:
        return [n for n in self.get_collection_names() if n.startswith(name)]

    def get_collection_names(self) -> List[str]:
        return [c.name for c in self.collections]

    def _collection_path(self, name: str, path: Optional[str] = None, fresh: bool = False) -> Optional[Path]:
        """
        Fichier d'une collection : jamais metadata.json, metadata.lock ou le
        fichier d'une autre collection (suffixe -2, -3... sinon). Un chemin
        explicite du manifeste déjà pris est refusé (None).
        """
        taken = {self.metadata_path.resolve(), self.lock_path.resolve()}
        taken.update(c.file_path.resolve() for c in self.collections)
        if path:
            candidate = Path(path)
            if candidate.resolve() in taken:
                logger.error("Fichier déjà utilisé, collection %s ignorée : %s", name, candidate)
                return None
            return candidate

        stem = collection_file_name(name)[:-len(".json")]
        candidate = self.folder / f"{stem}.json"
        suffix = 1
        # fresh : un fichier orphelin sur le disque n'est pas repris
        while candidate.resolve() in taken or (fresh and candidate.exists()):
            suffix += 1
            candidate = self.folder / f"{stem}-{suffix}.json"
        return candidate

    def get_collection(self, name: Optional[str]) -> Optional[FlashCardCollection]:
        for collection in self.collections:
            if collection.name == name:
                return collection
        return None

    def _get_or_create_collection(self, name: str) -> FlashCardCollection:
        collection = self.get_collection(name)
        if collection is None:
            logger.warning("Collection inconnue, création : %s", name)
            collection = FlashCardCollection(name, self._collection_path(name, fresh=True), self.largest_id)
            self.collections.append(collection)
        return collection

    # ---------- cartes ----------

    def add_card(self, card: FlashCard, similar_card_cb: Optional[SimilarCardsCallback] = None) -> bool:
        with self._lock:
            logger.debug("Ajout d'une carte dans %s : %.50s", card.collection, card.question)
            collection = self._get_or_create_collection(card.collection)
            self.largest_id += 1
            card.id = self.largest_id
            ok = collection.add_card(card, similar_card_cb)
            self.save_collections(only_save_metadata=True)
            self._index_tags(card.tags)
            self.find_duplicate_ids()
            return ok

    def update_card(self, card_id: int, changes: Dict[str, Any]) -> Optional[FlashCard]:
        """
        Applique `changes` à la carte (modifiée sur place) et la sauvegarde.
        Un changement de collection déplace la carte en gardant son id.
        Retourne la carte à jour, ou None si l'id est inconnu / la sauvegarde échoue.
        """
        with self._lock:
            card = self.get_card_by_id(card_id)
            if card is None:
                logger.error("Carte %s introuvable", card_id)
                return None
            source = self.get_collection(card.collection)
            changes = {k: v for k, v in changes.items() if k not in ("id", "dateCreated", "dateModified")}
            target_name = changes.get("collection", card.collection)

            try:
                FlashCard.model_validate({**card.model_dump(), **changes})
            except ValidationError as e:
                logger.error("Mise à jour invalide pour la carte %s: %s", card_id, e.errors())
                return None
            for key, value in changes.items():
                setattr(card, key, value)
            card.dateModified = utcnow()

            if source is not None and source.name != target_name:
                source.delete_card(card.id)
                target = self._get_or_create_collection(target_name)
                ok = target.add_card(card)
                self.save_collections(only_save_metadata=True)
            elif source is not None:
                ok = source.update_card(card)
            else:
                ok = False

            self._index_tags(card.tags)
            return card if ok else None

    def delete_card(self, card_id: int) -> bool:
        with self._lock:
            for collection in self.collections:
                if collection.get_card_by_id(card_id) is not None:
                    return collection.delete_card(int(card_id))
            logger.error("Carte %s introuvable", card_id)
            return False

    def get_card_by_id(self, card_id: Union[int, str, None]) -> Optional[FlashCard]:
        for collection in self.collections:
            card = collection.get_card_by_id(card_id)
            if card is not None:
                return card
        return None

    def get_cards(self, params: Dict[str, Any], method: str = "AND") -> List[FlashCard]:
        logger.log(TRACE, "get_cards params=%s method=%s", params, method)
        if params.get("id") is not None and not isinstance(params.get("id"), (list, tuple)):
            card = self.get_card_by_id(params["id"])
            if card is None:
                logger.warning("Carte %s introuvable", params["id"])
                return []
            return [card]

        name = params.get("collection")
        if name is None:
            cards: List[FlashCard] = []
            for collection in self.collections:
                cards.extend(collection.get_cards(params, method))
            return cards

        collection = self.get_collection(name)
        if collection is None:
            logger.warning("Collection introuvable : %s", name)
            return []
        return collection.get_cards(params, method)

    def get_count_of_cards(self, params: Dict[str, Any], method: str = "AND") -> int:
        if str(params.get("all", "")).lower() == "true":
            return self.get_count_of_all_cards()
        return len(self.get_cards(params, method))

    def get_count_of_all_cards(self) -> int:
        return sum(len(c.cards) for c in self.collections)

    # ---------- sauvegarde / fermeture ----------

    def save_collections(self, only_save_metadata: bool = False) -> bool:
        with self._lock:
            manifest = [{"name": c.name, "path": str(c.file_path)} for c in self.collections]
            try:
                write_json_atomic(self.metadata_path, manifest)
            except OSError as e:
                logger.error("Échec d'écriture de %s: %s", METADATA_FILE, e)
                return False
            if only_save_metadata:
                return True
            return all([c.save_collection() for c in self.collections])

    def finalize(self) -> None:
        logger.debug("Fermeture de la base de cartes")
        self.save_collections()
        if self.lock_path.exists():
            self.lock_path.unlink()
            logger.debug("Verrou retiré")
        self.find_duplicate_ids()
