import json
import logging
import math
import re
from typing import Any, Iterable, List, Optional

from rapidfuzz.distance import Levenshtein

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*[ \t]*\n?(.*?)```", re.DOTALL)
_MATH_RE = re.compile(r"\$\$.*?\$\$", re.DOTALL)


def lowest_levenshtein_distance(input_string: str, compare_string: str) -> float:
    """
    Plus petite distance de Levenshtein entre compare_string et toutes les
    sous-chaînes de même longueur de input_string (insensible à la casse).
    0 si compare_string apparaît tel quel ; inf si input_string est plus court.
    """
    if compare_string in input_string:
        return 0
    needle = compare_string.lower()
    haystack = input_string.lower()
    width = len(needle)
    best = math.inf
    for i in range(len(haystack) - width + 1):
        d = Levenshtein.distance(haystack[i:i + width], needle)
        if d < best:
            best = d
            if best == 0:
                break
    return best


def fuzzy_contains(text: str, query: str) -> bool:
    return lowest_levenshtein_distance(text, query) <= len(query) * 0.5


def rank_fuzzy(query: str, candidates: Iterable[str], number: int = 5) -> List[str]:
    """
    Classe les candidats par proximité avec query et retourne les `number`
    meilleurs, sans doublon. Chaque candidat prend la meilleure de trois
    distances : fenêtre de début, chaîne entière, fenêtre de fin (pénalisée).
    """
    penalty = (len(query) - 1) // 3 if query else 0
    scored = []
    for order, candidate in enumerate(candidates):
        head = Levenshtein.distance(query, candidate[:len(query)])
        whole = Levenshtein.distance(query, candidate)
        tail = Levenshtein.distance(query, candidate[max(0, len(candidate) - len(query)):]) + penalty
        scored.append((min(head, whole, tail), order, candidate))

    scored.sort()
    matches: List[str] = []
    for _, _, candidate in scored:
        if candidate in matches:
            continue
        matches.append(candidate)
        if len(matches) >= number:
            break
    return matches


def strip_code_fences(text: str) -> str:
    """Retourne le contenu du premier bloc ``` ... ``` (ou le texte tel quel)."""
    m = _FENCE_RE.search(text)
    if m:
        return m.group(1).strip()
    stripped = text.strip()
    # bloc ouvert mais jamais fermé (réponse tronquée)
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
    return stripped.strip()


def _outermost_json_span(text: str) -> Optional[str]:
    starts = [i for i in (text.find("["), text.find("{")) if i >= 0]
    if not starts:
        return None
    start = min(starts)
    closing = "]" if text[start] == "[" else "}"
    end = text.rfind(closing)
    if end <= start:
        return None
    return text[start:end + 1]


def parse_json_response(response: Any) -> Any:
    """
    Décode la réponse JSON d'un modèle de chat.
    - None / "" -> None
    - non-str -> retourné tel quel
    - sinon : retire les ``` éventuels, décode ; à défaut, tente le plus grand
      bloc [...] / {...} ; à défaut, retourne le texte brut.
    """
    if response is None:
        logger.warning("Réponse vide (None)")
        return None
    if not isinstance(response, str):
        logger.warning("Réponse non textuelle, retournée telle quelle")
        return response
    if response.strip() == "":
        logger.warning("Réponse vide")
        return None

    body = strip_code_fences(response)
    try:
        return json.loads(body)
    except json.JSONDecodeError:
        pass

    span = _outermost_json_span(body)
    if span is not None:
        try:
            return json.loads(span)
        except json.JSONDecodeError as e:
            logger.error("JSON illisible dans la réponse: %s", e)

    logger.warning("Réponse non JSON, texte brut retourné")
    return response


def extract_math_expressions(text: str) -> List[str]:
    """Toutes les expressions $$...$$ du texte, dans l'ordre."""
    if not text:
        return []
    return _MATH_RE.findall(text)
