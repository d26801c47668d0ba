"""Decode heterogeneous pool records into canonical ``Question`` objects.

Both question pools grew organically: options arrive as JSON arrays, letter
keyed objects, JSON text or JSON text wrapped in JSON text; answers arrive as
indices, letters or numerals stored as text. Everything is decoded here, once,
so nothing downstream needs to care about the storage encoding.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any, List, Mapping, Optional

import disciplines
from schemas import Question

_LOGGER = logging.getLogger(__name__)

_OPTION_KEYS = ("options", "alternatives", "alternativas", "opcoes")
_ANSWER_KEYS = ("correct_answer", "correct_index", "resposta_correta")
_STATEMENT_KEYS = ("statement", "enunciado")
_EXPLANATION_KEYS = ("explanation", "comment", "comentario", "ai_hint", "explicacao_ia")


def _first_present(raw: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def index_to_letter(index: int) -> str:
    """Encode a zero-based option index as its letter (0 -> "A")."""
    return chr(ord("A") + int(index))


def decode_answer(value: Any) -> int:
    """Decode a stored correct answer into a zero-based index.

    Numbers are taken as indices, a single letter maps A..Z to 0..25 in
    either case, and numerals stored as text are parsed. Anything else falls
    back to 0. The result is not checked against the option count.
    """

    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0

    text = str(value).strip()
    if not text:
        return 0
    upper = text.upper()
    if len(upper) == 1 and "A" <= upper <= "Z":
        return ord(upper) - ord("A")
    try:
        return int(text)
    except ValueError:
        return 0


def decode_options(value: Any, *, record_id: Any = None) -> List[str]:
    """Decode stored options into an ordered list, never returning an empty one."""

    decoded = value
    if isinstance(decoded, (bytes, bytearray)):
        decoded = decoded.decode("utf-8", errors="replace")
    if isinstance(decoded, str):
        try:
            decoded = json.loads(decoded)
            # double-encoded payloads: a JSON string holding JSON text
            if isinstance(decoded, str):
                decoded = json.loads(decoded)
        except (TypeError, ValueError):
            _LOGGER.warning("Could not parse options for question %s", record_id)

    options: List[str] = []
    if isinstance(decoded, list):
        options = ["" if item is None else str(item) for item in decoded]
    elif isinstance(decoded, Mapping):
        options = ["" if decoded[key] is None else str(decoded[key]) for key in sorted(decoded, key=str)]

    if not options:
        if value is not None:
            _LOGGER.warning("Substituting placeholder options for question %s", record_id)
        return list(disciplines.PLACEHOLDER_OPTIONS)
    return options


class QuestionNormalizer:
    """Map one raw pool record to one canonical ``Question`` without raising."""

    def __init__(self, default_difficulty: str = disciplines.DEFAULT_DIFFICULTY) -> None:
        self.default_difficulty = default_difficulty

    def normalize(self, raw: Mapping[str, Any]) -> Question:
        record_id = raw.get("id")
        discipline = _text(raw.get("discipline") or raw.get("disciplina"))
        category = _text(raw.get("category") or raw.get("categoria"))

        if discipline:
            topic = disciplines.display_name_for(discipline)
        elif category:
            topic = disciplines.display_name_for(category)
        else:
            topic = disciplines.DEFAULT_TOPIC
        slug = category or disciplines.slug_for(discipline) or disciplines.DEFAULT_CATEGORY

        hint = _text(raw.get("ai_hint") or raw.get("explicacao_ia"))
        return Question(
            id=str(record_id) if record_id is not None else "",
            topic=topic,
            category=slug,
            statement=_text(_first_present(raw, _STATEMENT_KEYS)) or disciplines.PLACEHOLDER_STATEMENT,
            options=decode_options(_first_present(raw, _OPTION_KEYS), record_id=record_id),
            correct_index=decode_answer(_first_present(raw, _ANSWER_KEYS)),
            explanation=_text(_first_present(raw, _EXPLANATION_KEYS)) or disciplines.PLACEHOLDER_EXPLANATION,
            difficulty=_text(raw.get("difficulty") or raw.get("dificuldade")) or self.default_difficulty,
            subtopic=_text(raw.get("subtopic")),
            ai_hint=hint,
            is_marked_for_review=bool(raw.get("is_marked_for_review", False)),
            area=_text(raw.get("area")),
            board=_text(raw.get("board") or raw.get("banca")),
            organization=_text(raw.get("organization") or raw.get("orgao")),
        )

    def normalize_many(self, records) -> List[Question]:
        return [self.normalize(record) for record in records]
