"""Legal discipline catalogue shared by the question pools and the generator."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple


@dataclass(frozen=True)
class Discipline:
    """Immutable pairing of a storage slug with its display name."""

    slug: str
    display_name: str


DISCIPLINES: Tuple[Discipline, ...] = (
    Discipline("Constitucional", "Direito Constitucional"),
    Discipline("Administrativo", "Direito Administrativo"),
    Discipline("licitacao_contratos", "Licitações e Contratos"),
    Discipline("servidores_publicos", "Servidores Públicos"),
    Discipline("Penal", "Direito Penal"),
)

AREAS: Tuple[str, ...] = (
    "Administrativa",
    "Judiciária",
    "Policial",
    "Fiscal",
    "Controle",
    "Legislativa",
    "Jurídica",
)

BOARDS: Tuple[str, ...] = (
    "Cebraspe",
    "FGV",
    "FCC",
    "Vunesp",
    "Cesgranrio",
    "Quadrix",
    "Instituto AOCP",
)

ORGANIZATIONS: Tuple[str, ...] = (
    "PF",
    "PRF",
    "TJ",
    "TRT",
    "MP",
    "TCU",
    "Receita Federal",
    "INSS",
)

DIFFICULTIES: Tuple[str, ...] = ("Fácil", "Médio", "Difícil", "Complexo")
DEFAULT_DIFFICULTY = "Médio"
DEFAULT_CATEGORY = "administrativo"
DEFAULT_TOPIC = "Geral"

PLACEHOLDER_OPTIONS: Tuple[str, ...] = ("Option A", "Option B", "Option C", "Option D")
PLACEHOLDER_STATEMENT = "Statement not available."
PLACEHOLDER_EXPLANATION = "Explanation not available."

TOPIC_TO_SLUG: Dict[str, str] = {entry.display_name: entry.slug for entry in DISCIPLINES}
SLUG_TO_TOPIC: Dict[str, str] = {entry.slug: entry.display_name for entry in DISCIPLINES}
_SLUG_TO_TOPIC_FOLDED: Dict[str, str] = {slug.casefold(): name for slug, name in SLUG_TO_TOPIC.items()}


def topic_names() -> List[str]:
    return [entry.display_name for entry in DISCIPLINES]


def display_name_for(value: Optional[str]) -> Optional[str]:
    """Return the display name for a slug or display name.

    Unknown values pass through unchanged so newly added categories keep
    working before the catalogue learns about them.
    """

    if value is None:
        return None
    if value in TOPIC_TO_SLUG:
        return value
    if value in SLUG_TO_TOPIC:
        return SLUG_TO_TOPIC[value]
    return _SLUG_TO_TOPIC_FOLDED.get(value.casefold(), value)


def slug_for(value: Optional[str]) -> Optional[str]:
    """Return the storage slug for a display name or slug (pass-through when unknown)."""

    if value is None:
        return None
    if value in TOPIC_TO_SLUG:
        return TOPIC_TO_SLUG[value]
    return value


def slug_variants(topics: Iterable[str]) -> List[str]:
    """Expand display names into every slug spelling the practice pool may hold.

    Older rows store ``constitucional`` while newer ones store
    ``Constitucional``; both must match the same filter.
    """

    variants: List[str] = []
    for topic in topics:
        slug = slug_for(topic)
        if not slug:
            continue
        for candidate in (slug, slug.lower(), slug.capitalize()):
            if candidate not in variants:
                variants.append(candidate)
    return variants
