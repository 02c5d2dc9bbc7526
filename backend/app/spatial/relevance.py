"""
relevance.py — Condition-aware relevance scoring for hospital candidates.

A patient's known conditions are expanded into the medical specialties
that treat them; a facility scores higher the more of those specialties
it lists. Scores are only used to order candidates, never to exclude one.

Scoring policy
==============

    wanted       = ⋃ CONDITION_SPECIALTIES[condition]   (or the condition itself)
    overlap      = |wanted ∩ facility.specialties|
    direct       = conditions whose own name is a facility tag
    critical     = any condition maps to Urgencias / UCI

    score = 10 × overlap + 5 × direct
            + (critical ? has_emergency + has_icu + has_trauma : 0)

Each extra overlapping tag is worth more than every capability bonus
combined, so "more overlapping tags → higher score" always holds.
"""

from __future__ import annotations

import unicodedata
from typing import Dict, FrozenSet, Iterable, Sequence, Set

OVERLAP_WEIGHT = 10.0
DIRECT_MATCH_WEIGHT = 5.0
CAPABILITY_BONUS = 1.0

CRITICAL_SPECIALTIES: FrozenSet[str] = frozenset({"urgencias", "uci"})


def normalize_tag(value: str) -> str:
    """Casefold and strip accents so 'Neumología' matches 'neumologia'."""
    decomposed = unicodedata.normalize("NFKD", value.strip())
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return " ".join(stripped.casefold().split())


_RAW_CONDITION_SPECIALTIES: Dict[str, Sequence[str]] = {
    "diabetes": ["Endocrinologia", "Medicina Interna", "Nefrologia", "Oftalmologia"],
    "diabetes mellitus": ["Endocrinologia", "Medicina Interna", "Nefrologia"],
    "hipertension": ["Cardiologia", "Medicina Interna", "Nefrologia"],
    "hipertension arterial": ["Cardiologia", "Medicina Interna"],
    "hypertension": ["Cardiologia", "Medicina Interna", "Nefrologia"],
    "cardiopatia": ["Cardiologia", "Cirugia Cardiovascular"],
    "heart disease": ["Cardiologia", "Cirugia Cardiovascular"],
    "infarto": ["Cardiologia", "Urgencias", "UCI"],
    "heart attack": ["Cardiologia", "Urgencias", "UCI"],
    "asma": ["Neumologia", "Alergologia", "Medicina Interna"],
    "asthma": ["Neumologia", "Alergologia", "Medicina Interna"],
    "epoc": ["Neumologia", "Medicina Interna"],
    "copd": ["Neumologia", "Medicina Interna"],
    "cancer": ["Oncologia", "Cirugia Oncologica", "Radioterapia"],
    "traumatismo": ["Traumatologia", "Ortopedia", "Urgencias"],
    "trauma": ["Traumatologia", "Ortopedia", "Urgencias"],
    "fractura": ["Traumatologia", "Ortopedia"],
    "fracture": ["Traumatologia", "Ortopedia"],
    "embarazo": ["Ginecologia", "Obstetricia", "Neonatologia"],
    "pregnancy": ["Ginecologia", "Obstetricia", "Neonatologia"],
    "pediatrico": ["Pediatria", "Neonatologia"],
    "renal": ["Nefrologia", "Urologia"],
    "neurologico": ["Neurologia", "Neurocirugia"],
    "epilepsia": ["Neurologia", "Urgencias"],
    "epilepsy": ["Neurologia", "Urgencias"],
    "acv": ["Neurologia", "Urgencias", "UCI"],
    "stroke": ["Neurologia", "Urgencias", "UCI"],
    "psiquiatrico": ["Psiquiatria", "Salud Mental"],
}

CONDITION_SPECIALTIES: Dict[str, FrozenSet[str]] = {
    normalize_tag(condition): frozenset(normalize_tag(s) for s in specialties)
    for condition, specialties in _RAW_CONDITION_SPECIALTIES.items()
}


def specialties_for(conditions: Iterable[str]) -> Set[str]:
    """Expand conditions into the (normalized) specialty tags that treat them."""
    wanted: Set[str] = set()
    for condition in conditions:
        key = normalize_tag(condition)
        if not key:
            continue
        wanted |= CONDITION_SPECIALTIES.get(key, frozenset({key}))
    return wanted


def relevance_score(
    conditions: Sequence[str],
    specialties: Iterable[str],
    *,
    has_emergency: bool = False,
    has_icu: bool = False,
    has_trauma: bool = False,
) -> float:
    """
    Score how well a facility's specialty tags cover a condition list.

    Parameters
    ----------
    conditions : sequence of str
        Patient conditions, free text ("Asma", "asthma", "ACV").
    specialties : iterable of str
        Facility specialty tags.
    has_emergency, has_icu, has_trauma : bool
        Facility capabilities, rewarded only for critical conditions.

    Returns
    -------
    float
        0.0 when nothing overlaps; higher is more relevant.
    """
    tags = {normalize_tag(s) for s in specialties if s}
    wanted = specialties_for(conditions)
    if not wanted:
        return 0.0

    overlap = len(wanted & tags)
    direct = sum(1 for c in conditions if normalize_tag(c) in tags)

    score = OVERLAP_WEIGHT * overlap + DIRECT_MATCH_WEIGHT * direct

    if wanted & CRITICAL_SPECIALTIES:
        score += CAPABILITY_BONUS * sum((has_emergency, has_icu, has_trauma))

    return round(score, 1)
