"""
backend/app/utils/team_matching.py

Purpose:
    Fuzzy team-name matching used to reconcile external feed team names with
    the teams stored locally. Normalization, Levenshtein similarity and a
    weighted multi-strategy matcher, plus competition-name similarity used by
    the live sync to rank candidate games.

Notes:
    - Stored external IDs always take precedence over fuzzy names.
    - Everything here is pure and deterministic; callers log and decide.
    - Suffix stripping is aggressive on purpose ("Manchester United" and
      "Manchester City" both reduce to "manchester"). Live sync only accepts a
      fuzzy match when both teams of one stored game are found.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Sequence

logger = logging.getLogger("pronofoot.team_matching")

_SPACE_RE = re.compile(r"\s+")

# Applied in order on the lowercased, space-collapsed name.
_NORMALIZATION_RULES: list[tuple[re.Pattern[str], str]] = [
    (re.compile(pattern), replacement)
    for pattern, replacement in (
        # Club suffixes
        (r"\s+fc$", ""),
        (r"\s+cf$", ""),
        (r"\s+ac$", ""),
        (r"\s+as$", ""),
        (r"\s+united$", ""),
        (r"\s+city$", ""),
        (r"\s+real$", ""),
        (r"\s+pae$", ""),
        (r"\s+sfp$", ""),
        (r"\s+fk$", ""),
        (r"\s+ec$", ""),
        (r"\s+afc$", ""),
        (r"\s+sk$", ""),
        (r"\s+aş$", ""),
        (r"\s+ağdam$", ""),
        (r"\s+ağdam\s+fk$", ""),
        # Club prefixes
        (r"^fc\s+", ""),
        (r"^cf\s+", ""),
        (r"^ac\s+", ""),
        (r"^as\s+", ""),
        (r"^real\s+", ""),
        (r"^pae\s+", ""),
        (r"^sfp\s+", ""),
        (r"^fk\s+", ""),
        (r"^ec\s+", ""),
        (r"^club\s+", ""),
        (r"^sport\s+", ""),
        (r"^royale\s+", ""),
        (r"^ssc\s+", ""),
        (r"^bayer\s+04\s+", "bayer "),
        # Known aliases
        (r"internazionale\s+milano", "inter milan"),
        (r"internazionale", "inter milan"),
        (r"lisboa\s+e\s+benfica", "benfica"),
        (r"lisboa\s+benfica", "benfica"),
        (r"københavn", "copenhagen"),
        (r"atlético\s+de\s+madrid", "atlético madrid"),
        (r"union\s+saint-gilloise", "union saint-gilloise"),
        (r"manchester\s+city\s+fc", "manchester city"),
        (r"villarreal\s+cf", "villarreal"),
        (r"psv$", "psv eindhoven"),
        (r"napoli\s+ssc", "napoli"),
        (r"ssc\s+napoli", "napoli"),
        (r"galatasaray\s+sk", "galatasaray"),
        (r"galatasaray\s+aş", "galatasaray"),
        (r"fk\s+bodø/glimt", "bodø/glimt"),
        (r"bodo\s+glimt", "bodø/glimt"),
        (r"qarabağ\s+ağdam\s+fk", "qarabağ"),
        (r"qarabağ\s+ağdam", "qarabağ"),
        (r"athletic\s+bilbao", "athletic club"),
        (r"olympique\s+de\s+marseille", "marseille"),
        (r"olympique\s+marseille", "marseille"),
        (r"om\s+marseille", "marseille"),
        (r"^om$", "marseille"),
        (r"sporting\s+clube\s+de\s+portugal", "sporting cp"),
        (r"sporting\s+cp\s+portugal", "sporting cp"),
        (r"sporting\s+du\s+portugal", "sporting cp"),
        (r"sporting\s+portugal", "sporting cp"),
        (r"as\s+monaco", "monaco"),
        (r"monaco\s+fc", "monaco"),
        (r"paphos\s+fc", "pafos"),
        (r"pafos\s+fc", "pafos"),
        (r"pafo\s+fc", "pafos"),
        (r"^paphos$", "pafos"),
        (r"^pafo$", "pafos"),
    )
]

_ACCENT_TABLE = str.maketrans({
    **{ch: "a" for ch in "àáâãäå"},
    **{ch: "e" for ch in "èéêë"},
    **{ch: "i" for ch in "ìíîï"},
    **{ch: "o" for ch in "òóôõöø"},
    **{ch: "u" for ch in "ùúûü"},
    "ñ": "n",
    "ç": "c",
    "æ": "ae",
    "ß": "ss",
})

EXACT_NORMALIZED = "exact_normalized"
FUZZY_NORMALIZED = "fuzzy_normalized"
PARTIAL_MATCH = "partial_match"
WORD_OVERLAP = "word_overlap"

# (name, minimum raw score, weight)
MATCH_STRATEGIES: tuple[tuple[str, float, float], ...] = (
    (EXACT_NORMALIZED, 0.95, 1.0),
    (FUZZY_NORMALIZED, 0.7, 0.9),
    (PARTIAL_MATCH, 0.6, 0.8),
    (WORD_OVERLAP, 0.5, 0.7),
)

BEST_MATCH_THRESHOLD = 0.6


@dataclass(frozen=True)
class TeamMatch:
    team: dict[str, Any]
    score: float
    method: str


def normalize_team_name(name: str) -> str:
    """Reduce a team name to a comparison key (suffixes, prefixes, aliases, accents)."""
    text = _SPACE_RE.sub(" ", (name or "").lower())
    for pattern, replacement in _NORMALIZATION_RULES:
        text = pattern.sub(replacement, text)
    text = text.translate(_ACCENT_TABLE)
    return _SPACE_RE.sub(" ", text).strip()


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance (insert, delete, substitute all cost 1)."""
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ch_a in enumerate(a, start=1):
        current = [i]
        for j, ch_b in enumerate(b, start=1):
            if ch_a == ch_b:
                current.append(previous[j - 1])
            else:
                current.append(1 + min(previous[j - 1], previous[j], current[j - 1]))
        previous = current
    return previous[-1]


def calculate_similarity(a: str, b: str) -> float:
    """Similarity in [0, 1]: 1 - distance / len(longer). Case-sensitive."""
    longer, shorter = (a, b) if len(a) > len(b) else (b, a)
    if not longer:
        return 1.0
    return (len(longer) - levenshtein_distance(longer, shorter)) / len(longer)


def partial_match_score(name_a: str, name_b: str) -> float:
    """Length ratio when one normalized name contains the other, else 0."""
    norm_a = normalize_team_name(name_a)
    norm_b = normalize_team_name(name_b)
    if norm_a in norm_b or norm_b in norm_a:
        shorter, longer = sorted((norm_a, norm_b), key=len)
        if not longer:
            return 0.0
        return len(shorter) / len(longer)
    return 0.0


def word_overlap_score(name_a: str, name_b: str) -> float:
    """Share of words (len > 2) that have a >0.8 similar counterpart in the other name."""
    words_a = [w for w in normalize_team_name(name_a).split() if len(w) > 2]
    words_b = [w for w in normalize_team_name(name_b).split() if len(w) > 2]
    if not words_a or not words_b:
        return 0.0
    common = [
        wa for wa in words_a
        if any(calculate_similarity(wa, wb) > 0.8 for wb in words_b)
    ]
    return len(common) / max(len(words_a), len(words_b))


def find_best_match(external_name: str, names: Iterable[str]) -> str | None:
    """Return the local name most similar to external_name (>= 60%), or None."""
    normalized_external = normalize_team_name(external_name)
    best_match: str | None = None
    best_score = 0.0
    for name in names:
        similarity = calculate_similarity(normalized_external, normalize_team_name(name))
        if similarity > best_score and similarity >= BEST_MATCH_THRESHOLD:
            best_score = similarity
            best_match = name

    if best_match:
        logger.debug(
            "Team match found: %s -> %s (%d%%)",
            external_name, best_match, round(best_score * 100),
        )
    else:
        logger.debug("No team match found for %s (best %d%%)", external_name, round(best_score * 100))
    return best_match


def _strategy_score(strategy: str, external_name: str, team_name: str) -> float:
    if strategy == EXACT_NORMALIZED:
        return 1.0 if normalize_team_name(external_name) == normalize_team_name(team_name) else 0.0
    if strategy == FUZZY_NORMALIZED:
        return calculate_similarity(normalize_team_name(external_name), normalize_team_name(team_name))
    if strategy == PARTIAL_MATCH:
        return partial_match_score(external_name, team_name)
    if strategy == WORD_OVERLAP:
        return word_overlap_score(external_name, team_name)
    return 0.0


def find_best_team_match(external_name: str, teams: Sequence[dict[str, Any]]) -> TeamMatch | None:
    """Weighted multi-strategy matcher over team dicts carrying a "name" key.

    Each strategy only counts when its raw score reaches the strategy
    threshold; the highest weighted score across all teams wins.
    """
    best: TeamMatch | None = None
    for team in teams:
        team_name = str(team.get("name") or "")
        for strategy, threshold, weight in MATCH_STRATEGIES:
            score = _strategy_score(strategy, external_name, team_name)
            weighted = score * weight
            if score >= threshold and weighted > (best.score if best else 0.0):
                best = TeamMatch(team=team, score=weighted, method=strategy)

    if best:
        logger.debug(
            "Advanced team match: %s -> %s (%.1f%%, %s)",
            external_name, best.team.get("name"), best.score * 100, best.method,
        )
    else:
        logger.debug("No advanced team match found for %s", external_name)
    return best


def competition_similarity(name_a: str | None, name_b: str | None) -> float:
    """Score how likely two competition names denote the same competition."""
    a = (name_a or "").lower().strip()
    b = (name_b or "").lower().strip()
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if a in b or b in a:
        return 0.8
    words_a = [w for w in a.split() if len(w) > 3]
    words_b = [w for w in b.split() if len(w) > 3]
    common = [w for w in words_a if w in words_b]
    if len(common) >= 2:
        return len(common) / max(len(words_a), len(words_b))
    return 0.0


def competitions_match(name_a: str | None, name_b: str | None) -> bool:
    """Equality or containment after lowercasing."""
    a = (name_a or "").lower().strip()
    b = (name_b or "").lower().strip()
    if not a or not b:
        return False
    return a == b or a in b or b in a


def _tokens(name: str) -> set[str]:
    noise = {"fc", "cf", "sc", "ac", "as", "afc", "club", "de", "rc", "us"}
    return {
        token for token in normalize_team_name(name).split()
        if token not in noise and len(token) >= 3
    }


def teams_match(name_a: str, name_b: str) -> bool:
    """Loose check used by admin duplicate guards: shared token or 4-char prefix."""
    tokens_a = _tokens(name_a)
    tokens_b = _tokens(name_b)
    if not tokens_a or not tokens_b:
        return False
    if tokens_a & tokens_b:
        return True
    for token_a in tokens_a:
        for token_b in tokens_b:
            if len(token_a) >= 4 and len(token_b) >= 4:
                if token_a.startswith(token_b[:4]) or token_b.startswith(token_a[:4]):
                    return True
    return False
