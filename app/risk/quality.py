from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Sequence

_WORD_RE = re.compile(r"\S+")


@dataclass(frozen=True)
class QualityResult:
    score: float
    flags: list[str] = field(default_factory=list)


def score_justification(
    text: str,
    *,
    min_words: int,
    short_words: int,
    banned_phrases: Sequence[str],
    keywords: Sequence[str],
) -> QualityResult:
    """
    Heuristic quality score in [0, 1] for the free-text justification.
    Informational only: it never changes the risk score or the decision.
    """
    flags: list[str] = []
    score = 1.0

    words = _WORD_RE.findall(text or "")
    if len(words) < min_words:
        flags.append("too_short")
        score -= 0.2
    elif len(words) < short_words:
        flags.append("short")
        score -= 0.1

    lowered = (text or "").lower()
    if any(phrase.lower() in lowered for phrase in banned_phrases if phrase):
        flags.append("boilerplate")
        score -= 0.3

    if keywords and not any(k.lower() in lowered for k in keywords if k):
        flags.append("no_domain_keyword")
        score -= 0.2

    return QualityResult(score=round(max(0.0, score), 4), flags=flags)
