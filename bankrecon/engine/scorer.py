"""Deterministic confidence scoring of match candidates."""

from typing import Iterable, List, Optional

from bankrecon.engine.candidates import (
    TAG_DATE_WINDOW,
    TAG_PARTNER_EXACT,
    TAG_PARTNER_FUZZY,
    TAG_REFERENCE,
    amount_tag,
)
from bankrecon.engine.config import ReconciliationConfig
from bankrecon.engine.models import MatchCandidate, MatchConfidence, ScoredCandidate


class Scorer:
    """
    Weighted, additive scoring clamped to 0-100.

    Only the best amount band and the best partner rule count.
    """

    def __init__(self, config: Optional[ReconciliationConfig] = None):
        self.config = config or ReconciliationConfig()

    def score(self, candidate: MatchCandidate) -> ScoredCandidate:
        tags = set(candidate.tags)
        total = 0
        reasons: List[str] = []

        if TAG_REFERENCE in tags:
            total += self.config.exact_reference_weight
            reasons.append(TAG_REFERENCE)

        # Bands are ordered narrowest first
        for band in self.config.amount_tolerance_bands:
            if amount_tag(band) in tags:
                total += band.weight
                reasons.append(amount_tag(band))
                break

        if TAG_PARTNER_EXACT in tags:
            total += self.config.partner_exact_weight
            reasons.append(TAG_PARTNER_EXACT)
        elif TAG_PARTNER_FUZZY in tags:
            total += self.config.partner_fuzzy_weight
            reasons.append(TAG_PARTNER_FUZZY)

        if TAG_DATE_WINDOW in tags:
            total += self.config.date_window_weight
            reasons.append(TAG_DATE_WINDOW)

        confidence = max(0, min(100, total))
        return ScoredCandidate(
            candidate=candidate,
            confidence=confidence,
            reasons=tuple(reasons),
            band=self.band(confidence),
        )

    def band(self, confidence: int) -> MatchConfidence:
        if confidence >= self.config.auto_match_threshold:
            return MatchConfidence.HIGH
        if confidence >= self.config.suggestion_threshold:
            return MatchConfidence.MEDIUM
        return MatchConfidence.LOW

    def rank(self, candidates: Iterable[MatchCandidate]) -> List[ScoredCandidate]:
        """Score and order best first: confidence, amount difference, due date, target id."""
        return sorted((self.score(c) for c in candidates), key=lambda s: s.sort_key)
