"""Score adjustments of the retrieval pipeline.

Temporal decay attenuates chat chunks by message age, importance weighting
rescales a score by a 0..200 importance (100 is neutral), and keyword boost
raises chunks whose keywords occur in the query. Every function returns a
score in [0, 1] for inputs in [0, 1].
"""

from shared.models.config import TemporalDecayConfig
from shared.models.memory import KeywordWeight, RetrievalResult

DEFAULT_KEYWORD_WEIGHT = 1.5
NEUTRAL_IMPORTANCE = 100

# importance tiers in ranking priority order, with their lower bound
IMPORTANCE_TIERS: list[tuple[str, int]] = [
    ("critical", 175),
    ("high", 125),
    ("normal", 75),
    ("low", 0),
]


##########################################
############ TEMPORAL DECAY ##############
##########################################

def apply_temporal_decay(score: float, message_age: int, config: TemporalDecayConfig) -> float:
    """Attenuates a score by the age of its source message.

    exponential: score * 0.5 ** (age / half_life)
    linear:      max(0, score * (1 - linear_rate * age))

    The multiplier is floored at config.min_relevance, so the result never
    exceeds the input and never goes below zero.

    Args:
        score (float): The score to attenuate.
        message_age (int): Messages between the source message and the newest one.
        config (TemporalDecayConfig): Decay options.

    Returns:
        float: The decayed score. Unchanged if decay is disabled or age is 0.
    """
    if not config.enabled or message_age <= 0:
        return score
    if config.mode == "linear":
        multiplier = max(0.0, 1.0 - config.linear_rate * message_age)
    else:
        multiplier = 0.5 ** (message_age / config.half_life)
    multiplier = min(1.0, max(multiplier, config.min_relevance))
    return score * multiplier


##########################################
########## IMPORTANCE WEIGHTING ##########
##########################################

def apply_importance(score: float, importance: int | float) -> float:
    """Rescales a score by importance.

    adjusted = clamp(score * importance / 100 + (importance - 100) / 1000, 0, 1)

    Importance 100 returns the very same score object.
    """
    if importance == NEUTRAL_IMPORTANCE:
        return score
    multiplier = importance / 100
    boost = (importance - 100) / 1000
    return min(1.0, max(0.0, score * multiplier + boost))


def get_importance_tier(importance: int | float) -> str:
    for name, lower_bound in IMPORTANCE_TIERS:
        if importance >= lower_bound:
            return name
    return "low"


def rank_by_tiers(results: list[RetrievalResult]) -> list[RetrievalResult]:
    """Concatenates critical, high, normal and low tiers, each sorted by descending score."""
    ranked: list[RetrievalResult] = []
    for name, _ in IMPORTANCE_TIERS:
        tier = [r for r in results if get_importance_tier(r.metadata.importance) == name]
        ranked.extend(sorted(tier, key=lambda r: r.score, reverse=True))
    return ranked


##########################################
############# KEYWORD BOOST ##############
##########################################

def _normalize_keyword(keyword: str | KeywordWeight, custom_weights: dict[str, float]) -> KeywordWeight | None:
    if isinstance(keyword, KeywordWeight):
        text, weight = keyword.text, keyword.weight
    else:
        text, weight = keyword, DEFAULT_KEYWORD_WEIGHT
    text = text.strip().lower()
    if not text:
        return None
    weight = custom_weights.get(text, weight)
    return KeywordWeight(text=text, weight=weight)


def apply_keyword_boost(result: RetrievalResult, query: str) -> RetrievalResult:
    """Boosts a result whose keywords occur in the query.

    boost = 1 + sum(weight - 1) over the matched keywords; the boosted score
    is capped at 1.0. Disabled keywords never match.

    Returns:
        RetrievalResult: The same result, with score, keyword_boost and matched_keywords set.
    """
    metadata = result.metadata
    query_lower = query.lower()
    custom_weights = {k.lower(): w for k, w in metadata.custom_weights.items()}
    disabled = {k.lower() for k in metadata.disabled_keywords}

    matched: list[str] = []
    boost_sum = 0.0
    for raw in metadata.keywords:
        keyword = _normalize_keyword(raw, custom_weights)
        if keyword is None or keyword.text in disabled or keyword.text in matched:
            continue
        if keyword.text in query_lower:
            matched.append(keyword.text)
            boost_sum += keyword.weight - 1.0

    if matched:
        boost = 1.0 + boost_sum
        result.score = min(1.0, max(0.0, result.score * boost))
        result.keyword_boost = boost
        result.matched_keywords = matched
    return result
