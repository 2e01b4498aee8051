"""Chunk activation conditions.

A chunk may carry rules that decide whether it is allowed into the prompt,
evaluated against the current chat. Rules combine with AND or OR logic and
each rule can be negated. Unknown rule types never match.
"""

import random
import re
from logging import Logger

from pydantic import BaseModel

from shared.models.memory import ChatMessage, ChunkConditions, ConditionRule, RetrievalResult

CONTEXT_WINDOW = 10


class SearchContext(BaseModel):
    """State of the chat that condition rules are evaluated against."""

    recent_messages: list[str] = []
    last_speaker: str = ""
    message_speakers: list[str] = []
    message_count: int = 0
    active_hashes: list[int] = []
    generation_type: str = "normal"
    is_group_chat: bool = False


def _speaker_name(message: ChatMessage) -> str:
    if message.name:
        return message.name
    return "User" if message.is_user else "Character"


def build_search_context(messages: list[ChatMessage], active_hashes: list[int] | None = None, generation_type: str = "normal", is_group_chat: bool = False, context_window: int = CONTEXT_WINDOW) -> SearchContext:
    recent = messages[-context_window:] if context_window > 0 else []
    return SearchContext(
        recent_messages=[m.text for m in recent],
        last_speaker=_speaker_name(messages[-1]) if messages else "",
        message_speakers=[_speaker_name(m) for m in recent],
        message_count=len(messages),
        active_hashes=list(active_hashes or []),
        generation_type=generation_type or "normal",
        is_group_chat=is_group_chat,
    )


def _values(rule: ConditionRule, default=None) -> list:
    values = rule.settings.get("values")
    if values is None:
        values = [rule.value] if rule.value is not None else ([default] if default is not None else [])
    return list(values)


##########################################
############# RULE EVALUATORS ############
##########################################

def _keyword(rule: ConditionRule, context: SearchContext, rng: random.Random) -> bool:
    match_mode = rule.settings.get("matchMode", "contains")
    case_sensitive = rule.settings.get("caseSensitive", False)
    text = " ".join(context.recent_messages)
    if not case_sensitive:
        text = text.lower()
    for raw in _values(rule):
        keyword = str(raw) if case_sensitive else str(raw).lower()
        if not keyword:
            continue
        if match_mode == "exact":
            flags = 0 if case_sensitive else re.IGNORECASE
            if re.search(rf"\b{re.escape(keyword)}\b", text, flags):
                return True
        elif match_mode == "startsWith":
            if text.startswith(keyword):
                return True
        elif match_mode == "endsWith":
            if text.endswith(keyword):
                return True
        elif keyword in text:
            return True
    return False


def _speaker(rule: ConditionRule, context: SearchContext, rng: random.Random) -> bool:
    targets = _values(rule)
    if rule.settings.get("matchType", "any") == "all":
        return all(target in context.message_speakers for target in targets)
    return context.last_speaker in targets


def _message_count(rule: ConditionRule, context: SearchContext, rng: random.Random) -> bool:
    count = int(rule.settings.get("count", rule.value or 0))
    operator = rule.settings.get("operator", "gte")
    if operator == "eq":
        return context.message_count == count
    if operator == "lte":
        return context.message_count <= count
    if operator == "between":
        upper = int(rule.settings.get("upperBound", 0))
        return count <= context.message_count <= upper
    return context.message_count >= count


def _chunk_active(rule: ConditionRule, context: SearchContext, rng: random.Random) -> bool:
    active = set(context.active_hashes)
    for target in _values(rule):
        try:
            if int(target) in active:
                return True
        except (TypeError, ValueError):
            continue
    return False


def _random_chance(rule: ConditionRule, context: SearchContext, rng: random.Random) -> bool:
    probability = float(rule.settings.get("probability", rule.value or 50))
    return rng.random() * 100 <= probability


def _generation_type(rule: ConditionRule, context: SearchContext, rng: random.Random) -> bool:
    current = context.generation_type.lower()
    targets = [str(t).lower() for t in _values(rule, default="normal")]
    if rule.settings.get("matchType", "any") == "all":
        return all(t == current for t in targets)
    return current in targets


def _is_group_chat(rule: ConditionRule, context: SearchContext, rng: random.Random) -> bool:
    expected = rule.settings.get("isGroup")
    if expected is None:
        expected = rule.value in (True, "true")
    return context.is_group_chat == bool(expected)


RULE_EVALUATORS = {
    "keyword": _keyword,
    "speaker": _speaker,
    "messageCount": _message_count,
    "chunkActive": _chunk_active,
    "randomChance": _random_chance,
    "generationType": _generation_type,
    "isGroupChat": _is_group_chat,
}


##########################################
############### EVALUATION ###############
##########################################

def evaluate_rule(rule: ConditionRule, context: SearchContext, logger: Logger, rng: random.Random | None = None) -> bool:
    """Evaluates one rule, negation applied.

    Unknown rule types and rules with unparsable settings are unmet.
    """
    evaluator = RULE_EVALUATORS.get(rule.type)
    if evaluator is None:
        logger.warning("Unknown condition type: %s", rule.type)
        result = False
    else:
        try:
            result = evaluator(rule, context, rng or random.Random())
        except (TypeError, ValueError) as e:
            # unmet even when negated
            logger.warning("Invalid settings for condition %s: %s", rule.type, e)
            return False
    return not result if rule.negate else result


def evaluate_conditions(conditions: ChunkConditions | None, context: SearchContext, logger: Logger, rng: random.Random | None = None) -> bool:
    """Returns True if a chunk with these conditions may be injected.

    No conditions, disabled conditions or an empty rule list always pass.
    """
    if conditions is None or not conditions.enabled or not conditions.rules:
        return True
    results = [evaluate_rule(rule, context, logger, rng) for rule in conditions.rules]
    if conditions.logic == "OR":
        return any(results)
    return all(results)


def filter_by_conditions(results: list[RetrievalResult], context: SearchContext, logger: Logger, rng: random.Random | None = None) -> list[RetrievalResult]:
    kept = [r for r in results if evaluate_conditions(r.metadata.conditions, context, logger, rng)]
    if len(kept) != len(results):
        logger.debug("Conditions filtered %d results to %d", len(results), len(kept))
    return kept
