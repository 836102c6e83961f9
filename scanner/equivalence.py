"""
Equivalence scoring between two markets' metadata.

The score answers "do these two listings describe the same real-world event
with aligned outcomes?" It is built only from metadata dimensions (title,
entities, dates, category, outcome shape). Prices never enter it, so a cheap
price coincidence can't make two unrelated markets look equivalent.

Every comparison is symmetric: score(a, b) == score(b, a).
"""

from __future__ import annotations

import logging
import re
from datetime import date
from difflib import SequenceMatcher

from config import Config
from scanner.models import (
    EquivalenceScore,
    EquivalenceValidations,
    ExtractedEntities,
    Category,
    MarketMetadata,
    OutcomeMapping,
)

logger = logging.getLogger(__name__)

# Title similarity blend
W_SUBSTRING = 0.4
W_JACCARD = 0.6

# Overall score weights (sum to 1.0)
W_TITLE = 0.35
W_ENTITY = 0.30
W_DATE = 0.15
W_CATEGORY = 0.10
W_OUTCOME = 0.10

CROSS_CATEGORY_SCORE_CAP = 0.75
# Topics that overlap across venues; a pair passes if either side lists the other
RELATED_CATEGORIES: dict[Category, frozenset[Category]] = {
    Category.POLITICS: frozenset({Category.ECONOMICS}),
    Category.ECONOMICS: frozenset({Category.POLITICS, Category.CRYPTO}),
    Category.CRYPTO: frozenset({Category.ECONOMICS, Category.TECH}),
    Category.TECH: frozenset({Category.CRYPTO, Category.SCIENCE}),
    Category.SCIENCE: frozenset({Category.TECH}),
}

# Each failed validation subtracts this from the overall score
VALIDATION_PENALTY = 0.1

# Neutral scores when a dimension has no evidence either way
NEUTRAL_ENTITY_OVERLAP = 0.5
NEUTRAL_DATE_ALIGNMENT = 0.5
ONE_SIDED_DATE_ALIGNMENT = 0.3

# Without any shared entity, only near-identical titles may match
MIN_TITLE_WITHOUT_ENTITIES = 0.75
MIN_TITLE_ABSOLUTE = 0.30
# Amounts within this relative tolerance are the same threshold
AMOUNT_TOLERANCE = 0.01

_NEGATION_PATTERNS = (
    re.compile(r"\bnot\b"),
    re.compile(r"\bwon't\b"),
    re.compile(r"\bwill\s+not\b"),
    re.compile(r"\bfail\s+to\b"),
    re.compile(r"\brefuse\s+to\b"),
)
_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_title(title: str) -> str:
    """Lowercase, punctuation to spaces, collapsed whitespace."""
    return _WHITESPACE.sub(" ", _NON_WORD.sub(" ", title.lower())).strip()


def _longest_common_substring_ratio(a: str, b: str) -> float:
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    match = SequenceMatcher(None, a, b, autojunk=False).find_longest_match(0, len(a), 0, len(b))
    return 2.0 * match.size / (len(a) + len(b))


def _token_jaccard(a: str, b: str) -> float:
    tokens_a = set(a.split())
    tokens_b = set(b.split())
    union = tokens_a | tokens_b
    if not union:
        return 0.0
    return len(tokens_a & tokens_b) / len(union)


def title_similarity(title_a: str, title_b: str) -> float:
    """0.4 * longest-common-substring ratio + 0.6 * token Jaccard, on normalized titles."""
    norm_a = normalize_title(title_a)
    norm_b = normalize_title(title_b)
    return W_SUBSTRING * _longest_common_substring_ratio(norm_a, norm_b) + W_JACCARD * _token_jaccard(norm_a, norm_b)


def _amounts_match(x: float, y: float) -> bool:
    scale = max(abs(x), abs(y))
    if scale == 0:
        return True
    return abs(x - y) <= AMOUNT_TOLERANCE * scale


def compare_entities(
    entities_a: ExtractedEntities,
    entities_b: ExtractedEntities,
) -> tuple[float, list[str], list[str]]:
    """
    Returns (overlap, matching, conflicting).

    overlap is |A ∩ B| / |A ∪ B| over the combined entity sets, or the neutral
    0.5 when neither side has entities. Conflicts are disjoint named people
    (different candidates) and same-unit amounts that disagree (different
    thresholds).
    """
    set_a = entities_a.token_set()
    set_b = entities_b.token_set()
    union = set_a | set_b
    shared = set_a & set_b
    overlap = len(shared) / len(union) if union else NEUTRAL_ENTITY_OVERLAP

    matching = sorted(shared)
    conflicting: list[str] = []

    people_a = {p.lower() for p in entities_a.people}
    people_b = {p.lower() for p in entities_b.people}
    if people_a and people_b and not (people_a & people_b):
        conflicting.append("people: " + " vs ".join(sorted([",".join(sorted(people_a)), ",".join(sorted(people_b))])))

    units_a = {a.unit for a in entities_a.amounts}
    units_b = {b.unit for b in entities_b.amounts}
    for unit in sorted(units_a & units_b):
        values_a = [a.value for a in entities_a.amounts if a.unit == unit]
        values_b = [b.value for b in entities_b.amounts if b.unit == unit]
        if any(_amounts_match(x, y) for x in values_a for y in values_b):
            matched = min(min(values_a), min(values_b))
            tag = f"amount:{matched:g}"
            if tag not in matching:
                matching.append(tag)
        else:
            conflicting.append(f"amount ({unit}): " + " vs ".join(sorted([
                ",".join(f"{v:g}" for v in sorted(values_a)),
                ",".join(f"{v:g}" for v in sorted(values_b)),
            ])))

    return overlap, matching, conflicting


def _day_drift(a: date, b: date) -> int:
    return abs((a - b).days)


def _date_alignment(meta_a: MarketMetadata, meta_b: MarketMetadata, max_drift_days: float) -> tuple[float, bool, str | None]:
    """
    Returns (alignment, same_timeframe, warning).

    Event dates from the titles are preferred; resolution dates fill in
    when a title carries no date.
    """
    if meta_a.event_date and meta_b.event_date:
        drift = _day_drift(meta_a.event_date, meta_b.event_date)
    elif meta_a.resolution_date and meta_b.resolution_date:
        drift = _day_drift(meta_a.resolution_date, meta_b.resolution_date)
    elif meta_a.event_date or meta_b.event_date:
        return ONE_SIDED_DATE_ALIGNMENT, False, "Only one market has an event date"
    else:
        return NEUTRAL_DATE_ALIGNMENT, True, None

    alignment = max(0.0, 1.0 - drift / max_drift_days)
    return alignment, alignment > 0.7, None


def _outcome_alignment(meta_a: MarketMetadata, meta_b: MarketMetadata) -> float:
    if meta_a.outcome_type != meta_b.outcome_type:
        return 0.0
    if len(meta_a.outcomes) != len(meta_b.outcomes):
        return 0.0
    labels_a = [o.lower() for o in meta_a.outcomes]
    labels_b = [o.lower() for o in meta_b.outcomes]
    return 1.0 if labels_a == labels_b else 0.5


def _has_negation(title: str) -> bool:
    lower = title.lower()
    return any(p.search(lower) for p in _NEGATION_PATTERNS)


def determine_outcome_mapping(meta_a: MarketMetadata, meta_b: MarketMetadata) -> OutcomeMapping:
    """YES on A maps to NO on B when exactly one title is phrased as a negation."""
    if _has_negation(meta_a.title) != _has_negation(meta_b.title):
        return OutcomeMapping(a_to_b=(1, 0), b_to_a=(1, 0), is_inverted=True)
    return OutcomeMapping()


def categories_related(a: Category, b: Category) -> bool:
    return a == b or b in RELATED_CATEGORIES.get(a, frozenset()) or a in RELATED_CATEGORIES.get(b, frozenset())


def passes_hard_filters(meta_a: MarketMetadata, meta_b: MarketMetadata, config: Config) -> tuple[bool, str | None]:
    """Cheap early rejection before any text scoring."""
    if meta_a.category != meta_b.category:
        cats = sorted([meta_a.category.value, meta_b.category.value])
        if Category.OTHER in (meta_a.category, meta_b.category):
            return False, f"Category mismatch: {cats[0]} vs {cats[1]} (one is uncategorized)"
        if not categories_related(meta_a.category, meta_b.category):
            return False, f"Category mismatch: {cats[0]} vs {cats[1]}"

    if meta_a.outcome_type != meta_b.outcome_type:
        kinds = sorted([meta_a.outcome_type.value, meta_b.outcome_type.value])
        return False, f"Outcome type mismatch: {kinds[0]} vs {kinds[1]}"

    if meta_a.event_date and meta_b.event_date:
        drift = _day_drift(meta_a.event_date, meta_b.event_date)
        if drift > config.hard_date_drift_days:
            return False, f"Date mismatch: {drift} days apart"

    if meta_a.subcategory and meta_b.subcategory and meta_a.subcategory != meta_b.subcategory:
        subs = sorted([meta_a.subcategory, meta_b.subcategory])
        return False, f"Subcategory mismatch: {subs[0]} vs {subs[1]}"

    return True, None


def _rejected(reason: str) -> EquivalenceScore:
    return EquivalenceScore(
        overall_score=0.0,
        title_similarity=0.0,
        entity_overlap=0.0,
        date_alignment=0.0,
        category_match=0.0,
        outcome_alignment=0.0,
        validations=EquivalenceValidations(),
        disqualifiers=(reason,),
    )


def score_equivalence(meta_a: MarketMetadata, meta_b: MarketMetadata, config: Config) -> EquivalenceScore:
    """
    Full equivalence score for two markets.

    Hard-filter failures short-circuit to a zero score. Otherwise every failed
    validation both lowers the overall score and becomes a disqualifier, so
    a pair only survives matching when all five validations hold.
    """
    ok, reason = passes_hard_filters(meta_a, meta_b, config)
    if not ok:
        return _rejected(reason or "hard filter")

    warnings: list[str] = []
    disqualifiers: list[str] = []

    title_sim = title_similarity(meta_a.title, meta_b.title)
    entity_overlap, matching, conflicting = compare_entities(meta_a.entities, meta_b.entities)
    if conflicting:
        warnings.append("Conflicting entities: " + "; ".join(conflicting))

    date_alignment, same_timeframe, date_warning = _date_alignment(meta_a, meta_b, config.max_date_drift_days)
    if date_warning:
        warnings.append(date_warning)

    category_match = 1.0 if meta_a.category == meta_b.category else 0.0
    outcome_alignment = _outcome_alignment(meta_a, meta_b)

    source_conflict = (
        meta_a.resolution_source is not None
        and meta_b.resolution_source is not None
        and meta_a.resolution_source != meta_b.resolution_source
    )
    if source_conflict:
        sources = sorted([meta_a.resolution_source, meta_b.resolution_source])
        warnings.append(f"Resolution sources differ: {sources[0]} vs {sources[1]}")

    validations = EquivalenceValidations(
        same_core_event=entity_overlap > 0.3 and title_sim > 0.5,
        same_timeframe=same_timeframe,
        same_outcome_structure=outcome_alignment == 1.0,
        no_resolution_conflict=not conflicting and not source_conflict,
        entities_match=bool(matching) and not conflicting,
    )
    for name in validations.failed():
        disqualifiers.append(f"Validation failed: {name}")

    if not matching and title_sim < MIN_TITLE_WITHOUT_ENTITIES:
        disqualifiers.append("No entity overlap and insufficient title similarity")
    if title_sim < MIN_TITLE_ABSOLUTE:
        disqualifiers.append(f"Title similarity too low: {title_sim * 100:.0f}%")

    penalty = VALIDATION_PENALTY * len(validations.failed())
    overall = (
        W_TITLE * title_sim
        + W_ENTITY * entity_overlap
        + W_DATE * date_alignment
        + W_CATEGORY * category_match
        + W_OUTCOME * outcome_alignment
        - penalty
    )
    overall = min(1.0, max(0.0, overall))
    if not category_match:
        # Related-category pairs stay below the default acceptance threshold
        overall = min(overall, CROSS_CATEGORY_SCORE_CAP)
        cats = sorted([meta_a.category.value, meta_b.category.value])
        warnings.append(f"Related categories: {cats[0]} vs {cats[1]}")

    if title_sim < config.min_title_similarity:
        warnings.append(f"Title similarity {title_sim * 100:.0f}% below threshold")
    if entity_overlap < 0.3:
        warnings.append("Low entity overlap - markets may not be equivalent")

    return EquivalenceScore(
        overall_score=overall,
        title_similarity=title_sim,
        entity_overlap=entity_overlap,
        date_alignment=date_alignment,
        category_match=category_match,
        outcome_alignment=outcome_alignment,
        validations=validations,
        warnings=tuple(warnings),
        disqualifiers=tuple(disqualifiers),
    )
