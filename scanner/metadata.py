"""
Market metadata extraction. Turns a raw Market into structured metadata:
category, subcategory, entities, dates, amounts, resolution source.

Pure and deterministic: no I/O, no state. The matcher calls it once per
market per matching pass.
"""

from __future__ import annotations

import calendar
import re
from datetime import date, datetime

from scanner.models import (
    Category,
    DateKind,
    ExtractedAmount,
    ExtractedDate,
    ExtractedEntities,
    Market,
    MarketMetadata,
    OutcomeType,
)

# Keyword taxonomy. Each entry is one keyword; a title's score for a category
# is the number of distinct keywords it hits.
_CATEGORY_KEYWORDS: dict[Category, tuple[str, ...]] = {
    Category.POLITICS: (
        r"trump", r"biden", r"harris", r"election", r"president(?:ial)?", r"congress",
        r"senate", r"house of representatives", r"vote", r"poll", r"democrat(?:s|ic)?",
        r"republican(?:s)?", r"gop", r"governor", r"mayor", r"primary", r"impeach(?:ed|ment)?",
        r"indict(?:ed|ment)?", r"resign", r"cabinet", r"regime change", r"coup", r"civil war",
        r"sanctions?", r"ukraine", r"taiwan", r"israel", r"gaza", r"north korea", r"nato",
        r"united nations", r"invasion", r"ceasefire", r"treaty", r"war", r"putin", r"zelensky",
        r"supreme leader", r"parliament", r"prime minister",
    ),
    Category.ECONOMICS: (
        r"fed", r"federal reserve", r"fomc", r"rate (?:cut|hike)s?", r"interest rates?",
        r"inflation", r"cpi", r"gdp", r"recession", r"unemployment", r"jobs report",
        r"s&p", r"s&p 500", r"dow", r"nasdaq", r"stock market", r"earnings", r"tariffs?",
        r"treasury", r"yields?",
    ),
    Category.CRYPTO: (
        r"bitcoin", r"btc", r"ethereum", r"eth", r"crypto(?:currency)?", r"blockchain",
        r"defi", r"nft", r"solana", r"binance", r"coinbase", r"halving", r"stablecoin",
        r"dogecoin", r"xrp",
    ),
    Category.SPORTS: (
        r"super bowl", r"nfl", r"nba", r"mlb", r"nhl", r"world series", r"playoffs?",
        r"championship", r"finals", r"tournament", r"olympics", r"world cup", r"stanley cup",
        r"premier league", r"champions league", r"la ?liga", r"serie a", r"bundesliga",
        r"uefa", r"real madrid", r"barcelona", r"manchester (?:united|city)", r"liverpool",
        r"chelsea", r"arsenal", r"bayern", r"juventus", r"psg", r"football", r"soccer",
        r"mvp", r"wimbledon", r"grand slam", r"f1", r"formula 1",
    ),
    Category.TECH: (
        r"ai", r"artificial intelligence", r"gpt(?:-?\d)?", r"llm", r"openai", r"anthropic",
        r"tesla", r"spacex", r"apple", r"google", r"microsoft", r"meta", r"nvidia",
        r"iphone", r"android", r"chip", r"semiconductor",
    ),
    Category.ENTERTAINMENT: (
        r"oscars?", r"academy awards?", r"emmys?", r"grammys?", r"golden globes?", r"movie",
        r"film", r"album", r"box office", r"netflix", r"disney", r"taylor swift", r"billboard",
    ),
    Category.SCIENCE: (
        r"vaccine", r"virus", r"covid", r"pandemic", r"fda", r"clinical trial", r"nasa",
        r"mars", r"moon", r"rocket", r"satellite", r"climate", r"carbon", r"fusion",
        r"hurricane", r"earthquake",
    ),
}

_CATEGORY_PATTERNS: dict[Category, tuple[re.Pattern, ...]] = {
    cat: tuple(re.compile(rf"\b{kw}\b") for kw in kws)
    for cat, kws in _CATEGORY_KEYWORDS.items()
}

# First match wins; ordered most specific first
_SUBCATEGORY_PATTERNS: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"\bsuper\s*bowl\b"), "super_bowl"),
    (re.compile(r"\bpresident(?:ial)?\b"), "presidential"),
    (re.compile(r"\bfed\b|\bfederal\s+reserve\b|\bfomc\b"), "fed_policy"),
    (re.compile(r"\bbitcoin\b|\bbtc\b"), "bitcoin"),
    (re.compile(r"\bethereum\b|\beth\b"), "ethereum"),
)

_RESOLUTION_SOURCES: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"\bassociated press\b|\bap\b"), "AP"),
    (re.compile(r"\bofficial results?\b"), "Official"),
    (re.compile(r"\bgovernment data\b"), "Government"),
    (re.compile(r"\bfed\b|\bfederal reserve\b"), "Federal Reserve"),
    (re.compile(r"\bbls\b|\bbureau of labor\b"), "BLS"),
    (re.compile(r"\bsec\b|\bsecurities and exchange\b"), "SEC"),
    (re.compile(r"\bcdc\b|\bcenters for disease\b"), "CDC"),
)

_PEOPLE: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"\b(?:donald\s+)?trump\b"), "Trump"),
    (re.compile(r"\b(?:joe\s+)?biden\b"), "Biden"),
    (re.compile(r"\bkamala\b|\bharris\b"), "Harris"),
    (re.compile(r"\bdesantis\b"), "DeSantis"),
    (re.compile(r"\bnewsom\b"), "Newsom"),
    (re.compile(r"\b(?:elon\s+)?musk\b"), "Musk"),
    (re.compile(r"\b(?:jerome\s+)?powell\b"), "Powell"),
    (re.compile(r"\byellen\b"), "Yellen"),
    (re.compile(r"\bxi(?:\s+jinping)?\b"), "Xi"),
    (re.compile(r"\bputin\b"), "Putin"),
    (re.compile(r"\bzelensky[iy]?\b"), "Zelensky"),
    (re.compile(r"\bvance\b"), "Vance"),
    (re.compile(r"\bnetanyahu\b"), "Netanyahu"),
    (re.compile(r"\bkhamenei\b"), "Khamenei"),
)

_ORGANIZATIONS: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"\bfed\b|\bfederal\s+reserve\b|\bfomc\b"), "Fed"),
    (re.compile(r"\bsec\b"), "SEC"),
    (re.compile(r"\bfda\b"), "FDA"),
    (re.compile(r"\bcdc\b"), "CDC"),
    (re.compile(r"\bnasa\b"), "NASA"),
    (re.compile(r"\bun\b|\bunited\s+nations\b"), "UN"),
    (re.compile(r"\bnato\b"), "NATO"),
    (re.compile(r"\btesla\b"), "Tesla"),
    (re.compile(r"\bspacex\b"), "SpaceX"),
    (re.compile(r"\bopenai\b"), "OpenAI"),
    (re.compile(r"\banthropic\b"), "Anthropic"),
    (re.compile(r"\bapple\b"), "Apple"),
    (re.compile(r"\bgoogle\b|\balphabet\b"), "Google"),
    (re.compile(r"\bmicrosoft\b"), "Microsoft"),
    (re.compile(r"\bnvidia\b"), "NVIDIA"),
    (re.compile(r"\bmeta\b|\bfacebook\b"), "Meta"),
)

_LOCATIONS: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"\bus\b|\bu\.s\.|\bunited\s+states\b|\bamerica\b"), "US"),
    (re.compile(r"\bchina\b|\bchinese\b|\bbeijing\b"), "China"),
    (re.compile(r"\brussia\b|\brussian\b|\bmoscow\b|\bkremlin\b"), "Russia"),
    (re.compile(r"\bukraine\b|\bukrainian\b|\bkyiv\b"), "Ukraine"),
    (re.compile(r"\btaiwan\b|\btaiwanese\b|\btaipei\b"), "Taiwan"),
    (re.compile(r"\bisrael\b|\bisraeli\b|\btel\s+aviv\b"), "Israel"),
    (re.compile(r"\bgaza\b|\bpalestinian\b"), "Gaza"),
    (re.compile(r"\biran\b|\biranian\b|\btehran\b"), "Iran"),
    (re.compile(r"\beu\b|\beuropean\s+union\b|\bbrussels\b"), "EU"),
    (re.compile(r"\buk\b|\bbritain\b|\bbritish\b|\blondon\b"), "UK"),
)

_EVENTS: tuple[tuple[re.Pattern, str], ...] = (
    (re.compile(r"\bsuper\s*bowl\b"), "Super Bowl"),
    (re.compile(r"\bworld\s+series\b"), "World Series"),
    (re.compile(r"\bnba\s+finals\b"), "NBA Finals"),
    (re.compile(r"\bstanley\s+cup\b"), "Stanley Cup"),
    (re.compile(r"\bworld\s+cup\b"), "World Cup"),
    (re.compile(r"\bolympics\b"), "Olympics"),
    (re.compile(r"\bpresidential\s+election\b"), "Presidential Election"),
    (re.compile(r"\bmidterms?\b"), "Midterm Elections"),
    (re.compile(r"\bfomc\s+meeting\b"), "FOMC Meeting"),
    (re.compile(r"\boscars?\b|\bacademy\s+awards?\b"), "Oscars"),
)

_MONTHS: dict[str, int] = {
    "january": 1, "jan": 1, "february": 2, "feb": 2, "march": 3, "mar": 3,
    "april": 4, "apr": 4, "may": 5, "june": 6, "jun": 6, "july": 7, "jul": 7,
    "august": 8, "aug": 8, "september": 9, "sept": 9, "sep": 9,
    "october": 10, "oct": 10, "november": 11, "nov": 11, "december": 12, "dec": 12,
}
_MONTH_PATTERN = re.compile(
    r"\b(" + "|".join(_MONTHS) + r")\b(?:\s+(\d{1,2})(?:st|nd|rd|th)?\b)?(?:,?\s+(20\d{2})\b)?"
)
# Also ordinary words ("who may win", "march madness"); only a month next to a day or year
_AMBIGUOUS_MONTHS = frozenset({"may", "march", "mar"})
_YEAR_PATTERN = re.compile(r"\b(20\d{2})\b")
_QUARTER_PATTERN = re.compile(r"\bq([1-4])\b|\b(first|second|third|fourth)\s+quarter\b")
_QUARTER_WORDS = {"first": 1, "second": 2, "third": 3, "fourth": 4}

_DATE_EXPRESSIONS: tuple[tuple[re.Pattern, DateKind], ...] = (
    (re.compile(r"\bby\s+(?:the\s+)?(?:end\s+of\s+)?(20\d{2})\b"), DateKind.DEADLINE),
    (re.compile(r"\bbefore\s+(?:" + "|".join(_MONTHS) + r")\s+(?:\d{1,2},?\s+)?(20\d{2})\b"), DateKind.DEADLINE),
    (re.compile(r"\bby\s+(?:" + "|".join(_MONTHS) + r")\s+(?:\d{1,2},?\s+)?(20\d{2})\b"), DateKind.DEADLINE),
    (re.compile(r"\bin\s+q[1-4]\s+(20\d{2})\b"), DateKind.RANGE),
    (re.compile(r"\bon\s+(?:" + "|".join(_MONTHS) + r")\s+\d{1,2},?\s+(20\d{2})\b"), DateKind.EVENT),
    (re.compile(r"\bon\s+20\d{2}-\d{2}-\d{2}\b"), DateKind.EVENT),
)

_ISO_DATE = re.compile(r"\b(20\d{2})-(\d{2})-(\d{2})\b")

_AMOUNT_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"\$\s?(\d[\d,]*(?:\.\d+)?)\s*(k|m|b|thousand|million|billion|trillion)?\b"),
    re.compile(r"(\d+(?:\.\d+)?)\s*%"),
    re.compile(r"(\d[\d,]*(?:\.\d+)?)\s*(btc|eth|bitcoin|ethereum)\b"),
)
_MULTIPLIERS = {
    "k": 1e3, "thousand": 1e3,
    "m": 1e6, "million": 1e6,
    "b": 1e9, "billion": 1e9,
    "trillion": 1e12,
}
_CRYPTO_UNITS = {"btc": "BTC", "bitcoin": "BTC", "eth": "ETH", "ethereum": "ETH"}

# Capitalized words that never name an entity on their own
_STOPWORDS = frozenset({
    "will", "the", "a", "an", "of", "in", "on", "by", "to", "be", "before", "after",
    "who", "what", "which", "when", "how", "does", "do", "is", "are", "yes", "no",
    "win", "wins", "end", "above", "below", "over", "under", "reach", "hit", "price",
    "market", "year", "q1", "q2", "q3", "q4", "and", "or", "for", "at", "than", "more",
    "less", "next", "new", "first", "last", "happen", "become", "get", "have", "make",
    "announce", "say", "go", "close", "see", "raise", "cut", "lower", "pass", "lose",
    "leave", "remain", "stay", "not", "won't", "fail", "refuse",
})
_CAPITALIZED = re.compile(r"\b[A-Z][a-zA-Z'&.-]+(?:\s+[A-Z][a-zA-Z'&.-]+)*")


def extract_metadata(market: Market) -> MarketMetadata:
    """Extract structured metadata from a market. Pure function of the market record."""
    title = market.title or ""
    lower = title.lower()
    return MarketMetadata(
        platform=market.platform,
        market_id=market.market_id,
        title=title,
        event_date=parse_event_date(lower),
        resolution_date=_parse_iso_date(market.end_date),
        resolution_source=_resolution_source(lower),
        outcome_type=OutcomeType.BINARY,
        outcomes=("Yes", "No"),
        category=categorize(lower),
        subcategory=_subcategory(lower),
        entities=extract_entities(title),
    )


def categorize(text: str) -> Category:
    """
    Classify by keyword taxonomy. When several categories match, the most
    specific wins: most keyword hits, then the longest matched keyword,
    then taxonomy order.
    """
    lower = text.lower()
    best: tuple[int, int, int] | None = None
    best_cat = Category.OTHER
    for order, (cat, patterns) in enumerate(_CATEGORY_PATTERNS.items()):
        hits = 0
        longest = 0
        for pattern in patterns:
            m = pattern.search(lower)
            if m:
                hits += 1
                longest = max(longest, len(m.group(0)))
        if hits == 0:
            continue
        key = (hits, longest, -order)
        if best is None or key > best:
            best = key
            best_cat = cat
    return best_cat


def _subcategory(lower: str) -> str | None:
    for pattern, name in _SUBCATEGORY_PATTERNS:
        if pattern.search(lower):
            return name
    return None


def _resolution_source(lower: str) -> str | None:
    for pattern, source in _RESOLUTION_SOURCES:
        if pattern.search(lower):
            return source
    return None


def parse_event_date(text: str) -> date | None:
    """
    Normalize the date a title refers to.

    Explicit ISO date > year + month (+ day) > year + quarter > end of year.
    Returns None when the text carries no year.
    """
    lower = text.lower()
    iso = _ISO_DATE.search(lower)
    if iso:
        try:
            return date(int(iso.group(1)), int(iso.group(2)), int(iso.group(3)))
        except ValueError:
            pass

    year_match = _YEAR_PATTERN.search(lower)
    if not year_match:
        return None
    year = int(year_match.group(1))

    month_match = next(
        (
            m for m in _MONTH_PATTERN.finditer(lower)
            if m.group(1) not in _AMBIGUOUS_MONTHS or m.group(2) or m.group(3)
        ),
        None,
    )
    if month_match:
        month = _MONTHS[month_match.group(1)]
        day = int(month_match.group(2)) if month_match.group(2) else 1
        last_day = calendar.monthrange(year, month)[1]
        return date(year, month, min(max(day, 1), last_day))

    quarter_match = _QUARTER_PATTERN.search(lower)
    if quarter_match:
        quarter = int(quarter_match.group(1)) if quarter_match.group(1) else _QUARTER_WORDS[quarter_match.group(2)]
        end_month = quarter * 3
        return date(year, end_month, calendar.monthrange(year, end_month)[1])

    return date(year, 12, 31)


def _parse_iso_date(raw: str) -> date | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
    except (ValueError, TypeError):
        return None


def _lexicon_hits(lower: str, lexicon: tuple[tuple[re.Pattern, str], ...], spans: list[str]) -> tuple[str, ...]:
    found: list[str] = []
    for pattern, name in lexicon:
        m = pattern.search(lower)
        if m and name not in found:
            found.append(name)
            spans.append(m.group(0))
    return tuple(found)


def extract_entities(title: str) -> ExtractedEntities:
    """
    Lexicon-driven entity extraction, plus capitalized-token heuristics for
    proper nouns the lexicons don't know (teams, tickers, smaller names).
    Unknown proper nouns land in organizations.
    """
    lower = title.lower()
    spans: list[str] = []

    people = _lexicon_hits(lower, _PEOPLE, spans)
    organizations = list(_lexicon_hits(lower, _ORGANIZATIONS, spans))
    locations = _lexicon_hits(lower, _LOCATIONS, spans)
    events = _lexicon_hits(lower, _EVENTS, spans)

    known = " ".join(spans)
    for m in _CAPITALIZED.finditer(title):
        words = [w for w in m.group(0).split() if w.lower().strip(".'") not in _STOPWORDS]
        words = [w for w in words if w.lower() not in _MONTHS and w.lower() not in known]
        if not words:
            continue
        name = " ".join(words).strip(".'")
        if len(name) > 1 and name not in organizations:
            organizations.append(name)

    dates: list[ExtractedDate] = []
    for pattern, kind in _DATE_EXPRESSIONS:
        m = pattern.search(lower)
        if m:
            dates.append(ExtractedDate(raw=m.group(0), normalized=parse_event_date(m.group(0)), kind=kind))

    return ExtractedEntities(
        people=people,
        organizations=tuple(organizations),
        locations=locations,
        dates=tuple(dates),
        amounts=tuple(extract_amounts(lower)),
        events=events,
    )


def extract_amounts(text: str) -> list[ExtractedAmount]:
    """Dollar amounts (with k/m/b suffixes), percentages, and crypto quantities."""
    lower = text.lower()
    amounts: list[ExtractedAmount] = []
    dollar, percent, crypto = _AMOUNT_PATTERNS

    for m in dollar.finditer(lower):
        value = _to_float(m.group(1))
        if value is None:
            continue
        suffix = m.group(2)
        if suffix:
            value *= _MULTIPLIERS[suffix]
        amounts.append(ExtractedAmount(raw=m.group(0).strip(), value=value, unit="USD"))

    for m in percent.finditer(lower):
        value = _to_float(m.group(1))
        if value is not None:
            amounts.append(ExtractedAmount(raw=m.group(0).strip(), value=value, unit="%"))

    for m in crypto.finditer(lower):
        value = _to_float(m.group(1))
        if value is not None:
            amounts.append(ExtractedAmount(raw=m.group(0).strip(), value=value, unit=_CRYPTO_UNITS[m.group(2)]))

    return amounts


def _to_float(raw: str) -> float | None:
    try:
        return float(raw.replace(",", ""))
    except ValueError:
        return None
