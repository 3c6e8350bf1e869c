"""
Text, venue and address normalisation used by the deduplicator.

Titles are compared with rapidfuzz plus a word-set Jaccard; venues resolve
through a San Francisco alias table before falling back to word overlap.
"""

import re

from rapidfuzz import fuzz

STOPWORDS = frozenset({"the", "a", "an", "and", "or", "at", "in", "on", "for", "with", "by"})

STREET_ABBREVIATIONS: dict[str, list[str]] = {
    "street": ["st", "str"],
    "avenue": ["ave", "av"],
    "road": ["rd"],
    "boulevard": ["blvd", "blv"],
    "drive": ["dr"],
    "lane": ["ln"],
    "place": ["pl"],
    "court": ["ct"],
    "circle": ["cir"],
    "way": ["wy"],
    "parkway": ["pkwy", "pky"],
    "highway": ["hwy", "hw"],
}

# Canonical venue -> known aliases
VENUE_ALIASES: dict[str, list[str]] = {
    "golden gate park": ["gg park", "golden gate", "ggp"],
    "yerba buena gardens": ["ybg", "yerba buena", "yb gardens"],
    "pier 39": ["pier39", "fishermans wharf"],
    "union square": ["union sq"],
    "moscone center": ["moscone", "moscone convention center"],
    "california academy of sciences": ["cal academy", "calacademy", "cas"],
    "exploratorium": ["exploratorium at pier 15", "pier 15"],
    "presidio": ["the presidio"],
    "crissy field": ["crissy fields"],
    "aquarium of the bay": ["aquarium bay", "pier 39 aquarium"],
    "san francisco zoo": ["sf zoo", "zoo"],
    "japanese tea garden": ["tea garden"],
    "conservatory of flowers": ["conservatory"],
    "de young museum": ["deyoung", "de young"],
    "legion of honor": ["california palace legion honor"],
}

# Aliases shorter than this only match the whole venue string
_MIN_CONTAINED_ALIAS = 6

_PUNCTUATION = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")
_ZIP_CODE = re.compile(r"\b\d{5}(?:-\d{4})?\b")
_ORDINAL_STREET = re.compile(r"\b(\d+)(?:st|nd|rd|th)\s+(street|avenue)\b")
_STREET_NUMBER = re.compile(r"\b(\d+)\b")

_STREET_PATTERNS = [
    (re.compile(r"\b(" + "|".join([full, *abbrevs]) + r")\b"), full)
    for full, abbrevs in STREET_ABBREVIATIONS.items()
]


def sanitize(text: str | None) -> str:
    """Lowercase, drop punctuation, collapse whitespace."""
    if not text:
        return ""
    text = text.lower().replace("'", "")
    text = _PUNCTUATION.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


def normalize_title(title: str | None) -> str:
    words = [word for word in sanitize(title).split() if word not in STOPWORDS]
    return " ".join(words)


def normalize_address(address: str | None) -> str:
    normalized = sanitize(address)
    if not normalized:
        return ""

    for pattern, full in _STREET_PATTERNS:
        normalized = pattern.sub(full, normalized)

    normalized = re.sub(r"\b(san francisco|san fran)\b", "sf", normalized)
    normalized = re.sub(r"\b(california)\b", "ca", normalized)
    normalized = _ORDINAL_STREET.sub(r"\1 \2", normalized)
    normalized = _ZIP_CODE.sub("", normalized)
    normalized = re.sub(r"\s*\bsf\s+ca\s*$", "", normalized)
    return _WHITESPACE.sub(" ", normalized).strip()


def _build_alias_lookup() -> list[tuple[str, str]]:
    # Aliases go through the same normalisation as the text they are matched against
    pairs = []
    for canonical, aliases in VENUE_ALIASES.items():
        pairs.append((normalize_address(canonical), canonical))
        for alias in aliases:
            pairs.append((normalize_address(alias), canonical))
    # Longest alias wins when several are contained in the same string
    return sorted(pairs, key=lambda pair: len(pair[0]), reverse=True)


_ALIAS_LOOKUP = _build_alias_lookup()


def canonical_venue(text: str | None) -> str | None:
    """Resolve a venue or address to its canonical venue name, if known."""
    normalized = normalize_address(text)
    if not normalized:
        return None

    for alias, canonical in _ALIAS_LOOKUP:
        if normalized == alias:
            return canonical
        if len(alias) >= _MIN_CONTAINED_ALIAS and re.search(
            r"\b" + re.escape(alias) + r"\b", normalized
        ):
            return canonical
    return None


def street_number(address: str | None) -> str | None:
    match = _STREET_NUMBER.search(normalize_address(address))
    return match.group(1) if match else None


def jaccard(left: str, right: str) -> float:
    left_words = set(left.split())
    right_words = set(right.split())
    if not left_words or not right_words:
        return 0.0
    return len(left_words & right_words) / len(left_words | right_words)


def title_similarity(left: str | None, right: str | None) -> float:
    """0.7 Levenshtein ratio + 0.3 word Jaccard over normalised titles."""
    a = normalize_title(left)
    b = normalize_title(right)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    return 0.7 * (fuzz.ratio(a, b) / 100.0) + 0.3 * jaccard(a, b)


def compare_locations(left: str | None, right: str | None) -> float:
    """Similarity in [0, 1] between two venue or address strings."""
    a = normalize_address(left)
    b = normalize_address(right)
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0

    canonical_a = canonical_venue(a)
    if canonical_a and canonical_a == canonical_venue(b):
        return 0.95

    if a in b or b in a:
        return 0.8

    word_sim = jaccard(a, b)
    number_a = street_number(a)
    if number_a and number_a == street_number(b):
        return min(0.9, word_sim + 0.3)
    return word_sim
