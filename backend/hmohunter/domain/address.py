# hmohunter/domain/address.py
from __future__ import annotations

import re

UNIT_TOKENS: frozenset[str] = frozenset({"flat", "apartment", "apt", "unit", "room"})

STREET_SUFFIXES: frozenset[str] = frozenset(
    {
        "road", "rd",
        "street", "st",
        "avenue", "ave", "av",
        "lane", "ln",
        "drive", "dr",
        "close", "cl",
        "court", "ct",
        "place", "pl",
        "way",
        "gardens", "gdns", "gdn",
        "terrace", "ter", "terr", "tce",
    }
)

# "Flat 2, " / "Apartment 3a " / "Unit B," including the trailing comma
_UNIT_RE = re.compile(
    r"(?<!\S)(?:flat|apartment|apt|unit|room)(?=[\s,.]|$)\.?\s*"
    r"(?:\d+[a-z]?(?=[\s,]|$)|[a-z](?=[\s,]|$))?\s*,?\s*",
    flags=re.IGNORECASE,
)
_UNIT_ID_RE = re.compile(r"\d+[a-z]?|[a-z]")
_HOUSE_NUMBER_RE = re.compile(r"\d+[a-z]?")
_LEADING_NUMBER_RE = re.compile(r"^(\d+[a-z]?)\s+(.+)$", flags=re.IGNORECASE)
_WS_RE = re.compile(r"\s+")


def strip_unit_designators(raw: str | None) -> str:
    """
    Case-preserving removal of flat/unit designators, for building geocoder
    queries: "Flat 1, 12 Elm Rd" -> "12 Elm Rd".
    """
    s = raw or ""
    while True:
        nxt = _UNIT_RE.sub("", s)
        if nxt == s:
            break
        s = nxt
    return _WS_RE.sub(" ", s).strip(" ,")


def _drop_unit_tokens(tokens: list[str]) -> list[str]:
    out: list[str] = []
    i = 0
    while i < len(tokens):
        tok = tokens[i]
        if tok in UNIT_TOKENS:
            i += 1
            if i < len(tokens) and _UNIT_ID_RE.fullmatch(tokens[i]):
                i += 1
            continue
        out.append(tok)
        i += 1
    return out


def normalize_address(raw: str | None, *, strip_street_suffixes: bool = False) -> str:
    """
    Canonical comparison form of a free-text address.

    Lower-cases, drops commas/periods/apostrophes, collapses whitespace and
    removes unit designators with their identifier. With
    ``strip_street_suffixes`` the street-type tokens (road, rd, street, ...)
    are removed as well, which is the form used for street-level comparison.

    Pure and idempotent: normalize_address(normalize_address(x)) == normalize_address(x).
    """
    s = strip_unit_designators(raw).lower()
    s = s.replace("'", "")
    s = re.sub(r"[,.]", " ", s)

    tokens = _drop_unit_tokens(s.split())
    if strip_street_suffixes:
        tokens = [t for t in tokens if t not in STREET_SUFFIXES]
    return " ".join(tokens)


def extract_house_number(raw: str | None) -> str | None:
    """
    Leading house number ("12", "12a") of an address, or the first number
    that is followed by a street word ("The Lodge 12 Elm Road").
    """
    tokens = normalize_address(raw).split()
    if not tokens:
        return None
    if _HOUSE_NUMBER_RE.fullmatch(tokens[0]):
        return tokens[0]
    for tok, nxt in zip(tokens, tokens[1:]):
        if _HOUSE_NUMBER_RE.fullmatch(tok) and not any(c.isdigit() for c in nxt):
            return tok
    return None


def house_number_value(house_number: str) -> int:
    """Numeric part of "12a" -> 12."""
    digits = re.match(r"\d+", house_number)
    return int(digits.group(0)) if digits else 0


def split_leading_house_number(raw: str | None) -> tuple[str, str] | None:
    """
    ("12", "Elm Road") for "12 Elm Road"; None when the address does not
    start with a house number. Case is preserved for use in geocoder queries.
    """
    m = _LEADING_NUMBER_RE.match(strip_unit_designators(raw))
    if not m:
        return None
    return m.group(1), m.group(2).strip()


def street_tokens(raw: str | None, *, min_length: int = 3) -> set[str]:
    """Significant non-numeric tokens of the street-level normalization."""
    return {
        t
        for t in normalize_address(raw, strip_street_suffixes=True).split()
        if len(t) >= min_length and not any(c.isdigit() for c in t)
    }


def normalize_postcode(raw: str | None) -> str:
    """'n76pa' / ' N7  6PA ' -> 'N7 6PA'."""
    compact = _WS_RE.sub("", (raw or "").upper())
    if len(compact) < 5:
        return compact
    return f"{compact[:-3]} {compact[-3:]}"


def outcode(raw: str | None) -> str:
    """Outward half of a postcode: 'SW9 8LE' -> 'SW9'."""
    pc = normalize_postcode(raw)
    return pc.split(" ")[0] if pc else ""


def geocode_cache_key(address: str | None, postcode: str | None) -> str | None:
    """None when nothing street-level survives normalization ("Flat 2" alone)."""
    street = normalize_address(address)
    if not street:
        return None
    return f"{street}|{normalize_postcode(postcode)}"
