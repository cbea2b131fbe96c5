from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional


OTHER = "Other"

BUILTIN_SECTORS: dict[str, str] = {
    "AAPL": "Technology",
    "MSFT": "Technology",
    "NVDA": "Technology",
    "GOOGL": "Technology",
    "META": "Technology",
    "AMZN": "Consumer Discretionary",
    "TSLA": "Consumer Discretionary",
    "JPM": "Financial Services",
    "GS": "Financial Services",
    "MS": "Financial Services",
    "V": "Financial Services",
    "BAC": "Financial Services",
    "JNJ": "Healthcare",
    "UNH": "Healthcare",
    "XOM": "Energy",
    "CVX": "Energy",
    "TTE": "Energy",
    "BP": "Energy",
    "SPY": "ETF",
    "QQQ": "ETF",
    "DIA": "ETF",
    "IWM": "ETF",
    "VTI": "ETF",
    "VOO": "ETF",
    "BND": "Fixed Income",
    "AGG": "Fixed Income",
    "LQD": "Fixed Income",
    "HYG": "Fixed Income",
    "TLT": "Government Bonds",
    "IEF": "Government Bonds",
    "SHY": "Government Bonds",
    "GLD": "Commodities",
    "SLV": "Commodities",
    "DBC": "Commodities",
    "GDX": "Materials",
    "VNQ": "Real Estate",
}

# (match kind, needle, canonical label); checked in order.
_SECTOR_SYNONYMS: list[tuple[str, str, str]] = [
    ("contains", "financial", "Financial Services"),
    ("prefix", "consumer discretion", "Consumer Discretionary"),
    ("contains", "consumer cyclical", "Consumer Discretionary"),
    ("prefix", "consumer defensive", "Consumer Defensive"),
    ("contains", "consumer staples", "Consumer Defensive"),
    ("contains", "communication", "Communication Services"),
    ("contains", "information technology", "Technology"),
    ("prefix", "technology", "Technology"),
    ("prefix", "health care", "Healthcare"),
    ("prefix", "healthcare", "Healthcare"),
    ("prefix", "industrials", "Industrials"),
    ("prefix", "basic materials", "Materials"),
    ("prefix", "materials", "Materials"),
    ("prefix", "energy", "Energy"),
    ("prefix", "utilities", "Utilities"),
    ("contains", "real estate", "Real Estate"),
    ("contains", "telecom", "Communication Services"),
    ("contains", "technology services", "Technology"),
    ("contains", "commercial services", "Industrials"),
    ("contains", "retail trade", "Consumer Discretionary"),
]

_CATEGORY_RULES: list[tuple[tuple[str, ...], str]] = [
    (("treasury", "sovereign"), "Government Bonds"),
    (("municipal",), "Municipal Bonds"),
    (("bond", "fixed income"), "Fixed Income"),
    (("reit", "real estate"), "Real Estate"),
    (("commodity", "precious metal"), "Commodities"),
    (("infrastructure",), "Infrastructure"),
    (("money market", "cash"), "Cash & Cash Equivalents"),
    (("emerging market",), "Emerging Markets"),
]

_TEXT_RULES: list[tuple[tuple[str, ...], str]] = [
    (("treasury", "sovereign"), "Government Bonds"),
    (("municipal",), "Municipal Bonds"),
    (("corporate bond",), "Corporate Bonds"),
    (("bond", "fixed income", "income fund"), "Fixed Income"),
    (("reit", "real estate"), "Real Estate"),
    (("commodity", "precious metal", "gold"), "Commodities"),
    (("infrastructure",), "Infrastructure"),
    (("emerging market",), "Emerging Markets"),
    (("cash", "money market"), "Cash & Cash Equivalents"),
]

_BOND_RULES: list[tuple[tuple[str, ...], str]] = [
    (("treasury", "sovereign"), "Government Bonds"),
    (("municipal",), "Municipal Bonds"),
    (("mortgage-backed",), "Mortgage-Backed Securities"),
    (("corporate",), "Corporate Bonds"),
]

_QUOTE_TYPE_LABELS = {
    "CURRENCY": "Currency",
    "CRYPTOCURRENCY": "Digital Assets",
    "MONEYMARKET": "Cash & Cash Equivalents",
    "INDEX": "Index",
}

_ISIN_RE = re.compile(r"^[A-Z]{2}[A-Z0-9]{9}[0-9]$")
_CUSIP_RE = re.compile(r"^[A-Z0-9]{3}[0-9]{6}$")
_US_TREASURY_RES = (
    re.compile(r"^US[0-9]{10}[0-9]$"),
    re.compile(r"^US912[0-9A-Z]{6}[0-9]$"),
    re.compile(r"^912(79[67]|8[0-9A-Z]{2})[0-9A-Z]{3}$"),
)


@dataclass
class SectorMeta:
    raw_sector: Optional[str] = None
    raw_industry: Optional[str] = None
    category_name: Optional[str] = None
    quote_type: Optional[str] = None
    long_name: Optional[str] = None
    short_name: Optional[str] = None
    summary: Optional[str] = None


def normalize_ticker(ticker: str | None) -> str:
    return (ticker or "").strip().upper()


def strip_suffix(ticker: str) -> str:
    return ticker.split(".")[0]


def lookup_builtin(ticker: str) -> str | None:
    return BUILTIN_SECTORS.get(ticker) or BUILTIN_SECTORS.get(strip_suffix(ticker))


def looks_like_isin(value: str) -> bool:
    return bool(_ISIN_RE.match(value))


def looks_like_cusip(value: str) -> bool:
    return bool(_CUSIP_RE.match(value))


def looks_like_us_treasury(value: str) -> bool:
    return any(pattern.match(value) for pattern in _US_TREASURY_RES)


def normalize_sector_name(value: str | None) -> str | None:
    cleaned = (value or "").strip()
    if not cleaned:
        return None
    lower = cleaned.lower()
    for kind, needle, label in _SECTOR_SYNONYMS:
        if (kind == "prefix" and lower.startswith(needle)) or (kind == "contains" and needle in lower):
            return label
    return cleaned


def _first_match(text: str | None, rules: list[tuple[tuple[str, ...], str]]) -> str | None:
    if not text:
        return None
    lower = text.lower()
    for needles, label in rules:
        if any(needle in lower for needle in needles):
            return label
    return None


def classify_from_category(category: str | None) -> str | None:
    return _first_match(category, _CATEGORY_RULES)


def classify_from_text(text: str | None) -> str | None:
    return _first_match(text, _TEXT_RULES)


def classify_bond_from_text(text: str | None) -> str | None:
    return _first_match(text, _BOND_RULES)


def determine_sector(ticker: str, meta: SectorMeta) -> str:
    normalized = normalize_ticker(ticker)
    if not normalized:
        return OTHER

    builtin = lookup_builtin(normalized)
    if builtin:
        return builtin

    from_meta = normalize_sector_name(meta.raw_sector) or normalize_sector_name(meta.raw_industry)
    if from_meta:
        return from_meta

    quote_type = (meta.quote_type or "").upper()
    base = strip_suffix(normalized)
    text_blob = " ".join(
        value.strip()
        for value in (meta.category_name, meta.long_name, meta.short_name, meta.summary)
        if isinstance(value, str) and value.strip()
    ).lower()

    if looks_like_us_treasury(base):
        return "Municipal Bonds" if "municipal" in text_blob else "Government Bonds"

    if quote_type == "BOND":
        return classify_bond_from_text(text_blob) or "Fixed Income"

    by_category = classify_from_category(meta.category_name)
    if by_category:
        return by_category

    if quote_type in ("ETF", "MUTUALFUND"):
        return classify_from_text(text_blob) or ("ETF" if quote_type == "ETF" else "Mutual Fund")

    if quote_type in _QUOTE_TYPE_LABELS:
        return _QUOTE_TYPE_LABELS[quote_type]

    by_text = classify_from_text(text_blob)
    if by_text:
        return by_text

    if looks_like_isin(base) or looks_like_cusip(base):
        return classify_bond_from_text(text_blob) or "Fixed Income"

    return OTHER
