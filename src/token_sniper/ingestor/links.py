"""Social link, tag and Twitter handle helpers shared by ingestion and matching."""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any
from urllib.parse import urlsplit

MAX_TAGS = 5

# Fixed vocabulary, in output order. Each tag lists the keywords that imply it.
TAG_VOCABULARY: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("DeFi", ("defi",)),
    ("Meme", ("meme",)),
    ("Gaming", ("gaming", "game")),
    ("AI", ("ai", "artificial intelligence")),
    ("Utility", ("utility",)),
    ("Community", ("community",)),
    ("Experimental", ("experimental",)),
    ("NFT", ("nft",)),
    ("Metaverse", ("metaverse",)),
    ("DAO", ("dao",)),
    ("Yield Farming", ("yield", "farming")),
    ("Staking", ("staking",)),
    ("Governance", ("governance",)),
)

_TAG_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = tuple(
    (tag, re.compile(r"\b(?:" + "|".join(re.escape(k) for k in keywords) + r")s?\b", re.IGNORECASE))
    for tag, keywords in TAG_VOCABULARY
)

DESCRIPTION_LINK_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"https://twitter\.com/[A-Za-z0-9_]+"),
    re.compile(r"https://x\.com/[A-Za-z0-9_]+"),
    re.compile(r"https://t\.me/[A-Za-z0-9_]+"),
    re.compile(r"https://discord\.gg/[A-Za-z0-9_]+"),
    re.compile(r"https://[A-Za-z0-9.-]+\.[A-Za-z]{2,}(?:/[^\s\"'<>)]*)?"),
)

INLINE_LINK_FIELDS = ("website", "twitter", "telegram", "discord", "external_url", "external_link")
DOCUMENT_LINK_FIELDS = ("twitter", "telegram", "discord", "website", "external_url")

_TWITTER_HOSTS = frozenset({"twitter.com", "www.twitter.com", "mobile.twitter.com", "x.com", "www.x.com"})
_TWITTER_PREFIXES = ("https://", "http://", "www.", "mobile.", "twitter.com/", "x.com/", "@")


def dedupe_links(links: Iterable[str]) -> tuple[str, ...]:
    """Deduplicate links by URL, keeping first-seen order and dropping blanks."""
    seen: dict[str, None] = {}
    for link in links:
        cleaned = link.strip() if isinstance(link, str) else ""
        if cleaned and cleaned not in seen:
            seen[cleaned] = None
    return tuple(seen)


def inline_links(payload: Mapping[str, Any]) -> tuple[str, ...]:
    """Collect the social links a source payload carries directly."""
    links: list[str] = []
    for key in INLINE_LINK_FIELDS:
        value = payload.get(key)
        if isinstance(value, str):
            links.append(value)
    social = payload.get("social_links")
    if isinstance(social, list):
        links.extend(v for v in social if isinstance(v, str))
    nested = payload.get("links")
    if isinstance(nested, Mapping):
        links.extend(v for v in nested.values() if isinstance(v, str))
    elif isinstance(nested, list):
        links.extend(v for v in nested if isinstance(v, str))
    return dedupe_links(links)


def document_links(document: Mapping[str, Any]) -> tuple[str, ...]:
    """Collect links from an off-chain metadata document and its description."""
    links: list[str] = []
    for key in DOCUMENT_LINK_FIELDS:
        value = document.get(key)
        if isinstance(value, str):
            links.append(value)
    description = document.get("description")
    if isinstance(description, str):
        links.extend(links_in_text(description))
    return dedupe_links(links)


def links_in_text(text: str) -> list[str]:
    found: list[str] = []
    for pattern in DESCRIPTION_LINK_PATTERNS:
        found.extend(m.group(0).rstrip(".,;:!") for m in pattern.finditer(text))
    return found


def extract_tags(*texts: str | None) -> tuple[str, ...]:
    """Match texts against the fixed tag vocabulary.

    Returns at most ``MAX_TAGS`` distinct tags, in vocabulary order.
    """
    haystack = " ".join(t for t in texts if t)
    if not haystack:
        return ()
    tags = [tag for tag, pattern in _TAG_PATTERNS if pattern.search(haystack)]
    return tuple(tags[:MAX_TAGS])


def normalize_twitter_handle(value: str) -> str:
    """Reduce a handle or profile URL to a bare lower-case handle.

    >>> normalize_twitter_handle("https://x.com/SolDev?s=20")
    'soldev'
    """
    normalized = value.strip().lower()
    changed = True
    while changed:
        changed = False
        for prefix in _TWITTER_PREFIXES:
            if normalized.startswith(prefix):
                normalized = normalized[len(prefix) :]
                changed = True
    for sep in ("/", "?"):
        normalized = normalized.split(sep, 1)[0]
    return normalized.strip()


def is_twitter_link(link: str) -> bool:
    lowered = link.strip().lower()
    if "://" not in lowered:
        lowered = f"https://{lowered}"
    host = urlsplit(lowered).hostname or ""
    return host in _TWITTER_HOSTS


def twitter_link_matches(link: str, handle: str) -> bool:
    """True if ``link`` is a Twitter/X URL referencing ``handle``."""
    if not is_twitter_link(link):
        return False
    target = normalize_twitter_handle(handle)
    found = normalize_twitter_handle(link)
    if not target or not found:
        return False
    return target in found or found in target
