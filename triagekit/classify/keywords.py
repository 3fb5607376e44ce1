"""Keyword and phrase overlap scoring between free text and a work item.

Terms fall into weighted categories. A matched domain concept counts for
more than a generic word, an exact match counts for more than a substring
match, and consecutive-keyword phrases (2 and 3 words) found in the item
count for more than either.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

TECHNICAL_CONCEPTS = frozenset({
    "csrf", "xss", "sql", "injection", "cors", "origin", "origins",
    "trusted", "trustedorigins", "trusted-origins", "trusted_origins",
    "baseurl", "base-url", "base_url", "apikey", "api-key", "api_key",
    "jwt", "oauth2", "openid", "saml", "sso",
    "cookie", "cookies", "sessionid", "session-id",
    "refresh", "refresh-token", "refresh_token", "refreshtoken",
    "access-token", "access_token", "accesstoken",
    "middleware", "adapter", "hook", "hooks", "callback", "callbacks",
    "migration", "migrations", "schema", "schemas",
    "endpoint", "endpoints", "route", "routes", "path", "paths",
    "header", "headers",
})

IMPORTANT_TERMS = frozenset({
    "name", "product", "identity", "account", "profile", "credential",
    "authentication", "authorization", "configuration", "settings",
    "environment", "deployment", "production", "development",
})

PRODUCT_NAMES = frozenset({
    # ORMs
    "drizzle", "prisma", "sequelize", "typeorm", "knex", "mongoose", "kysely",
    "mikro-orm", "mikroorm", "sqlalchemy", "django", "orm", "orms",
    # Databases and hosted services
    "supabase", "firebase", "postgres", "postgresql", "mysql", "mariadb",
    "sqlite", "mongodb", "redis", "elasticsearch", "dynamodb", "neon",
    "planetscale", "vercel", "turso", "cockroachdb", "aurora", "rds",
    # Drivers
    "pg", "mysql2", "better-sqlite3", "sqlite3", "ioredis", "psycopg", "psycopg2",
    # Frameworks
    "nextjs", "next.js",
})

TECHNICAL_TERMS = frozenset({
    "secret", "token", "email", "password", "auth", "plugin", "session",
    "user", "signup", "signin", "login", "logout", "verify", "verification",
    "reset", "error", "bug", "issue", "feature", "api", "endpoint", "webhook",
    "database", "schema", "migration", "model", "field", "admin", "oauth",
    "sso", "oidc", "stripe", "subscription", "payment", "organization",
    "role", "permission", "access", "security", "validation", "type",
    "typescript", "javascript", "python", "react", "nextjs", "express",
    "header", "headers",
})

STOP_WORDS = frozenset({
    "the", "and", "but", "for", "with", "from", "are", "was", "were", "been",
    "have", "has", "had", "does", "did", "will", "would", "should", "could",
    "may", "might", "can", "this", "that", "these", "those", "you", "she",
    "they", "what", "which", "who", "when", "where", "why", "how", "all",
    "each", "every", "both", "few", "more", "most", "other", "some", "such",
    "nor", "not", "only", "own", "same", "than", "too", "very", "just", "now",
    "here", "there", "current", "latest", "release", "breaking", "since",
    "chars", "long", "introduced", "throw", "replaces", "instead", "existing",
    "implementations", "dont", "break", "after", "updating", "find", "guide",
    "migrate", "rotate",
})

# (exact match weight, partial match weight, bonus per word inside a matched phrase)
CATEGORY_WEIGHTS = [
    (TECHNICAL_CONCEPTS, 6.0, 3.0, 4.0),
    (IMPORTANT_TERMS, 4.0, 2.0, 2.5),
    (PRODUCT_NAMES, 5.0, 2.5, 3.0),
    (TECHNICAL_TERMS, 3.0, 1.5, 1.5),
]
DEFAULT_EXACT_WEIGHT = 2.0
DEFAULT_PARTIAL_WEIGHT = 1.0
TWO_WORD_PHRASE_SCORE = 7.0
THREE_WORD_PHRASE_SCORE = 10.0

# Maximum title boost, in points out of 100
TITLE_PHRASE_BOOST = 25.0
TITLE_WORD_BOOST = 15.0
MAX_TITLE_BOOST = TITLE_PHRASE_BOOST + TITLE_WORD_BOOST

_URL_RE = re.compile(r"https?://\S+")
_NON_WORD_RE = re.compile(r"[^\w\s\-]")
_NUMBER_RE = re.compile(r"\b\d+\b")


def _weights(term: str) -> tuple[float, float]:
    for terms, exact, partial, _ in CATEGORY_WEIGHTS:
        if term in terms:
            return exact, partial
    return DEFAULT_EXACT_WEIGHT, DEFAULT_PARTIAL_WEIGHT


def _importance(term: str) -> int:
    for rank, (terms, _, _, _) in enumerate(CATEGORY_WEIGHTS):
        if term in terms:
            return rank
    return len(CATEGORY_WEIGHTS)


def extract_keywords(text: str) -> list[str]:
    """Extract lowercase keywords, most important categories first.

    Words of two characters or fewer, stop words, bare numbers and URLs are
    dropped. Hyphenated and underscored words also contribute their parts and
    their joined/alternate spellings.
    """
    text = _URL_RE.sub("", text or "").lower()
    text = _NUMBER_RE.sub("", _NON_WORD_RE.sub(" ", text))

    terms: list[str] = []
    for word in text.split():
        if len(word) <= 2 or word in STOP_WORDS:
            continue
        terms.append(word)
        if "-" in word:
            terms += [word.replace("-", ""), word.replace("-", "_")]
        elif "_" in word:
            terms += [word.replace("_", ""), word.replace("_", "-")]
        terms += [p for p in re.split(r"[-_]", word) if len(p) > 2 and p not in STOP_WORDS and p != word]

    unique = list(dict.fromkeys(terms))
    # sorted() is stable, so document order survives within a category
    return sorted(unique, key=_importance)


def extract_phrases(keywords: list[str]) -> list[str]:
    """Two- and three-word phrases from consecutive unique keywords."""
    words = list(dict.fromkeys(keywords))
    phrases = [f"{a} {b}" for a, b in zip(words, words[1:])]
    phrases += [f"{a} {b} {c}" for a, b, c in zip(words, words[1:], words[2:])]
    return list(dict.fromkeys(phrases))


@dataclass
class KeywordScore:
    overlap: float  # 0-1, weighted keyword/phrase overlap with the whole item
    context: float  # 0-1, share of the maximum title boost earned
    matched_terms: list[str] = field(default_factory=list)

    @property
    def combined(self) -> float:
        """Keyword-only score in [0, 1]: overlap plus the title boost, capped."""
        return min(self.overlap * 100 + self.context * MAX_TITLE_BOOST, 100.0) / 100


@dataclass
class Query:
    """Pre-extracted keywords and phrases for a piece of text."""

    keywords: list[str]
    phrases: list[str]

    @classmethod
    def from_text(cls, text: str) -> Query:
        keywords = extract_keywords(text)
        return cls(keywords=keywords, phrases=extract_phrases(keywords))


def keyword_score(query: Query, title: str, body: str) -> KeywordScore:
    """Score how well a work item (title + body) covers the query's terms."""
    if not query.keywords:
        return KeywordScore(overlap=0.0, context=0.0)

    item_text = f"{title} {body}".lower()
    item_keywords = extract_keywords(item_text)
    item_keyword_set = set(item_keywords)
    item_phrases = set(extract_phrases(item_keywords))

    matched_phrases = [p for p in query.phrases if p in item_phrases or p in item_text]

    exact: set[str] = set()
    partial: set[str] = set()
    for keyword in query.keywords:
        if keyword in item_keyword_set:
            exact.add(keyword)
        elif any(keyword in other or other in keyword for other in item_keywords):
            partial.add(keyword)

    weighted = 0.0
    for phrase in matched_phrases:
        words = phrase.split(" ")
        weighted += THREE_WORD_PHRASE_SCORE if len(words) == 3 else TWO_WORD_PHRASE_SCORE
        for terms, _, _, bonus in CATEGORY_WEIGHTS:
            weighted += bonus * sum(1 for w in words if w in terms)

    phrase_words = {w for p in matched_phrases for w in p.split(" ")}
    matched = [k for k in query.keywords if k in exact or k in partial]
    for term in matched:
        if term in phrase_words:
            continue
        exact_weight, partial_weight = _weights(term)
        weighted += exact_weight if term in exact else partial_weight

    match_ratio = (len(matched_phrases) + len(matched)) / max(len(query.keywords), 1)
    normalized = min(weighted / max(len(query.keywords) * 2, 10) * 50 + match_ratio * 50, 100.0)

    title_keywords = extract_keywords(title)
    title_keyword_set = set(title_keywords)
    title_phrases = set(extract_phrases(title_keywords))
    title_lower = (title or "").lower()
    title_phrase_hits = sum(1 for p in query.phrases if p in title_phrases or p in title_lower)
    title_word_hits = sum(1 for k in query.keywords if k in title_keyword_set)
    boost = (
        title_phrase_hits / max(len(query.phrases), 1) * TITLE_PHRASE_BOOST
        + title_word_hits / max(len(query.keywords), 1) * TITLE_WORD_BOOST
    )

    terms = [f'"{p}"' for p in matched_phrases] + [t for t in matched if t not in phrase_words]
    return KeywordScore(
        overlap=normalized / 100,
        context=min(boost / MAX_TITLE_BOOST, 1.0),
        matched_terms=terms,
    )


def word_set(text: str) -> set[str]:
    """Lowercase words longer than two characters."""
    return {w for w in re.findall(r"\w+", (text or "").lower()) if len(w) > 2}


def jaccard(a: set[str], b: set[str]) -> float:
    if not a and not b:
        return 0.0
    return len(a & b) / len(a | b)
