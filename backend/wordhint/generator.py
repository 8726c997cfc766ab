"""Default article producer: five small templated articles per answer word.

Any callable ``(word, record) -> list[ContentItem]`` can replace it; the
scheduler only depends on that signature.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, time, timezone
from html import escape
from typing import Callable

from .models import AnswerRecord, ContentItem
from .words import normalize_key

ContentProducer = Callable[[str, AnswerRecord], list[ContentItem]]


@dataclass(frozen=True)
class Template:
    category: str
    title: str
    excerpt: str
    difficulty: str
    tags: tuple[str, ...]
    quality_score: int


TEMPLATES: tuple[Template, ...] = (
    Template(
        category="Word Analysis",
        title='Understanding "{word}": A Complete Word Analysis',
        excerpt='Structure, meaning and usage of "{word}", for vocabulary building and Wordle strategy.',
        difficulty="Beginner",
        tags=("vocabulary", "wordle", "analysis", "learning"),
        quality_score=80,
    ),
    Template(
        category="Strategy",
        title='Wordle Strategy Guide: How to Solve "{word}" and Similar Words',
        excerpt='Proven techniques for approaching words like "{word}" systematically.',
        difficulty="Intermediate",
        tags=("wordle", "strategy", "puzzle", "tips"),
        quality_score=78,
    ),
    Template(
        category="Vocabulary Building",
        title='Vocabulary Building: "{word}" and Related Words',
        excerpt='Related words, synonyms and usage patterns around "{word}".',
        difficulty="Beginner",
        tags=("vocabulary", "learning", "synonyms", "usage"),
        quality_score=75,
    ),
    Template(
        category="Advanced Strategy",
        title='Advanced Wordle Techniques: Mastering "{word}"',
        excerpt='Advanced solving techniques for challenging words like "{word}".',
        difficulty="Advanced",
        tags=("wordle", "advanced", "techniques", "mastery"),
        quality_score=76,
    ),
    Template(
        category="Language History",
        title='Etymology and History: The Story of "{word}"',
        excerpt='Where "{word}" comes from and how its use changed over time.',
        difficulty="Intermediate",
        tags=("etymology", "history", "language", "culture"),
        quality_score=72,
    ),
)

_VOWELS = set("AEIOU")


def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")


def article_id(word: str, category: str, record: AnswerRecord) -> str:
    """Stable per (word, category, date) so regenerating replaces instead of duplicating."""
    return f"{normalize_key(word)}-{slugify(category)}-{record.date.isoformat()}"


def _body(word: str, template: Template, record: AnswerRecord) -> str:
    letters = list(word)
    vowels = sum(1 for c in letters if c in _VOWELS)
    return (
        f"<h2>{escape(template.title.format(word=word))}</h2>"
        f"<p>Wordle #{record.sequence_number} ({record.date.isoformat()}) was "
        f"<strong>{escape(word)}</strong>: {len(letters)} letters, {vowels} vowel"
        f"{'s' if vowels != 1 else ''}, starting with {escape(letters[0])} and ending "
        f"with {escape(letters[-1])}.</p>"
    )


def generate_articles(word: str, record: AnswerRecord) -> list[ContentItem]:
    word = word.strip().upper()
    if not word:
        raise ValueError("Cannot generate articles for an empty word")
    now = datetime.now(timezone.utc)
    published_at = datetime.combine(record.date, time.min, tzinfo=timezone.utc)
    return [
        ContentItem(
            id=article_id(word, template.category, record),
            key=normalize_key(word),
            title=template.title.format(word=word),
            excerpt=template.excerpt.format(word=word),
            body=_body(word, template, record),
            category=template.category,
            tags=set(template.tags),
            difficulty=template.difficulty,
            quality_score=template.quality_score,
            sequence_number=record.sequence_number,
            published_at=published_at,
            updated_at=now,
        )
        for template in TEMPLATES
    ]
