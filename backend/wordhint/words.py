"""Pure helpers for the daily answer: sequence numbers, offline fallback, normalisation."""

import re
import unicodedata
from datetime import date, timedelta

# Wordle #0 was published on this day
EPOCH = date(2021, 6, 19)

# Offline answer list used when no remote endpoint answers in time.
# The order is part of the fallback contract: reordering changes past fallbacks.
FALLBACK_WORDS: tuple[str, ...] = (
    "ABOUT", "ABOVE", "ABUSE", "ACTOR", "ACUTE", "ADMIT", "ADOPT", "ADULT",
    "AFTER", "AGAIN", "AGENT", "AGREE", "AHEAD", "ALARM", "ALBUM", "ALERT",
    "ALIKE", "ALIVE", "ALLOW", "ALONE", "ALONG", "ALTER", "AMONG", "ANGER",
    "ANGLE", "ANGRY", "APART", "APPLE", "APPLY", "ARENA", "ARGUE", "ARISE",
    "ARRAY", "ASIDE", "ASSET", "AUDIO", "AUDIT", "AVOID", "AWARD", "AWARE",
    "BEACH", "BRAVE", "CRANE", "DRIVE", "EARTH", "FLAME", "GRAPE", "HOUSE",
    "LIGHT", "MONEY", "NORTH", "OCEAN", "PLANT", "QUIET", "RIVER", "SMILE",
    "STONE", "TRAIN", "WATER", "YOUTH",
)

_WORD_RE = re.compile(r"^[A-Za-z]+$")


def sequence_number(day: date) -> int:
    """Puzzle number for *day*: days elapsed since EPOCH, never below 1."""
    return max(1, (day - EPOCH).days)


def date_for_number(number: int) -> date:
    """Inverse of sequence_number for puzzle numbers from 1 up."""
    if number < 1:
        raise ValueError(f"Puzzle numbers start at 1, got {number}")
    return EPOCH + timedelta(days=number)


def fallback_seed(day: date) -> int:
    return int(day.strftime("%Y%m%d")) + sequence_number(day)


def fallback_word(day: date) -> str:
    """Deterministically pick the offline answer for *day*.

    Same date, same word, on every machine: no randomness, no I/O.
    """
    return FALLBACK_WORDS[fallback_seed(day) % len(FALLBACK_WORDS)]


def normalize_key(word: str) -> str:
    """Lowercase and strip accents so 'Crâne', 'CRANE' and 'crane' share a key."""
    nfkd = unicodedata.normalize("NFKD", word.strip().lower())
    return "".join(c for c in nfkd if not unicodedata.combining(c))


def is_valid_word(word: str, length: int) -> bool:
    return len(word) == length and bool(_WORD_RE.match(word))
