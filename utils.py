"""
Utility functions shared across the script and storyboard builders.
"""

import json
import math
import re
from pathlib import Path
from typing import Any

from config import WORDS_PER_MINUTE


def count_words(text: str | None) -> int:
    """Count whitespace-separated tokens. None and blank text count as 0."""
    if not text:
        return 0
    return len(text.split())


def round_half_up(value: float) -> int:
    """
    Round to the nearest integer with halves going up (22.5 -> 23).

    Python's round() uses banker's rounding (22.5 -> 22), which would make
    scene counts drift from the pacing table at exact half boundaries.
    """
    return int(math.floor(value + 0.5))


def estimate_duration_seconds(word_count: int, words_per_minute: int = WORDS_PER_MINUTE) -> int:
    """Narration length in whole seconds for a word count at the given speaking rate."""
    if word_count <= 0:
        return 0
    return round_half_up(word_count / words_per_minute * 60)


def estimate_duration_minutes(word_count: int, words_per_minute: int = WORDS_PER_MINUTE) -> float:
    """Narration length in minutes, one decimal place."""
    return round_half_up(word_count / words_per_minute * 10) / 10


def safe_filename(name: str) -> str:
    """
    Turn an arbitrary title into a filesystem-safe stem.

    Args:
        name: Title or topic (e.g., "Battle of Cannae (216 BC)")

    Returns:
        Lowercase stem with underscores (e.g., "battle_of_cannae_216_bc")
    """
    cleaned = re.sub(r"[^A-Za-z0-9 _-]", "", name).strip()
    cleaned = re.sub(r"[\s-]+", "_", cleaned)
    return cleaned.lower() or "untitled"


def write_json(path: Path | str, data: Any) -> Path:
    """Write data as pretty JSON, creating parent directories."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False)
    return path


def read_json(path: Path | str) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)
