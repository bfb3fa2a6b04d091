"""
Research utilities for documentary script generation.
Fetches topic content from Wikipedia and provides a ResearchContext whose text
is injected into every hook, outline and batch prompt.

The Wikipedia prop=extracts API stops at 1200 characters, so the full page is
fetched with action=parse and stripped of HTML.
"""
import html
import os
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import requests

from utils import read_json, safe_filename, write_json

RESEARCH_CACHE_DIR = Path("research_cache")
WIKIPEDIA_API = "https://en.wikipedia.org/w/api.php"
USER_AGENT = "DocumentaryPipeline/1.0 (documentary script research)"
MAX_SUMMARY_CHARS = int(os.getenv("RESEARCH_MAX_CHARS", "60000"))
MAX_KEY_FACTS = 25
RESEARCH_DEBUG = os.getenv("DEBUG", "").lower() in ("1", "true", "yes")

# Sentences carrying a year, a count or a percentage
_FACT_PATTERN = re.compile(
    r"\b\d{3,4}\b|\d%|\b\d[\d,]*\s(?:percent|men|troops|soldiers|ships|killed|casualties)\b",
    re.IGNORECASE,
)
_SENTENCE_SPLIT = re.compile(r"(?<=[.!?])\s+(?=[A-Z])")


def _log(msg: str, verbose_only: bool = False) -> None:
    if verbose_only and not RESEARCH_DEBUG:
        return
    print(f"[RESEARCH] {msg}")


@dataclass
class ResearchContext:
    """Research gathered for one topic."""

    summary: str
    key_facts: list[str] = field(default_factory=list)
    source_page_title: Optional[str] = None

    def is_empty(self) -> bool:
        return not self.summary.strip()

    def to_prompt_text(self) -> str:
        """Research as plain prompt text; '' when empty."""
        if self.is_empty():
            return ""
        parts = []
        if self.source_page_title:
            parts.append(f"Source: Wikipedia - {self.source_page_title}")
        if self.key_facts:
            parts.append("KEY FACTS AND NUMBERS:\n" + "\n".join(f"- {fact}" for fact in self.key_facts))
        parts.append(self.summary)
        return "\n\n".join(parts)

    def to_dict(self) -> dict:
        return {
            "summary": self.summary,
            "key_facts": self.key_facts,
            "source_page_title": self.source_page_title,
        }


def _search_wikipedia(query: str) -> Optional[str]:
    """Best matching page title via OpenSearch, or None when nothing matches."""
    params = {"action": "opensearch", "search": query, "limit": 5, "format": "json"}
    _log(f"OpenSearch: query='{query}'", verbose_only=True)
    resp = requests.get(WIKIPEDIA_API, params=params, headers={"User-Agent": USER_AGENT}, timeout=15)
    if resp.status_code != 200:
        _log(f"OpenSearch non-200 ({resp.status_code}): {resp.text[:300]}")
        return None

    data = resp.json()
    # [query, [titles], [descriptions], [urls]]
    if not isinstance(data, list) or len(data) < 2 or not data[1]:
        _log(f"OpenSearch: no results for '{query}'")
        return None
    _log(f"OpenSearch: resolved to page '{data[1][0]}'")
    return data[1][0]


def strip_html_to_text(html_content: str) -> str:
    """Plain text from Wikipedia parse HTML: tags, scripts, styles and inline CSS removed."""
    text = re.sub(r"<(script|style)[^>]*>.*?</\1>", "", html_content, flags=re.DOTALL | re.IGNORECASE)
    text = re.sub(r"</(p|div|br|li|tr|h[1-6])>", "\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", "", text)
    text = html.unescape(text)
    text = re.sub(r"\.[a-zA-Z0-9_-]+\s*\{[^}]*\}", "", text)
    # Citation markers like [12] or [note 3]
    text = re.sub(r"\[(\d+|note \d+|citation needed)\]", "", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]{2,}", " ", text)
    return text.strip()


def _fetch_page_text(page_title: str) -> Optional[str]:
    params = {"action": "parse", "page": page_title, "prop": "text", "format": "json", "redirects": 1}
    _log(f"Fetching Wikipedia for: {page_title}")
    resp = requests.get(WIKIPEDIA_API, params=params, headers={"User-Agent": USER_AGENT}, timeout=30)
    if resp.status_code != 200:
        _log(f"Wikipedia non-200 ({resp.status_code}): {resp.text[:300]}")
        return None

    data = resp.json()
    page_html = data.get("parse", {}).get("text", {}).get("*", "")
    if not page_html.strip():
        info = data.get("error", {}).get("info", "parse.text missing")
        _log(f"Wikipedia: no content ({info})")
        return None

    text = strip_html_to_text(page_html)
    _log(f"Wikipedia: \"{page_title}\" -> {len(text)} chars")
    return text


def truncate_at_paragraphs(text: str, max_chars: int) -> str:
    """Cut at a paragraph boundary in the second half of the budget when one exists."""
    if len(text) <= max_chars:
        return text
    truncated = text[:max_chars]
    last_para = truncated.rfind("\n\n")
    if last_para > max_chars // 2:
        return truncated[:last_para].strip()
    return truncated.strip()


def extract_key_facts(text: str, limit: int = MAX_KEY_FACTS) -> list[str]:
    """First `limit` distinct sentences that carry a date, count or percentage."""
    facts = []
    seen = set()
    for paragraph in text.split("\n"):
        for sentence in _SENTENCE_SPLIT.split(paragraph.strip()):
            sentence = sentence.strip()
            if not (20 <= len(sentence) <= 300) or not _FACT_PATTERN.search(sentence):
                continue
            if sentence in seen:
                continue
            seen.add(sentence)
            facts.append(sentence)
            if len(facts) >= limit:
                return facts
    return facts


def _cache_path(topic: str) -> Path:
    return RESEARCH_CACHE_DIR / f"{safe_filename(topic)}.json"


def _load_from_cache(topic: str) -> Optional[ResearchContext]:
    path = _cache_path(topic)
    if not path.exists():
        return None
    try:
        data = read_json(path)
    except (OSError, ValueError) as e:
        _log(f"Cache read failed: {e}")
        return None
    _log(f"Cache HIT for {topic}")
    return ResearchContext(
        summary=data.get("summary", ""),
        key_facts=data.get("key_facts", []),
        source_page_title=data.get("source_page_title"),
    )


def fetch_research(topic: str, use_cache: bool = True) -> ResearchContext:
    """
    Fetch research for a documentary topic from Wikipedia.

    Network and API failures are logged and yield an empty context: research is
    optional input to the script, never a reason to abort it.
    """
    if use_cache:
        cached = _load_from_cache(topic)
        if cached is not None:
            return cached

    _log(f"Cache MISS for {topic}, fetching...")
    try:
        page_title = _search_wikipedia(topic)
        if not page_title:
            return ResearchContext(summary="")
        text = _fetch_page_text(page_title)
    except (requests.RequestException, ValueError) as e:
        _log(f"ERROR: Wikipedia request failed: {e}")
        return ResearchContext(summary="")
    if not text:
        return ResearchContext(summary="")

    summary = truncate_at_paragraphs(text, MAX_SUMMARY_CHARS)
    if len(summary) < len(text):
        _log(f"Truncated page from {len(text)} to {len(summary)} chars")
    ctx = ResearchContext(summary=summary, key_facts=extract_key_facts(summary), source_page_title=page_title)
    _log(f"{len(ctx.key_facts)} key fact(s) extracted", verbose_only=True)

    # Be nice to Wikipedia
    time.sleep(0.5)

    if use_cache:
        write_json(_cache_path(topic), ctx.to_dict())
        _log(f"Cache saved for {topic}", verbose_only=True)
    return ctx
