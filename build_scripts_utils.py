"""
Shared utilities for script generation.
Pulls structured JSON payloads out of free-form model responses.
"""
import json
import re

_FENCE_RE = re.compile(r"```(?:json|JSON)?[ \t]*\n?")

_CLOSERS = {"{": "}", "[": "]"}


class JsonExtractionError(ValueError):
    """Raised when no parseable JSON payload of the requested kind is found."""

    def __init__(self, message, raw_text=None):
        super().__init__(message)
        self.raw_text = raw_text


def clean_json_response(content: str) -> str:
    """Remove markdown code blocks from JSON response."""
    content = content.strip()
    if content.startswith("```json"):
        content = content[7:]
    elif content.startswith("```"):
        content = content[3:]
    if content.endswith("```"):
        content = content[:-3]
    return content.strip()


def strip_wrapper_markers(text: str) -> str:
    """Remove every markdown code fence, wherever it appears in the response."""
    return _FENCE_RE.sub("", clean_json_response(text)).strip()


def find_balanced_span(text: str, opener: str) -> tuple[str, bool] | None:
    """
    Locate the first span starting with opener ("{" or "[") and ending at its matching closer.

    Brackets inside JSON strings are ignored. Returns (span, complete); when the
    text ends before the span closes, the span runs to the end of the text and
    complete is False. Returns None when opener never appears.
    """
    if opener not in _CLOSERS:
        raise ValueError(f"opener must be '{{' or '[', got {opener!r}")
    start = text.find(opener)
    if start == -1:
        return None

    stack: list[str] = []
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]"):
            if not stack or stack[-1] != ch:
                # Mismatched closer; let the strict parse report it
                return text[start:i + 1], True
            stack.pop()
            if not stack:
                return text[start:i + 1], True
    return text[start:], False


def repair_truncated_json(fragment: str) -> str:
    """
    Close whatever a truncated JSON fragment left open.

    Terminates an unfinished string, drops a dangling comma, then appends the
    missing closers innermost first.
    """
    stack: list[str] = []
    in_string = False
    escaped = False
    for ch in fragment:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in _CLOSERS:
            stack.append(_CLOSERS[ch])
        elif ch in ("}", "]") and stack and stack[-1] == ch:
            stack.pop()

    repaired = fragment
    if in_string:
        if escaped:
            repaired = repaired[:-1]
        repaired += '"'
    repaired = repaired.rstrip()
    if repaired.endswith(","):
        repaired = repaired[:-1]
    return repaired + "".join(reversed(stack))


def _extract(text: str, opener: str, expected_type: type, repair: bool):
    if text is None or not text.strip():
        raise JsonExtractionError("Empty response, nothing to parse", raw_text=text)

    cleaned = strip_wrapper_markers(text)
    found = find_balanced_span(cleaned, opener)
    if found is None:
        candidate, complete = cleaned, True
    else:
        candidate, complete = found

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as e:
        if not repair or complete:
            raise JsonExtractionError(f"Invalid JSON: {e}", raw_text=text) from e
        try:
            parsed = json.loads(repair_truncated_json(candidate))
        except json.JSONDecodeError as e2:
            raise JsonExtractionError(f"Invalid JSON after repair: {e2}", raw_text=text) from e2

    if not isinstance(parsed, expected_type):
        raise JsonExtractionError(
            f"Expected {expected_type.__name__}, got {type(parsed).__name__}", raw_text=text
        )
    return parsed


def extract_json_object(text: str, repair: bool = False) -> dict:
    """
    Extract the first JSON object embedded in a model response.

    Args:
        text: Raw response (may contain prose and ```json fences around the object)
        repair: If True, a truncated object is closed and re-parsed once

    Returns:
        The parsed dict

    Raises:
        JsonExtractionError: No object could be parsed
    """
    return _extract(text, "{", dict, repair)


def extract_json_array(text: str, repair: bool = False) -> list:
    """Extract the first JSON array embedded in a model response. See extract_json_object."""
    return _extract(text, "[", list, repair)


def try_extract_json_object(text: str, repair: bool = False) -> dict | None:
    """extract_json_object that returns None instead of raising."""
    try:
        return extract_json_object(text, repair=repair)
    except JsonExtractionError:
        return None
