"""
Shapes exchanged with the text model during recursive script generation.
The JSON schemas are embedded in prompts so the model knows what to return.
"""
from dataclasses import dataclass, field, asdict

# --- Continuation payload (batch i -> batch i+1 hand-off) ---
CONTINUATION_PAYLOAD_SCHEMA = {
    "type": "object",
    "title": "next_prompt_payload",
    "properties": {
        "summary_of_previous": {"type": "string", "description": "What this and earlier batches covered"},
        "current_momentum": {"type": "string", "description": "Pacing/energy state, e.g. 'building tension'"},
        "next_objectives": {"type": "array", "items": {"type": "string"}, "description": "What the next batch must cover"},
        "style_reminder": {"type": "string", "description": "Style rules to keep applying"},
    },
    "required": ["summary_of_previous", "current_momentum", "next_objectives", "style_reminder"],
}

# --- Batch response ---
BATCH_RESPONSE_SCHEMA = {
    "type": "object",
    "title": "script_batch",
    "properties": {
        "script_chunk": {"type": "string", "description": "Spoken narration for this batch only"},
        "next_prompt_payload": CONTINUATION_PAYLOAD_SCHEMA,
    },
    "required": ["script_chunk", "next_prompt_payload"],
}

# --- Outline section (one per batch) ---
OUTLINE_SECTION_SCHEMA = {
    "type": "object",
    "properties": {
        "title": {"type": "string"},
        "key_points": {"type": "array", "items": {"type": "string"}},
        "analysis": {"type": "object"},
        "engagement_spike": {"type": "string"},
        "visual_note": {"type": "string"},
        "estimated_word_count": {"type": "integer"},
    },
    "required": ["title", "key_points", "estimated_word_count"],
}


def outline_schema(section_keys: tuple[str, ...]) -> dict:
    """Outline schema with one required section per key, in batch order."""
    return {
        "type": "object",
        "title": "master_outline",
        "properties": {key: OUTLINE_SECTION_SCHEMA for key in section_keys},
        "required": list(section_keys),
    }


@dataclass(frozen=True)
class ContinuationPayload:
    """Hand-off context produced by one batch and consumed by the next."""

    summary_of_previous: str
    current_momentum: str
    next_objectives: tuple[str, ...] = field(default_factory=tuple)
    style_reminder: str = ""

    @classmethod
    def from_dict(cls, data) -> "ContinuationPayload":
        """
        Build a payload from parsed model output.

        Raises:
            ValueError: data is not a dict or a required text field is missing/blank
        """
        if not isinstance(data, dict):
            raise ValueError(f"Continuation payload must be an object, got {type(data).__name__}")
        summary = data.get("summary_of_previous")
        momentum = data.get("current_momentum")
        if not isinstance(summary, str) or not summary.strip():
            raise ValueError("Continuation payload is missing summary_of_previous")
        if not isinstance(momentum, str) or not momentum.strip():
            raise ValueError("Continuation payload is missing current_momentum")

        objectives = data.get("next_objectives") or []
        if isinstance(objectives, str):
            objectives = [objectives]
        elif not isinstance(objectives, list):
            objectives = []
        reminder = data.get("style_reminder")
        return cls(
            summary_of_previous=summary.strip(),
            current_momentum=momentum.strip(),
            next_objectives=tuple(str(o) for o in objectives if str(o).strip()),
            style_reminder=reminder.strip() if isinstance(reminder, str) else "",
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data["next_objectives"] = list(self.next_objectives)
        return data
