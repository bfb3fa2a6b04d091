"""
Modular prompt builders for script and storyboard generation.
Extracts shared prompt components so every mode assembles prompts the same way.
"""
import json
from typing import Optional

from script_schemas import BATCH_RESPONSE_SCHEMA, ContinuationPayload, outline_schema
from style_checker import StyleRuleset

# How much of the earlier narration is echoed back into each batch prompt
MAX_PREVIOUS_CHUNK_CHARS = 12_000


def get_style_rules_prompt(ruleset: StyleRuleset) -> str:
    """Lexical rules the narration must follow, rendered from a ruleset."""
    lines = ["STYLE RULES:"]
    if ruleset.prohibited_terms:
        lines.append(f"- NEVER use these words: {', '.join(ruleset.prohibited_terms)}")
    if ruleset.mandatory_terms:
        lines.append(
            f"- Use at least {ruleset.minimum_mandatory_hits} of these terms across the script: "
            f"{', '.join(ruleset.mandatory_terms)}"
        )
    if ruleset.discouraged_expansions:
        lines.append(
            f"- Use contractions instead of: {', '.join(repr(e) for e in ruleset.discouraged_expansions)}"
        )
    lines.append("- Write ONLY words a narrator speaks. No camera directions, no headings, no stage notes.")
    return "\n".join(lines)


def get_research_block(research: str) -> str:
    if not research or not research.strip():
        return ""
    return f"""
RESEARCH CONTEXT (use these facts - prefer them over your general knowledge):
---
{research.strip()}
---
"""


def build_hook_prompt(topic: str, research: str, ruleset: StyleRuleset, hook_words: int = 150) -> str:
    """Prompt for the cold-open hook. Output is plain narration, no JSON."""
    return f"""Write the opening hook (~{hook_words} words) for a narrated documentary about: {topic}
{get_research_block(research)}
HOOK REQUIREMENTS:
- Open in the middle of the most dramatic moment, present tense
- Do NOT start with a date or a location setup
- End with a reason to keep watching

{get_style_rules_prompt(ruleset)}

OUTPUT: Return ONLY the hook text. No JSON, no metadata, no formatting."""


def build_outline_prompt(
    topic: str,
    research: str,
    hook: str,
    section_keys: tuple[str, ...],
    total_words: int,
    per_batch_words: int,
) -> str:
    """Prompt for the master outline: one section per batch, returned as a single JSON object."""
    sections = "\n".join(f"{i}. {key}" for i, key in enumerate(section_keys, 1))
    schema = json.dumps(outline_schema(section_keys), indent=2)
    return f"""Build the master outline for a narrated documentary about: {topic}
{get_research_block(research)}
The hook has already been written and opens the video:
"{hook.strip()}"

The main script follows the hook in {len(section_keys)} sections, in this order:
{sections}

Target length: ~{total_words} words total, ~{per_batch_words} words per section.

Return ONLY one JSON object matching this schema (no prose before or after):
{schema}"""


def format_outline_section(outline: dict, section_key: Optional[str]) -> str:
    """Render the outline section a batch must cover; '' when the outline has no such section."""
    if not section_key:
        return ""
    section = outline.get(section_key)
    if not isinstance(section, dict):
        return ""
    title = section.get("title") or section_key
    key_points = section.get("key_points") or []
    if isinstance(key_points, list):
        key_points = "; ".join(str(p) for p in key_points)
    lines = [f"**{title}**", f"Key Points: {key_points}"]
    analysis = section.get("analysis")
    if isinstance(analysis, dict) and analysis:
        lines.append("")
        lines.append("ANALYSIS TO WEAVE IN:")
        for name, value in analysis.items():
            lines.append(f"- {name.replace('_', ' ').title()}: {value}")
    if section.get("engagement_spike"):
        lines.append(f"ENGAGEMENT SPIKE: {section['engagement_spike']}")
    if section.get("visual_note"):
        lines.append(f"VISUAL NOTE: {section['visual_note']}")
    return "\n".join(lines)


def format_previous_payload(payload: Optional[ContinuationPayload]) -> str:
    if payload is None:
        return "This is the first batch. Start right after the hook."
    objectives = "\n".join(f"- {o}" for o in payload.next_objectives) or "- (none given)"
    return f"""Summary so far: {payload.summary_of_previous}
Current momentum: {payload.current_momentum}
Objectives for this batch:
{objectives}
Style reminder: {payload.style_reminder}"""


def format_previous_chunks(previous_chunks: list[str], max_chars: int = MAX_PREVIOUS_CHUNK_CHARS) -> str:
    """Earlier narration, most recent text kept when it has to be cut."""
    if not previous_chunks:
        return ""
    joined = "\n\n".join(previous_chunks)
    if len(joined) > max_chars:
        joined = "..." + joined[-max_chars:]
    return f"""
ALREADY NARRATED (do NOT repeat facts, phrases or openings from this):
---
{joined}
---
"""


def build_batch_prompt(
    batch_number: int,
    total_batches: int,
    topic: str,
    research: str,
    outline: dict,
    section_key: Optional[str],
    phase_goal: str,
    previous_payload: Optional[ContinuationPayload],
    previous_chunks: list[str],
    per_batch_words: int,
    ruleset: StyleRuleset,
) -> str:
    """Prompt for batch N: continue the narration and hand off to batch N+1."""
    section_text = format_outline_section(outline, section_key) or "Continue the narrative arc of the outline."
    schema = json.dumps(BATCH_RESPONSE_SCHEMA, indent=2)
    last_batch_note = (
        "This is the FINAL batch: close the story. next_prompt_payload still must be present."
        if batch_number == total_batches else ""
    )
    return f"""You are writing batch {batch_number} of {total_batches} of a narrated documentary about: {topic}

BATCH GOAL: {phase_goal}

SECTION TO COVER:
{section_text}

HAND-OFF FROM THE PREVIOUS BATCH:
{format_previous_payload(previous_payload)}
{format_previous_chunks(previous_chunks)}{get_research_block(research)}
LENGTH: ~{per_batch_words} words of narration.
{last_batch_note}

{get_style_rules_prompt(ruleset)}

Return ONLY one JSON object matching this schema:
{schema}"""


# --- Storyboard image prompts ---

SCENE_STYLE_SUFFIX = """

STYLE REQUIREMENTS (CRITICAL):
- High-fidelity digital illustration, dramatic lighting, sharp focus
- Historically accurate costume, architecture and props
- Realistic faces and anatomy, atmospheric depth
- NO text, watermarks, logos, frames or borders"""

MAP_STYLE_SUFFIX = """

STYLE REQUIREMENTS (CRITICAL):
- Aged parchment historical map, hand-drawn cartography
- Clear terrain features, troop positions as colored blocks and arrows
- Muted earth tones, no modern UI elements
- NO legible text labels, watermarks or logos"""

PORTRAIT_STYLE_SUFFIX = """

STYLE REQUIREMENTS (HISTORICAL PORTRAIT - CRITICAL):
- Classical oil painting style portrait, face and upper body in sharp focus
- Dramatic chiaroscuro lighting, dignified composition
- Historically accurate costume, armor and accessories for the era
- Single subject, plain dark background, NO text or frame"""

NEGATIVE_PROMPT_SCENE = (
    "cartoon, anime, vector art, minimalist, modern clothing, smartphones, blur, distorted faces, "
    "low quality, text, watermark, logo, gore, graphic violence, nudity, infographic, chart, frame, border"
)

NEGATIVE_PROMPT_MAP = (
    "photograph, 3D render, modern map, satellite imagery, UI elements, legible text, watermark, "
    "logo, people, gore, frame, border"
)

NEGATIVE_PROMPT_PORTRAIT = (
    "cartoon, anime, modern clothing, blur, low quality, text, watermark, logo, full body shot, "
    "multiple people, crowd, nudity, gore, frame, border, deformed face, extra limbs, bad anatomy"
)


def build_character_context(character_refs: list[dict]) -> str:
    """Appearance notes that keep recurring characters consistent across scenes."""
    if not character_refs:
        return ""
    lines = ["", "", "CHARACTER CONSISTENCY - Maintain exact appearance:"]
    for ref in character_refs:
        lines.append(f"- {ref['name']}: {ref.get('visual_description', '')}".rstrip())
    return "\n".join(lines)


def build_portrait_prompt(character: dict) -> str:
    parts = [f"Historical portrait of {character['name']}"]
    if character.get("role"):
        parts[0] += f", {character['role']}"
    parts[0] += "."
    if character.get("visual_description"):
        parts.append(character["visual_description"])
    if character.get("historical_period_appearance"):
        parts.append(character["historical_period_appearance"])
    return "\n\n".join(parts) + PORTRAIT_STYLE_SUFFIX


# ------------- CHARACTER IDENTIFICATION & ART STYLE -------------

HISTORICAL_ERAS = ("Roman Republic", "Roman Empire", "Medieval", "Napoleonic", "Prussian", "Other")

MAX_IDENTIFIED_CHARACTERS = 10

STORYBOARD_SYSTEM_PROMPT = (
    "You are the visual researcher for a historical battle documentary channel. "
    "You work only from what the script says and you answer in the exact format requested."
)

CHARACTER_RESPONSE_EXAMPLE = json.dumps({
    "characters": [{
        "name": "Full Name",
        "role": "Historical role",
        "description": "Brief narrative description",
        "notable_actions": ["action1", "action2"],
        "visual_description": "Age, build, face, expression, distinctive features",
        "historical_period_appearance": "Era-accurate garments, armor, colors and materials",
        "prominence": "primary",
    }],
}, indent=2)

_ERA_COSTUME_NOTES = {
    "Roman Republic": "Generals: muscle cuirass, crimson paludamentum, plumed Attic helmet. "
                      "Senators: toga praetexta with purple border.",
    "Roman Empire": "Generals: muscle cuirass, crimson paludamentum, laurel wreath. "
                    "Soldiers: lorica segmentata, rectangular scutum, gladius at the right hip.",
    "Medieval": "Kings: crown, ermine-trimmed robes over mail. "
                "Knights: plate or mail with heraldic surcoat, great helm or bascinet.",
    "Napoleonic": "French officers: bicorne, blue coat with gold frogging, epaulettes, white breeches. "
                  "Other nations in their colours (British red, Russian green, Austrian white).",
    "Prussian": "Officers: Pickelhaube, Prussian blue uniform with red piping, Iron Cross decorations.",
}

_ERA_ART_NOTES = {
    "Roman Republic": "Neoclassical or Academic painting; Jacques-Louis David, Jean-Leon Gerome, Alma-Tadema.",
    "Roman Empire": "Neoclassical or Academic painting; Jacques-Louis David, Jean-Leon Gerome, Alma-Tadema.",
    "Medieval": "Gothic illumination or Romantic medievalism; the Limbourg Brothers, Eugene Delacroix.",
    "Napoleonic": "Romantic or Neoclassical military painting; David, Antoine-Jean Gros, Gericault.",
    "Prussian": "Academic realism or Romantic military painting; Adolph Menzel, Carl Rochling.",
}


def normalize_era(era: Optional[str]) -> str:
    """Map free text onto a known era name; anything unrecognised is 'Other'."""
    if era:
        for known in HISTORICAL_ERAS:
            if era.strip().lower() == known.lower():
                return known
    return "Other"


def build_character_identification_prompt(script: str, era: str = "Other") -> str:
    """Prompt that extracts explicitly named historical figures from a finished script. Output is JSON."""
    era = normalize_era(era)
    costume = _ERA_COSTUME_NOTES.get(era, "Research era-appropriate dress for each figure's rank and role.")
    return f"""Identify the historical figures whose names appear EXPLICITLY in this documentary script.

SCRIPT:
---
{script.strip()}
---

HISTORICAL ERA: {era}
PERIOD DRESS NOTES: {costume}

FOR EACH CHARACTER PROVIDE:
- name: full historical name
- role: their role in the narrative (e.g. "Carthaginian General")
- description: 2-3 sentence summary
- notable_actions: key actions they take in the script
- visual_description: 150-200 words on age, build, face, expression and distinctive features
- historical_period_appearance: era-accurate clothing, armor, colors and regalia for their rank
- prominence: "primary" (central, 5+ mentions) or "secondary"

CONSTRAINTS:
- ONLY people whose name appears in the script text; never infer figures from groups like "the Roman army"
- NO modern historians, archaeologists, authors or narrators quoted by the script
- NO fictional characters
- At most {MAX_IDENTIFIED_CHARACTERS} characters, most prominent first
- Descriptions must suit dignified portrait generation (no gore)
- If nobody is named, return an empty characters list

OUTPUT: Return ONLY a JSON object:
{CHARACTER_RESPONSE_EXAMPLE}"""


def build_art_style_prompt(title: str, era: str = "Other") -> str:
    """Prompt for a painting-style paragraph that gets injected into every scene image prompt."""
    era = normalize_era(era)
    notes = _ERA_ART_NOTES.get(
        era, "Choose the painting tradition that existed during or shortly after the period."
    )
    return f"""Write the painting style for the storyboard of a tactical battle documentary.

TITLE: {title}
ERA: {era}
ERA GUIDANCE: {notes}

THE STYLE MUST NAME:
1. The art movement or period
2. One to three historical painters as references
3. Medium, brushwork, color palette and lighting technique
4. The compositional approach

CONSTRAINTS:
- Traditional painting only (oil, fresco, tempera, illumination); no digital art, 3D or photography
- Historically grounded and period-appropriate

OUTPUT: Return ONLY one paragraph of 150-250 words. No heading, no quotes, no list."""
