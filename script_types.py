"""
Generation modes for recursive script generation.
Each mode fixes how many batches a script has, which outline section each batch
covers, the style ruleset, and the fallback hand-off used when a batch's
response can't be parsed. Add a mode by subclassing ScriptMode.
"""
import math
from abc import ABC, abstractmethod
from typing import Optional

import prompt_builders
from script_schemas import ContinuationPayload
from style_checker import StyleRuleset, WAR_ROOM_RULESET, DOCUMENTARY_RULESET

# Total word targets by script duration class
WORD_COUNT_TARGETS = {
    "short": 1500,    # 8-12 minutes
    "medium": 3000,   # ~20 minutes
    "long": 5250,     # ~35 minutes
}


def get_script_duration(minutes: float) -> str:
    """Classify a target length in minutes as 'short', 'medium' or 'long'."""
    if minutes <= 12:
        return "short"
    if minutes <= 25:
        return "medium"
    return "long"


def get_word_targets(duration_class: str, batch_count: int) -> tuple[int, int]:
    """Return (total words, words per batch) for a duration class split over batch_count batches."""
    total = WORD_COUNT_TARGETS.get(duration_class, WORD_COUNT_TARGETS["medium"])
    return total, round(total / max(1, batch_count))


class ScriptMode(ABC):
    """Base class for script generation modes."""

    name: str = ""
    batch_count: int = 5
    ruleset: StyleRuleset = StyleRuleset()
    outline_sections: tuple[str, ...] = ()
    style_reminder: str = ""

    @abstractmethod
    def get_system_prompt(self) -> str:
        """System directive shared by every call in this mode."""

    @abstractmethod
    def get_batch_goal(self, batch_number: int, total_batches: int) -> str:
        """One-line goal for a batch, shown to the model."""

    def get_section_key(self, batch_number: int) -> Optional[str]:
        """Outline section covered by batch_number (1-based); None past the last section."""
        if 1 <= batch_number <= len(self.outline_sections):
            return self.outline_sections[batch_number - 1]
        return None

    def get_hook_prompt(self, topic: str, research: str) -> str:
        return prompt_builders.build_hook_prompt(topic, research, self.ruleset)

    def get_outline_prompt(self, topic: str, research: str, hook: str, total_words: int, per_batch_words: int) -> str:
        return prompt_builders.build_outline_prompt(
            topic, research, hook, self.outline_sections, total_words, per_batch_words
        )

    def get_batch_prompt(
        self,
        batch_number: int,
        total_batches: int,
        topic: str,
        research: str,
        outline: dict,
        previous_payload: Optional[ContinuationPayload],
        previous_chunks: list[str],
        per_batch_words: int,
    ) -> str:
        return prompt_builders.build_batch_prompt(
            batch_number=batch_number,
            total_batches=total_batches,
            topic=topic,
            research=research,
            outline=outline,
            section_key=self.get_section_key(batch_number),
            phase_goal=self.get_batch_goal(batch_number, total_batches),
            previous_payload=previous_payload,
            previous_chunks=previous_chunks,
            per_batch_words=per_batch_words,
            ruleset=self.ruleset,
        )

    def get_fallback_payload(self, batch_number: int, total_batches: int) -> ContinuationPayload:
        """
        Hand-off used when batch_number's response has no parseable payload.

        Depends only on the batch position, so the same batch always degrades the same way.
        """
        build_up_batches = math.ceil(total_batches * 0.6)
        return ContinuationPayload(
            summary_of_previous=f"Batch {batch_number} content",
            current_momentum="building tension" if batch_number <= build_up_batches else "peak action",
            next_objectives=(f"Continue to batch {batch_number + 1}",),
            style_reminder=self.style_reminder,
        )


class WarRoomScript(ScriptMode):
    """Tactical battle breakdown: cold open, flashback build-up, return to the battle, aftermath."""

    name = "war_room"
    batch_count = 5
    ruleset = WAR_ROOM_RULESET
    outline_sections = (
        "the_matchup",
        "the_unit_deep_dive",
        "the_tactical_turn",
        "the_kill_screen",
        "the_aftermath",
    )
    style_reminder = "Maintain War Room tactical style"

    _GOALS = {
        1: "FLASHBACK - the matchup: units, equipment, morale and the map.",
        2: "FLASHBACK - deep dive into the unit or weapon that changed the game.",
        3: "FLASHBACK - the tactical turn: the exact point of no return.",
        4: "RETURN TO THE COLD OPEN - the kill screen, now with full context.",
        5: "AFTERMATH - casualties, kill ratios and what changed.",
    }

    def get_system_prompt(self) -> str:
        return (
            "You are a War Room narrator for a tactical battle documentary channel. "
            "You explain battles like a strategy-game analyst: units, counters, terrain buffs "
            "and debuffs, and the numbers behind every decision. Facts come first."
        )

    def get_batch_goal(self, batch_number: int, total_batches: int) -> str:
        return self._GOALS.get(batch_number, "Continue the battle narrative toward its conclusion.")


class DocumentaryScript(ScriptMode):
    """General historical documentary: chronological arc from origins to legacy."""

    name = "documentary"
    batch_count = 6
    ruleset = DOCUMENTARY_RULESET
    outline_sections = (
        "origins",
        "rise",
        "turning_point",
        "crisis",
        "resolution",
        "legacy",
    )
    style_reminder = "Plain, specific, fact-dense narration"

    def get_system_prompt(self) -> str:
        return (
            "You are the narrator of a long-form historical documentary. Simple, clear language; "
            "specific names, dates, places and numbers; every sentence adds new information."
        )

    def get_batch_goal(self, batch_number: int, total_batches: int) -> str:
        key = self.get_section_key(batch_number)
        if key is None:
            return "Continue the story toward its conclusion."
        return f"Cover the {key.replace('_', ' ')} of the story."


SCRIPT_MODES: dict[str, type[ScriptMode]] = {
    WarRoomScript.name: WarRoomScript,
    DocumentaryScript.name: DocumentaryScript,
}


def get_script_mode(name: str) -> ScriptMode:
    """Instantiate a mode by name. Raises ValueError for unknown names."""
    try:
        return SCRIPT_MODES[name]()
    except KeyError:
        raise ValueError(f"Unknown script mode: {name!r}. Choose from: {', '.join(SCRIPT_MODES)}") from None
