"""
Recursive documentary script generation.

A script is built in strictly ordered phases:

    Hook -> Outline -> Batch 1 .. Batch K -> Aggregate -> Done

Each batch receives the hand-off payload the previous batch produced plus all
narration written so far, so batches can never run in parallel. Any phase can
fail into Failed; a batch whose JSON can't be parsed does not fail, it degrades
to its raw text and a fallback hand-off.
"""
import argparse
import asyncio
import os
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional, Union

from config import Config
from build_scripts_utils import JsonExtractionError, extract_json_object, try_extract_json_object
from scene_timing import calculate_scene_timing_plan, chunk_segments_by_scene_count
from script_schemas import ContinuationPayload
from script_types import SCRIPT_MODES, ScriptMode, get_script_duration, get_script_mode, get_word_targets
from style_checker import StyleRuleset, StyleViolation, check_style_compliance
from utils import count_words, estimate_duration_minutes, estimate_duration_seconds, safe_filename, write_json

SCRIPTS_DIR = Path("scripts")

HOOK_TEMPERATURE = 0.8
HOOK_MAX_TOKENS = 500
OUTLINE_TEMPERATURE = 0.7
OUTLINE_MAX_TOKENS = 6000
BATCH_TEMPERATURE = 0.8

SCRIPT_DEBUG = os.getenv("DEBUG", "").lower() in ("1", "true", "yes")


def _log(msg: str, verbose_only: bool = False) -> None:
    if verbose_only and not SCRIPT_DEBUG:
        return
    print(f"[SCRIPT] {msg}")


# ------------- ERRORS -------------

class ScriptGenerationError(Exception):
    """Fatal synthesis error, tagged with the phase (and batch) it happened in."""

    def __init__(self, message, phase=None, batch_number=None):
        super().__init__(message)
        self.phase = phase
        self.batch_number = batch_number

    def __str__(self):
        msg = super().__str__()
        if self.phase is None:
            return msg
        where = self.phase if self.batch_number is None else f"{self.phase} {self.batch_number}"
        return f"[{where}] {msg}"


class EmptyGenerationError(ScriptGenerationError):
    """The text model returned blank output for a phase that needs text."""


class FailedToParseOutlineError(ScriptGenerationError):
    """The outline response did not contain a parseable JSON object."""


class GenerationTimeoutError(ScriptGenerationError):
    """A text generation call exceeded its timeout."""


class ProviderError(ScriptGenerationError):
    """The text provider raised while generating."""


# ------------- RESULTS -------------

@dataclass(frozen=True)
class NarrativeBatch:
    batch_number: int
    script_chunk: str
    word_count: int
    next_prompt_payload: ContinuationPayload
    degraded: bool = False
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "batch_number": self.batch_number,
            "script_chunk": self.script_chunk,
            "word_count": self.word_count,
            "next_prompt_payload": self.next_prompt_payload.to_dict(),
            "degraded": self.degraded,
            "generated_at": self.generated_at.isoformat(),
        }


@dataclass
class RecursiveScript:
    topic: str
    mode: str
    hook: str
    outline: dict
    batches: list[NarrativeBatch]
    full_script: str
    total_word_count: int
    style_violations: list[StyleViolation]
    target_minutes: float
    target_word_count: int
    script_duration: str
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def batch_word_counts(self) -> list[int]:
        return [b.word_count for b in self.batches]

    def to_dict(self) -> dict:
        return {
            "topic": self.topic,
            "mode": self.mode,
            "hook": self.hook,
            "master_outline": self.outline,
            "batches": [b.to_dict() for b in self.batches],
            "full_script": self.full_script,
            "total_word_count": self.total_word_count,
            "target_duration": self.target_minutes,
            "generated_at": self.generated_at.isoformat(),
            "metadata": {
                "total_word_count": self.total_word_count,
                "estimated_duration_minutes": estimate_duration_minutes(self.total_word_count),
                "batch_count": len(self.batches),
                "batch_word_counts": self.batch_word_counts,
                "degraded_batches": [b.batch_number for b in self.batches if b.degraded],
                "script_duration": self.script_duration,
                "target_word_count": self.target_word_count,
                "style_violations": [str(v) for v in self.style_violations],
            },
        }


@dataclass
class GenerationProgress:
    phase: str              # "hook" | "outline" | "batch" | "aggregate" | "complete" | "error"
    current_batch: int
    total_batches: int
    current_word_count: int
    target_word_count: int
    error: Optional[str] = None


# ------------- STATES -------------

@dataclass(frozen=True)
class HookState:
    pass


@dataclass(frozen=True)
class OutlineState:
    pass


@dataclass(frozen=True)
class BatchState:
    batch_number: int
    payload: Optional[ContinuationPayload]


@dataclass(frozen=True)
class AggregateState:
    pass


@dataclass(frozen=True)
class DoneState:
    script: RecursiveScript


@dataclass(frozen=True)
class FailedState:
    reason: str
    phase: Optional[str] = None
    batch_number: Optional[int] = None


SynthesisState = Union[HookState, OutlineState, BatchState, AggregateState, DoneState, FailedState]

TERMINAL_STATES = (DoneState, FailedState)


class NarrativeSynthesizer:
    """
    Drives one recursive script generation for a topic.

    The synthesizer owns the growing script (hook, outline, batches) for the
    duration of a run; nothing else mutates it.

    Args:
        text_generator: Object with async generate(system_prompt, prompt, temperature, max_tokens) -> str
        topic: Documentary title/topic
        research: Research notes injected into every prompt ('' for none)
        mode: ScriptMode instance or mode name (default: Config.default_mode)
        target_minutes: Target narration length; picks the word targets
        batch_count: Number of batches K (default: the mode's)
        ruleset: Style ruleset for the final check (default: the mode's)
        timeout_seconds: Per-call timeout; None disables it
        on_progress: Optional callback receiving GenerationProgress after each phase
    """

    def __init__(
        self,
        text_generator,
        topic: str,
        research: str = "",
        mode: Union[ScriptMode, str, None] = None,
        target_minutes: Optional[float] = None,
        batch_count: Optional[int] = None,
        ruleset: Optional[StyleRuleset] = None,
        timeout_seconds: Optional[float] = None,
        on_progress: Optional[Callable[[GenerationProgress], None]] = None,
    ):
        cfg = Config()
        if mode is None:
            mode = cfg.default_mode
        self.mode = get_script_mode(mode) if isinstance(mode, str) else mode
        self.text_generator = text_generator
        self.topic = topic
        self.research = research or ""
        self.target_minutes = target_minutes if target_minutes is not None else cfg.target_minutes
        self.batch_count = batch_count if batch_count is not None else self.mode.batch_count
        if self.batch_count < 1:
            raise ValueError(f"batch_count must be >= 1, got {self.batch_count}")
        self.ruleset = ruleset if ruleset is not None else self.mode.ruleset
        self.timeout_seconds = timeout_seconds
        self.on_progress = on_progress

        self.script_duration = get_script_duration(self.target_minutes)
        self.target_word_count, self.per_batch_words = get_word_targets(self.script_duration, self.batch_count)
        self.batch_max_tokens = round(self.per_batch_words * 1.5) + 500
        self.system_prompt = self.mode.get_system_prompt()

        self.state: SynthesisState = HookState()
        self._reset()

    def _reset(self):
        self._hook: Optional[str] = None
        self._outline: Optional[dict] = None
        self._batches: list[NarrativeBatch] = []
        self._previous_chunks: list[str] = []

    @property
    def batches(self) -> list[NarrativeBatch]:
        return list(self._batches)

    async def run(self) -> RecursiveScript:
        """
        Run every phase from Hook to Done.

        Returns:
            The aggregated RecursiveScript

        Raises:
            ScriptGenerationError: A fatal phase error; self.state is left as FailedState
        """
        self._reset()
        state: SynthesisState = HookState()
        self.state = state
        _log(f'Starting generation for: "{self.topic}" '
             f"({self.mode.name}, {self.target_minutes} minutes, {self.script_duration} format, "
             f"{self.batch_count} batches)")

        while not isinstance(state, TERMINAL_STATES):
            try:
                state = await self.advance(state)
            except ScriptGenerationError as e:
                state = FailedState(reason=str(e), phase=e.phase, batch_number=e.batch_number)
                self.state = state
                _log(f"ERROR: {e}")
                self._emit_progress("error", error=str(e))
                raise
            self.state = state

        return state.script

    async def advance(self, state: SynthesisState) -> SynthesisState:
        """Execute one phase and return the state that follows it. Terminal states are returned unchanged."""
        if isinstance(state, HookState):
            self._hook = await self._generate_hook()
            return OutlineState()
        if isinstance(state, OutlineState):
            self._outline = await self._generate_outline()
            return BatchState(batch_number=1, payload=None)
        if isinstance(state, BatchState):
            batch = await self._generate_batch(state.batch_number, state.payload)
            if state.batch_number < self.batch_count:
                return BatchState(batch_number=state.batch_number + 1, payload=batch.next_prompt_payload)
            return AggregateState()
        if isinstance(state, AggregateState):
            return DoneState(script=self._aggregate())
        if isinstance(state, TERMINAL_STATES):
            return state
        raise TypeError(f"Unknown synthesis state: {state!r}")

    # ------------- PHASES -------------

    async def _call_text(self, phase: str, prompt: str, temperature: float, max_tokens: int,
                         batch_number: Optional[int] = None) -> str:
        try:
            call = self.text_generator.generate(
                self.system_prompt, prompt, temperature=temperature, max_tokens=max_tokens
            )
            if self.timeout_seconds is not None:
                text = await asyncio.wait_for(call, timeout=self.timeout_seconds)
            else:
                text = await call
        except asyncio.TimeoutError as e:
            raise GenerationTimeoutError(
                f"Text generation timed out after {self.timeout_seconds}s", phase, batch_number
            ) from e
        except Exception as e:
            raise ProviderError(f"Text generation failed: {e}", phase, batch_number) from e

        if not text or not text.strip():
            label = phase if batch_number is None else f"{phase} {batch_number}"
            raise EmptyGenerationError(f"Failed to generate {label}: empty response", phase, batch_number)
        return text

    async def _generate_hook(self) -> str:
        _log("Phase 1: Generating hook...")
        self._emit_progress("hook")
        prompt = self.mode.get_hook_prompt(self.topic, self.research)
        hook = (await self._call_text("hook", prompt, HOOK_TEMPERATURE, HOOK_MAX_TOKENS)).strip()
        _log(f"Hook generated: {count_words(hook)} words")
        return hook

    async def _generate_outline(self) -> dict:
        _log("Phase 2: Generating master outline...")
        self._emit_progress("outline")
        prompt = self.mode.get_outline_prompt(
            self.topic, self.research, self._hook, self.target_word_count, self.per_batch_words
        )
        response = await self._call_text("outline", prompt, OUTLINE_TEMPERATURE, OUTLINE_MAX_TOKENS)
        try:
            outline = extract_json_object(response)
        except JsonExtractionError as e:
            raise FailedToParseOutlineError(f"Failed to parse outline: {e}", "outline") from e

        missing = [key for key in self.mode.outline_sections if key not in outline]
        if missing:
            _log(f"WARNING: Outline is missing section(s): {', '.join(missing)}")
        _log(f"Outline generated with {len(outline)} top-level key(s)")
        return outline

    async def _generate_batch(self, batch_number: int, payload: Optional[ContinuationPayload]) -> NarrativeBatch:
        _log(f"Generating batch {batch_number}/{self.batch_count}...")
        self._emit_progress("batch", current_batch=batch_number - 1)
        prompt = self.mode.get_batch_prompt(
            batch_number=batch_number,
            total_batches=self.batch_count,
            topic=self.topic,
            research=self.research,
            outline=self._outline or {},
            previous_payload=payload,
            previous_chunks=list(self._previous_chunks),
            per_batch_words=self.per_batch_words,
        )
        response = await self._call_text("batch", prompt, BATCH_TEMPERATURE, self.batch_max_tokens, batch_number)

        degraded = False
        parsed = try_extract_json_object(response, repair=True)
        chunk = parsed.get("script_chunk") if parsed else None
        if not isinstance(chunk, str) or not chunk.strip():
            _log(f"WARNING: Batch {batch_number} parse error, using raw response")
            chunk = response
            next_payload = self.mode.get_fallback_payload(batch_number, self.batch_count)
            degraded = True
        else:
            try:
                next_payload = ContinuationPayload.from_dict(parsed.get("next_prompt_payload"))
            except ValueError as e:
                _log(f"WARNING: Batch {batch_number} hand-off unusable ({e}), using fallback payload")
                next_payload = self.mode.get_fallback_payload(batch_number, self.batch_count)
                degraded = True

        batch = NarrativeBatch(
            batch_number=batch_number,
            script_chunk=chunk,
            word_count=count_words(chunk),
            next_prompt_payload=next_payload,
            degraded=degraded,
        )
        self._batches.append(batch)
        self._previous_chunks.append(chunk)
        _log(f"Batch {batch_number} complete: {batch.word_count} words")
        _log(f"Hand-off: {next_payload.current_momentum} | {next_payload.summary_of_previous[:80]}", verbose_only=True)
        return batch

    def _aggregate(self) -> RecursiveScript:
        _log("Phase 4: Aggregating script...")
        full_script = "\n\n".join([self._hook] + [b.script_chunk for b in self._batches])
        total_words = count_words(full_script)

        violations = check_style_compliance(full_script, self.ruleset)
        if violations:
            _log(f"WARNING: {len(violations)} style violation(s) detected:")
            for v in violations:
                _log(f"  • {v}")

        script = RecursiveScript(
            topic=self.topic,
            mode=self.mode.name,
            hook=self._hook,
            outline=self._outline,
            batches=list(self._batches),
            full_script=full_script,
            total_word_count=total_words,
            style_violations=violations,
            target_minutes=self.target_minutes,
            target_word_count=self.target_word_count,
            script_duration=self.script_duration,
        )
        self._emit_progress("complete", current_batch=self.batch_count)
        _log(f"Complete! Total: {total_words} words (target: {self.target_word_count})")
        return script

    def _emit_progress(self, phase: str, current_batch: Optional[int] = None, error: Optional[str] = None):
        if self.on_progress is None:
            return
        words = count_words(self._hook) + sum(b.word_count for b in self._batches)
        self.on_progress(GenerationProgress(
            phase=phase,
            current_batch=len(self._batches) if current_batch is None else current_batch,
            total_batches=self.batch_count,
            current_word_count=words,
            target_word_count=self.target_word_count,
            error=error,
        ))


# ------------- STORYBOARD PLANNING -------------

def build_storyboard_plan(script: RecursiveScript, max_scenes_per_chunk: Optional[int] = None) -> dict:
    """
    Scene timing plan for a finished script: duration from word count, scenes per
    pacing segment, and the chunked guidance for scene-breakdown calls.
    """
    cfg = Config()
    duration = estimate_duration_seconds(script.total_word_count, cfg.words_per_minute)
    plan = calculate_scene_timing_plan(duration)
    chunks = chunk_segments_by_scene_count(plan, max_scenes_per_chunk or cfg.max_scenes_per_chunk)
    print(f"[TIMING] {duration}s narration -> {plan.total_scenes} scenes in {len(chunks)} chunk(s)")
    return {
        "plan": plan.to_dict(),
        "chunks": [
            {**chunk.to_dict(), "prompt_guidance": chunk.prompt_guidance(plan.total_duration)}
            for chunk in chunks
        ],
    }


# ------------- CLI -------------

def _load_research(args) -> str:
    if args.research_file:
        return Path(args.research_file).read_text(encoding="utf-8")
    if not args.use_research:
        return ""
    import research_utils
    ctx = research_utils.fetch_research(args.topic)
    return ctx.to_prompt_text()


async def generate_script(args) -> dict:
    from llm_utils import TextGenerator, get_text_model_display

    cfg = Config()
    text_generator = TextGenerator(provider=args.provider)
    _log(f"Text model: {get_text_model_display(text_generator.provider)}")

    synthesizer = NarrativeSynthesizer(
        text_generator,
        topic=args.topic,
        research=await asyncio.to_thread(_load_research, args),
        mode=args.mode,
        target_minutes=args.minutes,
        batch_count=args.batches,
        timeout_seconds=cfg.text_timeout_seconds,
    )
    script = await synthesizer.run()
    output = script.to_dict()
    if not args.no_storyboard_plan:
        output["storyboard_plan"] = build_storyboard_plan(script)
    return output


def parse_args(argv=None):
    cfg = Config()
    parser = argparse.ArgumentParser(
        description="Generate a recursive documentary script",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # War Room script (5 batches, ~20 minutes)
  python build_script.py "Battle of Cannae"

  # Long general documentary with your own research notes
  python build_script.py "The Fall of Constantinople" out.json --mode documentary --minutes 35 --research-file notes.txt
        """,
    )
    parser.add_argument("topic", help="Documentary title/topic")
    parser.add_argument("output", nargs="?", help="Output JSON file (default: scripts/<topic>_script.json)")
    parser.add_argument("--mode", default=cfg.default_mode, choices=list(SCRIPT_MODES),
                        help=f"Generation mode (default: {cfg.default_mode})")
    parser.add_argument("--minutes", type=float, default=cfg.target_minutes,
                        help=f"Target narration length in minutes (default: {cfg.target_minutes})")
    parser.add_argument("--batches", type=int, default=None, help="Number of batches (default: the mode's)")
    parser.add_argument("--provider", default=None, choices=["openai", "google"],
                        help="Text provider override")
    parser.add_argument("--research-file", default=None, help="Use research notes from this file")
    parser.add_argument("--no-research", dest="use_research", action="store_false",
                        help="Skip Wikipedia research")
    parser.add_argument("--no-storyboard-plan", action="store_true",
                        help="Do not attach the scene timing plan to the output")
    parser.set_defaults(use_research=cfg.use_research)
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    output_path = Path(args.output) if args.output else SCRIPTS_DIR / f"{safe_filename(args.topic)}_script.json"
    try:
        output = asyncio.run(generate_script(args))
    except ScriptGenerationError as e:
        print(f"[SCRIPT] Generation aborted, restart from the hook: {e}")
        return 1
    write_json(output_path, output)
    _log(f"Saved: {output_path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
