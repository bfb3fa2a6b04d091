"""
Scene timing: how many scenes each pacing segment of a video gets, and how
those segments are grouped into chunks for scene-breakdown calls.

Pacing follows viewer attention: very fast cuts in the hook, longer scenes as
the video settles into analysis. Everything here is pure and deterministic;
the same duration always produces the same plan and the same guidance text.
"""
import math
from dataclasses import dataclass

from utils import round_half_up

DEFAULT_SCENE_DURATION = 7
DEFAULT_MAX_SCENES_PER_CHUNK = 50


class InvalidDurationError(ValueError):
    """Raised when a timing plan is requested for a non-positive duration."""


@dataclass(frozen=True)
class TimingSegment:
    """A named pacing phase of the timeline. end_seconds=None means open-ended."""

    name: str
    start_seconds: float
    end_seconds: float | None
    min_duration: float
    max_duration: float
    avg_duration: float
    purpose: str


@dataclass(frozen=True)
class SceneAllocation:
    segment: TimingSegment
    segment_duration: float
    scene_count: int
    cumulative_start: float
    cumulative_end: float


@dataclass(frozen=True)
class TimingPlan:
    total_duration: float
    allocations: tuple[SceneAllocation, ...]
    total_scenes: int

    @property
    def prompt_guidance(self) -> str:
        return generate_prompt_guidance(self.allocations, self.total_duration)

    def to_dict(self) -> dict:
        return {
            "total_duration": self.total_duration,
            "total_scenes": self.total_scenes,
            "segments": [_allocation_to_dict(a) for a in self.allocations],
        }


@dataclass(frozen=True)
class SegmentChunk:
    chunk_index: int
    allocations: tuple[SceneAllocation, ...]
    total_scenes: int
    start_scene_number: int
    end_scene_number: int

    def prompt_guidance(self, total_duration: float) -> str:
        """Guidance for generating just this chunk's scenes."""
        return generate_prompt_guidance(
            self.allocations,
            total_duration,
            scene_range=(self.start_scene_number, self.end_scene_number),
        )

    def to_dict(self) -> dict:
        return {
            "chunk_index": self.chunk_index,
            "total_scenes": self.total_scenes,
            "start_scene_number": self.start_scene_number,
            "end_scene_number": self.end_scene_number,
            "segments": [a.segment.name for a in self.allocations],
        }


# Ordered, non-overlapping. Only the last segment may be open-ended.
SCENE_TIMING_SEGMENTS: tuple[TimingSegment, ...] = (
    TimingSegment("hook", 0, 60, 1.5, 2.5, 2.0,
                  "Fast cuts to grab attention. Action-first visuals."),
    TimingSegment("setup", 60, 240, 3, 5, 4.0,
                  "Establish geography, key figures and the stakes."),
    TimingSegment("core_content", 240, 900, 5, 8, 6.5,
                  "Main narrative beats at standard pacing."),
    TimingSegment("deep_dive", 900, 1800, 6, 10, 8.0,
                  "Detailed analysis of tactics, people and turning points."),
    TimingSegment("long_tail", 1800, None, 8, 12, 10.0,
                  "Reflective, legacy-focused closing material."),
)

PACING_RULES = {
    "hook": "Maximum 1-2 sentences per script_snippet. High energy, action-focused.",
    "setup": "2-4 sentences. Establish geography and key figures.",
    "core_content": "3-5 sentences. Main narrative beats.",
    "deep_dive": "5-8 sentences. Detailed analysis.",
    "long_tail": "6-10 sentences. Reflective, legacy-focused.",
}


def calculate_scene_timing_plan(
    duration_seconds: float,
    segments: tuple[TimingSegment, ...] = SCENE_TIMING_SEGMENTS,
) -> TimingPlan:
    """
    Allocate scenes to every pacing segment that falls inside the video.

    Segments starting at or after the end of the video are dropped; the last
    segment that overlaps it is clipped, and an open-ended segment absorbs
    whatever remains.

    Args:
        duration_seconds: Total narration duration
        segments: Ordered segment table (defaults to SCENE_TIMING_SEGMENTS)

    Returns:
        TimingPlan with ascending allocations and their scene total

    Raises:
        InvalidDurationError: duration is zero, negative or not finite
    """
    if duration_seconds is None or not math.isfinite(duration_seconds) or duration_seconds <= 0:
        raise InvalidDurationError(f"Duration must be a positive number of seconds, got {duration_seconds!r}")

    allocations = []
    total_scenes = 0
    for segment in segments:
        if segment.start_seconds >= duration_seconds:
            continue
        if segment.end_seconds is None:
            segment_end = duration_seconds
        else:
            segment_end = min(segment.end_seconds, duration_seconds)
        segment_duration = segment_end - segment.start_seconds
        if segment_duration <= 0:
            continue

        scene_count = max(1, round_half_up(segment_duration / segment.avg_duration))
        allocations.append(SceneAllocation(
            segment=segment,
            segment_duration=segment_duration,
            scene_count=scene_count,
            cumulative_start=segment.start_seconds,
            cumulative_end=segment_end,
        ))
        total_scenes += scene_count

    return TimingPlan(
        total_duration=duration_seconds,
        allocations=tuple(allocations),
        total_scenes=total_scenes,
    )


def chunk_segments_by_scene_count(
    plan: TimingPlan,
    max_scenes_per_chunk: int = DEFAULT_MAX_SCENES_PER_CHUNK,
) -> list[SegmentChunk]:
    """
    Group a plan's allocations into chunks of at most max_scenes_per_chunk scenes.

    Packing is greedy and in order. An allocation is never split: one whose own
    scene count is above the ceiling gets a chunk to itself. Scene numbers run
    contiguously across chunks, starting at 1.
    """
    if max_scenes_per_chunk < 1:
        raise ValueError(f"max_scenes_per_chunk must be >= 1, got {max_scenes_per_chunk}")

    chunks: list[SegmentChunk] = []
    current: list[SceneAllocation] = []
    current_count = 0
    next_scene_number = 1

    def close_chunk():
        nonlocal next_scene_number
        chunks.append(SegmentChunk(
            chunk_index=len(chunks),
            allocations=tuple(current),
            total_scenes=current_count,
            start_scene_number=next_scene_number,
            end_scene_number=next_scene_number + current_count - 1,
        ))
        next_scene_number += current_count

    for allocation in plan.allocations:
        if current and current_count + allocation.scene_count > max_scenes_per_chunk:
            close_chunk()
            current = []
            current_count = 0
        current.append(allocation)
        current_count += allocation.scene_count

    if current:
        close_chunk()

    return chunks


def generate_prompt_guidance(
    allocations: tuple[SceneAllocation, ...] | list[SceneAllocation],
    total_duration: float,
    scene_range: tuple[int, int] | None = None,
) -> str:
    """Format the pacing breakdown as a text block for a scene-breakdown prompt."""
    lines = [
        "## VARIABLE SCENE PACING REQUIREMENTS",
        "",
        f"**Total video duration:** {format_time(total_duration)} ({_format_number(total_duration)} seconds)",
        "",
    ]
    if scene_range is not None:
        start, end = scene_range
        lines.append(f"**Scene numbers for this section:** {start} - {end} ({end - start + 1} scenes)")
        lines.append("")
    lines.append("**CRITICAL: Distribute scenes according to this timing breakdown:**")
    lines.append("")

    for allocation in allocations:
        segment = allocation.segment
        lines.append(
            f"### {segment.name.upper()} "
            f"({format_time(allocation.cumulative_start)} - {format_time(allocation.cumulative_end)})"
        )
        lines.append(f"- **Purpose:** {segment.purpose}")
        lines.append(f"- **Target scene count:** {allocation.scene_count} scenes")
        lines.append(
            f"- **Scene duration range:** {_format_number(segment.min_duration)} - "
            f"{_format_number(segment.max_duration)} seconds"
        )
        lines.append(f"- **Segment duration:** {round_half_up(allocation.segment_duration)} seconds")
        lines.append("")

    names = ", ".join(f'"{a.segment.name}"' for a in allocations)
    lines.append("**MANDATORY FIELDS FOR EACH SCENE:**")
    lines.append(f'- "segment": One of {names}')
    lines.append('- "suggested_duration": Number between min and max for that segment')
    lines.append("")
    lines.append("**PACING RULES:**")
    for allocation in allocations:
        rule = PACING_RULES.get(allocation.segment.name)
        if rule:
            lines.append(f"- {allocation.segment.name.upper()} scenes: {rule}")

    return "\n".join(lines)


def format_time(seconds: float) -> str:
    """Format seconds as M:SS, or H:MM:SS from one hour up."""
    seconds = max(0, seconds)
    hrs = int(seconds // 3600)
    mins = int((seconds % 3600) // 60)
    secs = int(seconds % 60)
    if hrs > 0:
        return f"{hrs}:{mins:02d}:{secs:02d}"
    return f"{mins}:{secs:02d}"


def get_segment_for_timestamp(
    timestamp_seconds: float,
    duration_seconds: float,
    segments: tuple[TimingSegment, ...] = SCENE_TIMING_SEGMENTS,
) -> TimingSegment | None:
    """Segment that covers a timestamp within a video of the given length."""
    for segment in segments:
        if segment.start_seconds > duration_seconds:
            continue
        if segment.end_seconds is None:
            segment_end = duration_seconds
        else:
            segment_end = min(segment.end_seconds, duration_seconds)
        if segment.start_seconds <= timestamp_seconds < segment_end:
            return segment
    return None


def get_suggested_scene_duration(segment_name: str) -> float:
    for segment in SCENE_TIMING_SEGMENTS:
        if segment.name == segment_name:
            return segment.avg_duration
    return DEFAULT_SCENE_DURATION


def _format_number(value: float) -> str:
    """1.5 -> '1.5', 3.0 -> '3'."""
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def _allocation_to_dict(allocation: SceneAllocation) -> dict:
    return {
        "segment": allocation.segment.name,
        "scene_count": allocation.scene_count,
        "segment_duration": allocation.segment_duration,
        "start": allocation.cumulative_start,
        "end": allocation.cumulative_end,
        "min_scene_duration": allocation.segment.min_duration,
        "max_scene_duration": allocation.segment.max_duration,
    }
