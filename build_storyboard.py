"""
Storyboard image generation: one image per scene and one portrait per recurring
character, dispatched through the AssetOrchestrator.

When the input carries no character list, characters are identified from the
script text; when no art style is given, one is written for the topic. Both are
text calls and both fall back quietly (no portraits, default scene style).

Usage:
    python build_storyboard.py scenes.json storyboard/ [--window-size 20] [--retry-failed]
    python build_storyboard.py scenes.json storyboard/ --script-file scripts/cannae_script.json --era "Roman Republic"

scenes.json is either a list of scenes or an object:
    {"scenes": [...], "characters": [...], "script": "...", "topic": "...", "era": "...", "art_style": "..."}
Each scene: {"scene_number", "visual_prompt", "scene_type" ("visual" | "map"), "shot_type"}.
"""
import argparse
import asyncio
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from config import Config
from build_scripts_utils import JsonExtractionError, extract_json_object
from asset_orchestrator import AssetOrchestrator, GenerationTask, OrchestrationReport, Progress
from prompt_builders import (
    MAP_STYLE_SUFFIX,
    MAX_IDENTIFIED_CHARACTERS,
    NEGATIVE_PROMPT_MAP,
    NEGATIVE_PROMPT_PORTRAIT,
    NEGATIVE_PROMPT_SCENE,
    SCENE_STYLE_SUFFIX,
    STORYBOARD_SYSTEM_PROMPT,
    build_art_style_prompt,
    build_character_context,
    build_character_identification_prompt,
    build_portrait_prompt,
    normalize_era,
)
from utils import read_json, safe_filename, write_json

SCENE_ASPECT_RATIO = "16:9"
PORTRAIT_ASPECT_RATIO = "3:4"


@dataclass(frozen=True)
class ImageRequest:
    prompt: str
    negative_prompt: Optional[str] = None
    aspect_ratio: str = SCENE_ASPECT_RATIO
    output_path: Optional[Path] = None


def build_scene_image_request(
    scene: dict,
    art_style: Optional[str] = None,
    character_refs: Optional[list[dict]] = None,
    prompt_override: Optional[str] = None,
    output_path: Optional[Path] = None,
) -> ImageRequest:
    """
    Build the image request for one scene.

    Map scenes get the cartography style and map negatives; visual scenes get
    their shot type as a prefix, the art style (or the default scene style) and,
    when characters are known, a consistency block. A prompt_override replaces
    the whole prompt text but keeps the scene's negative prompt.
    """
    is_map = scene.get("scene_type") == "map"
    negative = NEGATIVE_PROMPT_MAP if is_map else NEGATIVE_PROMPT_SCENE

    if prompt_override:
        prompt = prompt_override
    else:
        base = scene.get("visual_prompt") or "Historical scene"
        if is_map:
            prompt = f"{base}{MAP_STYLE_SUFFIX}"
        else:
            shot_prefix = f"{scene['shot_type']}: " if scene.get("shot_type") else ""
            style = f"\n\nSTYLE: {art_style.strip()}" if art_style and art_style.strip() else SCENE_STYLE_SUFFIX
            refs = [r for r in (character_refs or []) if r.get("name") and r.get("visual_description")]
            prompt = f"{shot_prefix}{base}{style}{build_character_context(refs)}"

    return ImageRequest(
        prompt=prompt,
        negative_prompt=negative,
        aspect_ratio=SCENE_ASPECT_RATIO,
        output_path=Path(output_path) if output_path else None,
    )


def build_portrait_request(character: dict, output_path: Optional[Path] = None) -> ImageRequest:
    return ImageRequest(
        prompt=build_portrait_prompt(character),
        negative_prompt=NEGATIVE_PROMPT_PORTRAIT,
        aspect_ratio=PORTRAIT_ASPECT_RATIO,
        output_path=Path(output_path) if output_path else None,
    )


class StoryboardTextError(Exception):
    """A text call made for the storyboard (characters, art style) failed or returned nothing usable."""

    def __init__(self, message, phase=None):
        super().__init__(message)
        self.phase = phase

    def __str__(self):
        msg = super().__str__()
        return f"[{self.phase}] {msg}" if self.phase else msg


async def _storyboard_text(text_generator, phase: str, prompt: str, temperature: float, max_tokens: int,
                           timeout: Optional[float] = None) -> str:
    try:
        call = text_generator.generate(
            STORYBOARD_SYSTEM_PROMPT, prompt, temperature=temperature, max_tokens=max_tokens
        )
        text = await asyncio.wait_for(call, timeout=timeout) if timeout is not None else await call
    except asyncio.TimeoutError as e:
        raise StoryboardTextError(f"Timed out after {timeout}s", phase) from e
    except Exception as e:
        raise StoryboardTextError(f"Text generation failed: {e}", phase) from e
    if not text or not text.strip():
        raise StoryboardTextError("Empty response", phase)
    return text


def _as_text_list(value) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if str(v).strip()]


def _normalize_character(raw: dict) -> Optional[dict]:
    name = raw.get("name")
    if not isinstance(name, str) or not name.strip():
        return None
    prominence = raw.get("prominence")
    return {
        "name": name.strip(),
        "role": str(raw.get("role") or "").strip(),
        "description": str(raw.get("description") or "").strip(),
        "notable_actions": _as_text_list(raw.get("notable_actions")),
        "visual_description": str(raw.get("visual_description") or "").strip(),
        "historical_period_appearance": str(raw.get("historical_period_appearance") or "").strip(),
        "prominence": prominence if prominence in ("primary", "secondary") else "secondary",
    }


async def identify_characters(
    script: str,
    text_generator,
    era: Optional[str] = None,
    timeout: Optional[float] = None,
) -> list[dict]:
    """
    Ask the text model for the historical figures named in a script.

    Entries without a name are dropped, repeated names (case-insensitive) keep
    their first entry, and at most MAX_IDENTIFIED_CHARACTERS are returned in the
    model's order.

    Raises:
        StoryboardTextError: The call failed, or the response has no characters list
    """
    if not script or not script.strip():
        return []
    text = await _storyboard_text(
        text_generator, "characters", build_character_identification_prompt(script, normalize_era(era)),
        temperature=0.1, max_tokens=8000, timeout=timeout,
    )
    try:
        data = extract_json_object(text)
    except JsonExtractionError as e:
        raise StoryboardTextError(f"Could not parse character list: {e}", "characters") from e
    raw_characters = data.get("characters")
    if not isinstance(raw_characters, list):
        raise StoryboardTextError("Response has no 'characters' list", "characters")

    characters = []
    seen = set()
    for raw in raw_characters:
        character = _normalize_character(raw) if isinstance(raw, dict) else None
        if character is None or character["name"].lower() in seen:
            continue
        seen.add(character["name"].lower())
        characters.append(character)
    return characters[:MAX_IDENTIFIED_CHARACTERS]


async def generate_art_style(
    title: str,
    text_generator,
    era: Optional[str] = None,
    timeout: Optional[float] = None,
) -> str:
    """One paragraph of painting style for the scene prompts, written for the topic and era."""
    text = await _storyboard_text(
        text_generator, "art_style", build_art_style_prompt(title, normalize_era(era)),
        temperature=0.8, max_tokens=1000, timeout=timeout,
    )
    return text.strip().strip('"').strip()


def make_image_worker(image_generator):
    """Adapt an ImageGenerator (or fake) to the orchestrator's worker(request) signature."""
    async def worker(request: ImageRequest):
        return await image_generator.generate(
            prompt=request.prompt,
            negative_prompt=request.negative_prompt,
            aspect_ratio=request.aspect_ratio,
            output_path=request.output_path,
        )
    return worker


def _scene_key(scene: dict, index: int) -> int:
    return scene.get("scene_number", index + 1)


def _scene_filename(key) -> str:
    if isinstance(key, int):
        return f"scene_{key:03d}.png"
    return f"scene_{safe_filename(str(key))}.png"


def build_scene_orchestrator(
    scenes: list[dict],
    image_generator,
    output_dir: Path,
    art_style: Optional[str] = None,
    character_refs: Optional[list[dict]] = None,
    window_size: Optional[int] = None,
    timeout: Optional[float] = None,
    is_alive: Optional[Callable[[], bool]] = None,
    on_progress: Optional[Callable[[Progress], None]] = None,
) -> AssetOrchestrator:
    """One task per scene, keyed by scene number."""
    output_dir = Path(output_dir)
    tasks = []
    for i, scene in enumerate(scenes):
        key = _scene_key(scene, i)
        request = build_scene_image_request(
            scene,
            art_style=art_style,
            character_refs=character_refs,
            prompt_override=scene.get("prompt_override"),
            output_path=output_dir / _scene_filename(key),
        )
        tasks.append(GenerationTask(key=key, request=request))
    return AssetOrchestrator(
        tasks,
        make_image_worker(image_generator),
        window_size=window_size,
        timeout=timeout if timeout is not None else Config().image_timeout_seconds,
        is_alive=is_alive,
        on_progress=on_progress,
    )


async def generate_scene_images(scenes: list[dict], image_generator, output_dir: Path, **kwargs) -> AssetOrchestrator:
    """
    Generate every scene image. Failed scenes stay failed on the returned
    orchestrator; pass it to retry_failed() to re-run them.
    """
    orchestrator = build_scene_orchestrator(scenes, image_generator, output_dir, **kwargs)
    print(f"\n[STORYBOARD] Generating {len(scenes)} scene image(s) (window size {orchestrator.window_size})...")
    report = await orchestrator.run()
    print(f"[STORYBOARD] Scenes: {report.completed} completed, {report.failed} failed in {report.windows} window(s)")
    return orchestrator


async def generate_character_portraits(
    characters: list[dict],
    image_generator,
    output_dir: Path,
    window_size: Optional[int] = None,
    timeout: Optional[float] = None,
    is_alive: Optional[Callable[[], bool]] = None,
) -> AssetOrchestrator:
    """Generate one reference portrait per character, keyed by name."""
    output_dir = Path(output_dir)
    tasks = [
        GenerationTask(
            key=c["name"],
            request=build_portrait_request(c, output_dir / f"portrait_{safe_filename(c['name'])}.png"),
        )
        for c in characters
    ]
    orchestrator = AssetOrchestrator(
        tasks,
        make_image_worker(image_generator),
        window_size=window_size,
        timeout=timeout if timeout is not None else Config().image_timeout_seconds,
        is_alive=is_alive,
    )
    print(f"\n[STORYBOARD] Generating {len(tasks)} character portrait(s)...")
    report = await orchestrator.run()
    print(f"[STORYBOARD] Portraits: {report.completed} completed, {report.failed} failed")
    return orchestrator


async def retry_failed(orchestrator: AssetOrchestrator, keys=None) -> OrchestrationReport:
    """Re-run the tasks that are failed right now (optionally narrowed to `keys`)."""
    report = await orchestrator.resubmit_failed(keys)
    print(f"[STORYBOARD] Retry: {report.completed} recovered, {report.failed} still failing")
    return report


def storyboard_manifest(orchestrator: AssetOrchestrator) -> list[dict]:
    """JSON-ready status of every task, in task order."""
    manifest = []
    for task in orchestrator.tasks:
        entry = task.to_dict()
        entry["prompt"] = task.request.prompt
        entry["negative_prompt"] = task.request.negative_prompt
        entry["aspect_ratio"] = task.request.aspect_ratio
        manifest.append(entry)
    return manifest


@dataclass
class StoryboardInput:
    scenes: list[dict]
    characters: Optional[list[dict]] = None    # None: not supplied, may be identified from the script
    script: str = ""
    topic: str = ""
    era: Optional[str] = None
    art_style: Optional[str] = None


def load_storyboard_input(path: Path) -> StoryboardInput:
    data = read_json(path)
    if isinstance(data, list):
        return StoryboardInput(scenes=data)
    if not isinstance(data, dict) or not isinstance(data.get("scenes"), list):
        raise ValueError(f"{path}: expected a list of scenes or an object with a 'scenes' list")
    characters = data.get("characters")
    return StoryboardInput(
        scenes=data["scenes"],
        characters=characters if isinstance(characters, list) else None,
        script=data.get("script") or data.get("full_script") or "",
        topic=data.get("topic") or data.get("title") or "",
        era=data.get("era"),
        art_style=data.get("art_style"),
    )


def load_script_file(path: Path) -> tuple[str, str]:
    """(script text, topic) from a build_script.py output JSON or a plain text file."""
    path = Path(path)
    if path.suffix.lower() == ".json":
        data = read_json(path)
        if not isinstance(data, dict) or not data.get("full_script"):
            raise ValueError(f"{path}: expected a script JSON with 'full_script'")
        return data["full_script"], data.get("topic") or ""
    return path.read_text(encoding="utf-8"), ""


async def build_storyboard(args) -> dict:
    from llm_utils import ImageGenerator, TextGenerator

    story = load_storyboard_input(Path(args.scenes))
    if args.script_file:
        script, topic = load_script_file(Path(args.script_file))
        story.script = story.script or script
        story.topic = story.topic or topic
    era = args.era or story.era
    output_dir = Path(args.output_dir)
    text_timeout = Config().text_timeout_seconds
    text_generator = None

    characters = story.characters
    if characters is None:
        characters = []
        if story.script and not args.no_identify:
            text_generator = TextGenerator(provider=args.text_provider)
            print("\n[STORYBOARD] Identifying characters from the script...")
            try:
                characters = await identify_characters(story.script, text_generator, era, timeout=text_timeout)
                print(f"[STORYBOARD] Found {len(characters)} character(s): {', '.join(c['name'] for c in characters)}")
            except StoryboardTextError as e:
                print(f"[STORYBOARD] WARNING: character identification failed, continuing without portraits: {e}")

    art_style = args.art_style or story.art_style
    if not art_style and story.topic and not args.default_style:
        text_generator = text_generator or TextGenerator(provider=args.text_provider)
        print(f"\n[STORYBOARD] Writing art style for: {story.topic}")
        try:
            art_style = await generate_art_style(story.topic, text_generator, era, timeout=text_timeout)
        except StoryboardTextError as e:
            print(f"[STORYBOARD] WARNING: art style generation failed, using the default scene style: {e}")

    image_generator = ImageGenerator(provider=args.provider)
    result = {"art_style": art_style, "characters": characters, "scenes": [], "portraits": []}
    if characters and not args.no_portraits:
        portraits = await generate_character_portraits(
            characters, image_generator, output_dir / "portraits", window_size=args.window_size
        )
        if args.retry_failed and portraits.failed_keys():
            await retry_failed(portraits)
        result["portraits"] = storyboard_manifest(portraits)

    orchestrator = await generate_scene_images(
        story.scenes,
        image_generator,
        output_dir,
        art_style=art_style,
        character_refs=characters,
        window_size=args.window_size,
    )
    if args.retry_failed and orchestrator.failed_keys():
        await retry_failed(orchestrator)
    result["scenes"] = storyboard_manifest(orchestrator)
    progress = orchestrator.progress()
    result["progress"] = {"completed": progress.completed, "total": progress.total, "percent": progress.percent}
    return result


def parse_args(argv=None):
    cfg = Config()
    parser = argparse.ArgumentParser(description="Generate storyboard images for a scene list")
    parser.add_argument("scenes", help="Scene list JSON")
    parser.add_argument("output_dir", help="Directory for images and storyboard.json")
    parser.add_argument("--window-size", type=int, default=cfg.window_size,
                        help=f"Max concurrent image requests (default: {cfg.window_size})")
    parser.add_argument("--retry-failed", action="store_true", help="Re-submit failed images once after the first pass")
    parser.add_argument("--art-style", default=None, help="Art style text used instead of a generated one")
    parser.add_argument("--default-style", action="store_true",
                        help="Do not generate an art style; use the default scene style")
    parser.add_argument("--script-file", default=None,
                        help="Script to identify characters from (build_script.py JSON or plain text)")
    parser.add_argument("--era", default=None, help="Historical era, e.g. 'Roman Republic', 'Napoleonic'")
    parser.add_argument("--no-identify", action="store_true", help="Do not identify characters from the script")
    parser.add_argument("--provider", default=None, choices=["openai", "google"], help="Image provider override")
    parser.add_argument("--text-provider", default=None, choices=["openai", "google"],
                        help="Text provider override for character identification and art style")
    parser.add_argument("--no-portraits", action="store_true", help="Skip character portraits")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    result = asyncio.run(build_storyboard(args))
    manifest_path = write_json(Path(args.output_dir) / "storyboard.json", result)
    print(f"[STORYBOARD] Saved: {manifest_path}")
    failed = [s["key"] for s in result["scenes"] if s["status"] == "failed"]
    if failed:
        print(f"[STORYBOARD] {len(failed)} scene(s) still failed: {failed}. Re-run with --retry-failed.")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
