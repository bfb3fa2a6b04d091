"""
Unit tests for build_storyboard.py: image requests and the scene/portrait flows.
A fake image generator stands in for the provider.
"""

import json
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent.parent))

import build_storyboard
from asset_orchestrator import TaskStatus
from build_storyboard import (
    ImageRequest,
    StoryboardTextError,
    build_portrait_request,
    build_scene_image_request,
    generate_art_style,
    generate_character_portraits,
    generate_scene_images,
    identify_characters,
    retry_failed,
    storyboard_manifest,
)
from prompt_builders import (
    MAP_STYLE_SUFFIX,
    NEGATIVE_PROMPT_MAP,
    NEGATIVE_PROMPT_PORTRAIT,
    NEGATIVE_PROMPT_SCENE,
    SCENE_STYLE_SUFFIX,
)

SCENES = [
    {"scene_number": 1, "visual_prompt": "Roman legions advance across a dusty plain", "shot_type": "Wide Shot"},
    {"scene_number": 2, "visual_prompt": "Map of Cannae with troop positions", "scene_type": "map"},
    {"scene_number": 3, "visual_prompt": "Hannibal watches from a ridge", "shot_type": "Close-up"},
]

CHARACTERS = [
    {"name": "Hannibal Barca", "role": "Carthaginian general", "visual_description": "One-eyed, dark beard, bronze cuirass"},
    {"name": "Varro", "visual_description": "Clean-shaven consul in a red cloak"},
]


class FakeImageGenerator:
    def __init__(self, fail_prompts=()):
        self.fail_prompts = list(fail_prompts)
        self.calls = []

    async def generate(self, prompt, negative_prompt=None, aspect_ratio="16:9", output_path=None):
        self.calls.append({"prompt": prompt, "negative_prompt": negative_prompt,
                           "aspect_ratio": aspect_ratio, "output_path": output_path})
        if any(fragment in prompt for fragment in self.fail_prompts):
            raise RuntimeError("content policy violation")
        return output_path


class FakeTextGenerator:
    """Returns queued responses in order; an Exception in the queue is raised instead."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    async def generate(self, system_prompt, prompt, temperature=0.7, max_tokens=4000):
        self.calls.append({"system_prompt": system_prompt, "prompt": prompt,
                           "temperature": temperature, "max_tokens": max_tokens})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


SCRIPT_TEXT = (
    "Hannibal Barca waits behind his Gallic centre. Across the plain, the consul Varro "
    "orders eight legions forward. Historian Adrian Goldsworthy calls it a perfect trap."
)

IDENTIFIED = json.dumps({
    "characters": [
        {"name": "Hannibal Barca", "role": "Carthaginian general", "description": "Commander.",
         "notable_actions": ["Springs the trap"], "visual_description": "One-eyed, dark beard",
         "historical_period_appearance": "Bronze cuirass, red cloak", "prominence": "primary"},
        {"name": "Varro", "role": "Roman consul", "visual_description": "Clean-shaven, red cloak",
         "notable_actions": "Orders the advance", "prominence": "leading"},
    ],
    "total_characters": 2,
})

ART_STYLE = "Neoclassical oil painting in the style of Jacques-Louis David, warm crimson and bronze palette."


class TestBuildSceneImageRequest(unittest.TestCase):

    def test_visual_scene_gets_shot_prefix_and_style(self):
        req = build_scene_image_request(SCENES[0])
        self.assertTrue(req.prompt.startswith("Wide Shot: Roman legions advance"))
        self.assertTrue(req.prompt.endswith(SCENE_STYLE_SUFFIX))
        self.assertEqual(req.negative_prompt, NEGATIVE_PROMPT_SCENE)
        self.assertEqual(req.aspect_ratio, "16:9")

    def test_map_scene_uses_map_style_and_no_shot_prefix(self):
        scene = dict(SCENES[1], shot_type="Wide Shot")
        req = build_scene_image_request(scene, character_refs=CHARACTERS)
        self.assertEqual(req.prompt, "Map of Cannae with troop positions" + MAP_STYLE_SUFFIX)
        self.assertEqual(req.negative_prompt, NEGATIVE_PROMPT_MAP)

    def test_art_style_replaces_default_style(self):
        req = build_scene_image_request(SCENES[2], art_style="Fresco painting, muted ochre palette")
        self.assertIn("STYLE: Fresco painting, muted ochre palette", req.prompt)
        self.assertNotIn(SCENE_STYLE_SUFFIX, req.prompt)

    def test_character_consistency_block(self):
        refs = CHARACTERS + [{"name": "Nameless", "visual_description": ""}]
        req = build_scene_image_request(SCENES[2], character_refs=refs)
        self.assertIn("CHARACTER CONSISTENCY", req.prompt)
        self.assertIn("- Hannibal Barca: One-eyed, dark beard, bronze cuirass", req.prompt)
        self.assertNotIn("Nameless", req.prompt)

    def test_prompt_override_wins(self):
        req = build_scene_image_request(SCENES[0], prompt_override="My own prompt", character_refs=CHARACTERS)
        self.assertEqual(req.prompt, "My own prompt")
        self.assertEqual(req.negative_prompt, NEGATIVE_PROMPT_SCENE)

    def test_missing_visual_prompt(self):
        req = build_scene_image_request({"scene_number": 9})
        self.assertTrue(req.prompt.startswith("Historical scene"))


class TestBuildPortraitRequest(unittest.TestCase):

    def test_portrait(self):
        req = build_portrait_request(CHARACTERS[0], Path("out/portrait.png"))
        self.assertTrue(req.prompt.startswith("Historical portrait of Hannibal Barca, Carthaginian general."))
        self.assertIn("One-eyed, dark beard", req.prompt)
        self.assertEqual(req.negative_prompt, NEGATIVE_PROMPT_PORTRAIT)
        self.assertEqual(req.aspect_ratio, "3:4")
        self.assertEqual(req.output_path, Path("out/portrait.png"))


@patch("build_storyboard.print")
@patch("asset_orchestrator.print")
class TestStoryboardFlows(unittest.IsolatedAsyncioTestCase):

    async def test_generate_scene_images(self, mock_assets_print, mock_print):
        gen = FakeImageGenerator()
        orch = await generate_scene_images(SCENES, gen, Path("out"), window_size=2)

        self.assertEqual([t.key for t in orch.tasks], [1, 2, 3])
        self.assertTrue(all(t.status is TaskStatus.COMPLETED for t in orch.tasks))
        self.assertEqual(orch.get_task(1).result, Path("out") / "scene_001.png")
        self.assertEqual(len(gen.calls), 3)
        self.assertEqual(orch.window_size, 2)

    async def test_failed_scene_then_retry(self, mock_assets_print, mock_print):
        gen = FakeImageGenerator(fail_prompts=["Hannibal watches"])
        orch = await generate_scene_images(SCENES, gen, Path("out"))

        self.assertEqual(orch.failed_keys(), [3])
        self.assertEqual(orch.get_task(3).error, "content policy violation")

        gen.fail_prompts = []
        report = await retry_failed(orch)
        self.assertEqual(report.completed, 1)
        self.assertEqual(orch.failed_keys(), [])
        self.assertEqual(len(gen.calls), 4)

    async def test_generate_character_portraits(self, mock_assets_print, mock_print):
        gen = FakeImageGenerator()
        orch = await generate_character_portraits(CHARACTERS, gen, Path("portraits"))

        self.assertEqual([t.key for t in orch.tasks], ["Hannibal Barca", "Varro"])
        self.assertEqual(orch.get_task("Varro").result, Path("portraits") / "portrait_varro.png")
        self.assertTrue(all(c["aspect_ratio"] == "3:4" for c in gen.calls))

    async def test_duplicate_scene_numbers_rejected(self, mock_assets_print, mock_print):
        with self.assertRaises(ValueError):
            await generate_scene_images([SCENES[0], SCENES[0]], FakeImageGenerator(), Path("out"))

    async def test_manifest(self, mock_assets_print, mock_print):
        gen = FakeImageGenerator(fail_prompts=["Map of Cannae"])
        orch = await generate_scene_images(SCENES, gen, Path("out"))
        manifest = json.loads(json.dumps(storyboard_manifest(orch)))

        self.assertEqual([m["key"] for m in manifest], [1, 2, 3])
        self.assertEqual(manifest[1]["status"], "failed")
        self.assertEqual(manifest[1]["error_kind"], "error")
        self.assertEqual(manifest[0]["status"], "completed")
        self.assertEqual(manifest[0]["result"], str(Path("out") / "scene_001.png"))
        self.assertEqual(manifest[0]["aspect_ratio"], "16:9")


class TestStoryboardTextCalls(unittest.IsolatedAsyncioTestCase):

    async def test_identify_characters(self):
        gen = FakeTextGenerator([f"Here are the figures:\n```json\n{IDENTIFIED}\n```"])
        characters = await identify_characters(SCRIPT_TEXT, gen, era="roman republic")

        self.assertEqual([c["name"] for c in characters], ["Hannibal Barca", "Varro"])
        self.assertEqual(characters[0]["prominence"], "primary")
        self.assertEqual(characters[1]["prominence"], "secondary")
        self.assertEqual(characters[1]["notable_actions"], ["Orders the advance"])
        self.assertEqual(characters[1]["historical_period_appearance"], "")
        self.assertEqual(gen.calls[0]["temperature"], 0.1)
        self.assertIn(SCRIPT_TEXT, gen.calls[0]["prompt"])
        self.assertIn("HISTORICAL ERA: Roman Republic", gen.calls[0]["prompt"])

    async def test_identify_drops_nameless_and_repeated_characters(self):
        raw = {"characters": [{"name": "Varro"}, {"name": " "}, {"role": "consul"}, {"name": "varro"}, "Paullus"]}
        gen = FakeTextGenerator([json.dumps(raw)])
        characters = await identify_characters(SCRIPT_TEXT, gen)
        self.assertEqual([c["name"] for c in characters], ["Varro"])

    async def test_identify_caps_character_count(self):
        raw = {"characters": [{"name": f"Tribune {i}"} for i in range(15)]}
        characters = await identify_characters(SCRIPT_TEXT, FakeTextGenerator([json.dumps(raw)]))
        self.assertEqual(len(characters), 10)
        self.assertEqual(characters[-1]["name"], "Tribune 9")

    async def test_identify_empty_script_makes_no_call(self):
        gen = FakeTextGenerator([])
        self.assertEqual(await identify_characters("  ", gen), [])
        self.assertEqual(gen.calls, [])

    async def test_identify_failures(self):
        cases = {
            "unparseable": "I could not find anyone.",
            "missing list": json.dumps({"figures": []}),
            "empty": "",
            "provider": RuntimeError("rate limited"),
        }
        for label, response in cases.items():
            with self.subTest(label=label):
                with self.assertRaises(StoryboardTextError) as ctx:
                    await identify_characters(SCRIPT_TEXT, FakeTextGenerator([response]))
                self.assertEqual(ctx.exception.phase, "characters")

    async def test_generate_art_style(self):
        gen = FakeTextGenerator([f'  "{ART_STYLE}"\n'])
        style = await generate_art_style("Battle of Cannae", gen, era="Roman Republic")

        self.assertEqual(style, ART_STYLE)
        self.assertEqual(gen.calls[0]["temperature"], 0.8)
        self.assertEqual(gen.calls[0]["max_tokens"], 1000)
        self.assertIn("TITLE: Battle of Cannae", gen.calls[0]["prompt"])

    async def test_art_style_empty_response_raises(self):
        with self.assertRaises(StoryboardTextError) as ctx:
            await generate_art_style("Battle of Cannae", FakeTextGenerator(["   "]))
        self.assertEqual(ctx.exception.phase, "art_style")


class TestStoryboardCli(unittest.TestCase):

    def _run_main(self, tmp, payload, text_generator, image_generator, extra_args=()):
        scenes_file = Path(tmp) / "scenes.json"
        scenes_file.write_text(json.dumps(payload), encoding="utf-8")
        out_dir = Path(tmp) / "board"
        with patch("llm_utils.ImageGenerator", return_value=image_generator), \
                patch("llm_utils.TextGenerator", return_value=text_generator):
            code = build_storyboard.main([str(scenes_file), str(out_dir), *extra_args])
        return code, json.loads((out_dir / "storyboard.json").read_text(encoding="utf-8"))

    @patch("build_storyboard.print")
    @patch("asset_orchestrator.print")
    def test_main_identifies_characters_and_writes_art_style(self, mock_assets_print, mock_print):
        text_gen = FakeTextGenerator([IDENTIFIED, ART_STYLE])
        image_gen = FakeImageGenerator()
        payload = {"scenes": SCENES, "script": SCRIPT_TEXT, "topic": "Battle of Cannae", "era": "Roman Republic"}
        with tempfile.TemporaryDirectory() as tmp:
            code, data = self._run_main(tmp, payload, text_gen, image_gen)

        self.assertEqual(code, 0)
        self.assertEqual([c["name"] for c in data["characters"]], ["Hannibal Barca", "Varro"])
        self.assertEqual([p["key"] for p in data["portraits"]], ["Hannibal Barca", "Varro"])
        self.assertEqual(data["art_style"], ART_STYLE)
        scene_prompt = data["scenes"][0]["prompt"]
        self.assertIn(f"STYLE: {ART_STYLE}", scene_prompt)
        self.assertIn("- Hannibal Barca: One-eyed, dark beard", scene_prompt)
        self.assertEqual(len(text_gen.calls), 2)

    @patch("build_storyboard.print")
    @patch("asset_orchestrator.print")
    def test_main_falls_back_when_text_calls_fail(self, mock_assets_print, mock_print):
        text_gen = FakeTextGenerator(["no json here", RuntimeError("quota exceeded")])
        image_gen = FakeImageGenerator()
        payload = {"scenes": SCENES, "script": SCRIPT_TEXT, "topic": "Battle of Cannae"}
        with tempfile.TemporaryDirectory() as tmp:
            code, data = self._run_main(tmp, payload, text_gen, image_gen)

        self.assertEqual(code, 0)
        self.assertEqual(data["characters"], [])
        self.assertEqual(data["portraits"], [])
        self.assertIsNone(data["art_style"])
        self.assertTrue(data["scenes"][0]["prompt"].endswith(SCENE_STYLE_SUFFIX))

    @patch("build_storyboard.print")
    @patch("asset_orchestrator.print")
    def test_main_reads_script_file(self, mock_assets_print, mock_print):
        text_gen = FakeTextGenerator([IDENTIFIED])
        with tempfile.TemporaryDirectory() as tmp:
            script_file = Path(tmp) / "cannae_script.json"
            script_file.write_text(json.dumps({"topic": "Battle of Cannae", "full_script": SCRIPT_TEXT}),
                                   encoding="utf-8")
            code, data = self._run_main(tmp, {"scenes": SCENES}, text_gen, FakeImageGenerator(),
                                        ["--script-file", str(script_file), "--art-style", "Fresco"])

        self.assertEqual(code, 0)
        self.assertEqual(len(data["characters"]), 2)
        self.assertEqual(data["art_style"], "Fresco")
        self.assertEqual(len(text_gen.calls), 1)
        self.assertIn(SCRIPT_TEXT, text_gen.calls[0]["prompt"])

    @patch("build_storyboard.print")
    @patch("asset_orchestrator.print")
    def test_supplied_characters_skip_identification(self, mock_assets_print, mock_print):
        text_gen = FakeTextGenerator([])
        payload = {"scenes": SCENES, "characters": [], "script": SCRIPT_TEXT}
        with tempfile.TemporaryDirectory() as tmp:
            code, data = self._run_main(tmp, payload, text_gen, FakeImageGenerator())

        self.assertEqual(code, 0)
        self.assertEqual(text_gen.calls, [])
        self.assertEqual(data["portraits"], [])

    @patch("build_storyboard.print")
    @patch("asset_orchestrator.print")
    def test_main_writes_manifest(self, mock_assets_print, mock_print):
        gen = FakeImageGenerator(fail_prompts=["Hannibal watches"])
        with tempfile.TemporaryDirectory() as tmp:
            scenes_file = Path(tmp) / "scenes.json"
            scenes_file.write_text(json.dumps({"scenes": SCENES, "characters": CHARACTERS}), encoding="utf-8")
            out_dir = Path(tmp) / "board"
            with patch("llm_utils.ImageGenerator", return_value=gen):
                code = build_storyboard.main([str(scenes_file), str(out_dir), "--window-size", "2"])
            data = json.loads((out_dir / "storyboard.json").read_text(encoding="utf-8"))

        self.assertEqual(code, 1)
        self.assertEqual(len(data["portraits"]), 2)
        self.assertEqual([s["status"] for s in data["scenes"]], ["completed", "completed", "failed"])
        self.assertEqual(data["progress"], {"completed": 2, "total": 3, "percent": 66.7})

    def test_load_storyboard_input_rejects_bad_shape(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "bad.json"
            path.write_text(json.dumps({"items": []}), encoding="utf-8")
            with self.assertRaises(ValueError):
                build_storyboard.load_storyboard_input(path)

    def test_image_request_defaults(self):
        req = ImageRequest(prompt="p")
        self.assertEqual(req.aspect_ratio, "16:9")
        self.assertIsNone(req.output_path)


if __name__ == "__main__":
    unittest.main()
