"""
Minimal tests for llm_utils: TextGenerator and ImageGenerator return the expected shape.
Mocks OpenAI/Google clients so tests do not hit real APIs.
"""

import base64
import sys
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch, MagicMock, AsyncMock

sys.path.insert(0, str(Path(__file__).parent.parent))

import llm_utils


def _openai_text_client(content):
    client = MagicMock()
    resp = MagicMock()
    resp.choices = [MagicMock()]
    resp.choices[0].message.content = content
    client.chat.completions.create = AsyncMock(return_value=resp)
    return client


class TestGetTextModelDisplay(unittest.TestCase):

    def test_returns_provider_and_model(self):
        with patch.object(llm_utils, "TEXT_MODEL_OPENAI", "gpt-test"):
            self.assertEqual(llm_utils.get_text_model_display("openai"), "openai / gpt-test")
        with patch.object(llm_utils, "TEXT_MODEL_GOOGLE", "gemini-test"):
            self.assertEqual(llm_utils.get_text_model_display("google"), "google / gemini-test")


class TestProviderSelection(unittest.TestCase):

    def test_unknown_provider_rejected(self):
        with self.assertRaises(ValueError):
            llm_utils.TextGenerator(provider="xai")
        with self.assertRaises(ValueError):
            llm_utils.ImageGenerator(provider="midjourney")

    def test_model_defaults_and_override(self):
        with patch.object(llm_utils, "TEXT_MODEL_GOOGLE", "gemini-test"):
            self.assertEqual(llm_utils.TextGenerator(provider="google").model, "gemini-test")
        self.assertEqual(llm_utils.TextGenerator(provider="openai", model="custom").model, "custom")

    def test_image_moderation_default(self):
        self.assertEqual(llm_utils.ImageGenerator(provider="openai", model="gpt-image-1").request_kwargs,
                         {"moderation": "low"})
        self.assertEqual(llm_utils.ImageGenerator(provider="openai", model="dall-e-3").request_kwargs, {})

    @patch.dict("os.environ", {"OPENAI_API_KEY": ""}, clear=False)
    def test_missing_key_raises_on_first_use(self):
        gen = llm_utils.TextGenerator(provider="openai")
        with self.assertRaises(ValueError):
            gen._get_client()


class TestTextGenerator(unittest.IsolatedAsyncioTestCase):

    @patch.dict("os.environ", {"OPENAI_API_KEY": "sk-test"}, clear=False)
    @patch("openai.AsyncOpenAI")
    async def test_openai_returns_string(self, mock_openai_class):
        client = _openai_text_client("Hello, world.")
        mock_openai_class.return_value = client
        gen = llm_utils.TextGenerator(provider="openai", model="gpt-test")

        result = await gen.generate("You narrate.", "Hi", temperature=0.8, max_tokens=500)

        self.assertEqual(result, "Hello, world.")
        kwargs = client.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs["model"], "gpt-test")
        self.assertEqual(kwargs["max_completion_tokens"], 500)
        self.assertEqual(kwargs["temperature"], 0.8)
        self.assertEqual(kwargs["messages"][0], {"role": "system", "content": "You narrate."})
        self.assertEqual(kwargs["messages"][1], {"role": "user", "content": "Hi"})

    @patch.dict("os.environ", {"OPENAI_API_KEY": "sk-test"}, clear=False)
    @patch("openai.AsyncOpenAI")
    async def test_openai_none_content_is_empty_string(self, mock_openai_class):
        mock_openai_class.return_value = _openai_text_client(None)
        result = await llm_utils.TextGenerator(provider="openai").generate("", "Hi")
        self.assertEqual(result, "")

    @patch.dict("os.environ", {"OPENAI_API_KEY": "sk-test"}, clear=False)
    @patch("openai.AsyncOpenAI")
    async def test_client_created_once(self, mock_openai_class):
        mock_openai_class.return_value = _openai_text_client("x")
        gen = llm_utils.TextGenerator(provider="openai")
        await gen.generate("", "one")
        await gen.generate("", "two")
        mock_openai_class.assert_called_once()

    @patch.dict("os.environ", {"GOOGLE_API_KEY": "g-test"}, clear=False)
    @patch("google.genai.Client")
    async def test_google_returns_string(self, mock_client_class):
        client = MagicMock()
        resp = MagicMock()
        resp.text = "Gemini text."
        client.aio.models.generate_content = AsyncMock(return_value=resp)
        mock_client_class.return_value = client

        result = await llm_utils.TextGenerator(provider="google", model="gemini-test").generate(
            "You narrate.", "Hi", temperature=0.7, max_tokens=6000
        )

        self.assertEqual(result, "Gemini text.")
        kwargs = client.aio.models.generate_content.call_args.kwargs
        self.assertEqual(kwargs["model"], "gemini-test")
        self.assertEqual(kwargs["contents"], "Hi")
        self.assertEqual(kwargs["config"].max_output_tokens, 6000)
        self.assertEqual(kwargs["config"].system_instruction, "You narrate.")


class TestImageGenerator(unittest.IsolatedAsyncioTestCase):

    @patch.dict("os.environ", {"OPENAI_API_KEY": "sk-test"}, clear=False)
    @patch("openai.AsyncOpenAI")
    async def test_openai_writes_file(self, mock_openai_class):
        client = MagicMock()
        resp = MagicMock()
        resp.data = [MagicMock(b64_json=base64.b64encode(b"PNGDATA").decode())]
        client.images.generate = AsyncMock(return_value=resp)
        mock_openai_class.return_value = client
        gen = llm_utils.ImageGenerator(provider="openai", model="gpt-image-1")

        with tempfile.TemporaryDirectory() as tmp:
            out = Path(tmp) / "sub" / "scene.png"
            result = await gen.generate("A legion", negative_prompt="text, watermark",
                                        aspect_ratio="3:4", output_path=out)
            self.assertEqual(result, out)
            self.assertEqual(out.read_bytes(), b"PNGDATA")

        kwargs = client.images.generate.call_args.kwargs
        self.assertEqual(kwargs["size"], "1024x1536")
        self.assertEqual(kwargs["moderation"], "low")
        self.assertNotIn("response_format", kwargs)
        self.assertTrue(kwargs["prompt"].endswith("AVOID: text, watermark"))

    @patch.dict("os.environ", {"OPENAI_API_KEY": "sk-test"}, clear=False)
    @patch("openai.AsyncOpenAI")
    async def test_openai_missing_data_raises(self, mock_openai_class):
        client = MagicMock()
        resp = MagicMock()
        resp.data = [MagicMock(b64_json=None)]
        client.images.generate = AsyncMock(return_value=resp)
        mock_openai_class.return_value = client
        with self.assertRaises(RuntimeError):
            await llm_utils.ImageGenerator(provider="openai").generate("A legion")

    @patch.dict("os.environ", {"GOOGLE_API_KEY": "g-test"}, clear=False)
    @patch("google.genai.Client")
    async def test_google_returns_bytes(self, mock_client_class):
        part = MagicMock()
        part.inline_data.data = b"IMG"
        resp = MagicMock()
        resp.candidates = [MagicMock()]
        resp.candidates[0].content.parts = [part]
        client = MagicMock()
        client.aio.models.generate_content = AsyncMock(return_value=resp)
        mock_client_class.return_value = client

        result = await llm_utils.ImageGenerator(provider="google").generate("A map", aspect_ratio="16:9")

        self.assertEqual(result, b"IMG")
        prompt = client.aio.models.generate_content.call_args.kwargs["contents"]
        self.assertIn("Aspect ratio: 16:9.", prompt)


if __name__ == "__main__":
    unittest.main()
