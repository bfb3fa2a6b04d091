"""
Async provider handles for text and image generation.
Dispatches to OpenAI or Google (Gemini) based on .env TEXT_PROVIDER / IMAGE_PROVIDER.

Handles are plain objects: build one per capability and pass it to whatever
needs it (NarrativeSynthesizer, storyboard flows). Tests pass fakes with the
same generate() signature instead.

.env variables (defaults to OpenAI):
  TEXT_PROVIDER      - "openai" or "google" (default: openai)
  TEXT_MODEL_OPENAI  - OpenAI chat model (default: gpt-5.2)
  TEXT_MODEL_GOOGLE  - Gemini model (default: gemini-2.0-flash)
  IMAGE_PROVIDER     - "openai" or "google" (default: openai)
  IMAGE_MODEL_OPENAI - OpenAI image model (default: gpt-image-1.5)
  IMAGE_MODEL_GOOGLE - Google image-capable model (default: gemini-2.0-flash-exp)
  OPENAI_API_KEY     - Required for OpenAI text/images
  GOOGLE_API_KEY     - Required for Google (Gemini) text/images (GEMINI_API_KEY also supported)
"""

import os
import base64
from pathlib import Path
from typing import Any

from config import (
    TEXT_PROVIDER,
    TEXT_MODEL_OPENAI,
    TEXT_MODEL_GOOGLE,
    IMAGE_PROVIDER,
    IMAGE_MODEL_OPENAI,
    IMAGE_MODEL_GOOGLE,
)

SUPPORTED_PROVIDERS = ("openai", "google")

# Aspect ratio -> OpenAI image size
ASPECT_RATIO_SIZES = {
    "16:9": "1536x1024",
    "4:3": "1536x1024",
    "1:1": "1024x1024",
    "3:4": "1024x1536",
    "9:16": "1024x1536",
}


def get_text_model_display(provider: str | None = None) -> str:
    """Return a short string for logging: provider / model (e.g. 'openai / gpt-5.2')."""
    prov = (provider or TEXT_PROVIDER).lower()
    model = TEXT_MODEL_OPENAI if prov == "openai" else TEXT_MODEL_GOOGLE
    return f"{prov} / {model}"


def _check_provider(prov: str, env_name: str) -> str:
    prov = prov.lower()
    if prov not in SUPPORTED_PROVIDERS:
        raise ValueError(
            f"{env_name} must be 'openai' or 'google'. Got: {prov}. "
            f"Set {env_name} in .env or pass provider=."
        )
    return prov


def _openai_key() -> str:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise ValueError("OPENAI_API_KEY is not set. Set it in .env for OpenAI.")
    return api_key


def _google_key() -> str:
    api_key = os.getenv("GOOGLE_API_KEY") or os.getenv("GEMINI_API_KEY")
    if not api_key:
        raise ValueError(
            "GOOGLE_API_KEY or GEMINI_API_KEY is not set. Set one in .env for Google (Gemini). "
            "You can create an API key in Google AI Studio."
        )
    return api_key


def _gemini_text(response: Any) -> str:
    """Pull text from a Gemini response; '' when the model returned nothing."""
    if not response:
        return ""
    text = getattr(response, "text", None) or ""
    if not text and getattr(response, "candidates", None):
        c0 = response.candidates[0]
        if getattr(c0, "content", None) and getattr(c0.content, "parts", None):
            text = getattr(c0.content.parts[0], "text", None) or ""
    return text


class TextGenerator:
    """Text generation handle: (system prompt, user prompt, temperature, max tokens) -> text."""

    def __init__(self, provider: str | None = None, model: str | None = None):
        self.provider = _check_provider(provider or TEXT_PROVIDER, "TEXT_PROVIDER")
        if model:
            self.model = model
        else:
            self.model = TEXT_MODEL_OPENAI if self.provider == "openai" else TEXT_MODEL_GOOGLE
        self._client = None

    def _get_client(self):
        if self._client is None:
            if self.provider == "openai":
                from openai import AsyncOpenAI
                self._client = AsyncOpenAI(api_key=_openai_key())
            else:
                from google import genai
                self._client = genai.Client(api_key=_google_key())
        return self._client

    async def generate(
        self,
        system_prompt: str,
        prompt: str,
        temperature: float = 0.7,
        max_tokens: int = 4096,
    ) -> str:
        """
        Generate text. May return an empty string; callers decide whether that is fatal.

        Args:
            system_prompt: System directive (role, rules)
            prompt: User prompt
            temperature: Sampling temperature
            max_tokens: Upper bound on output tokens

        Returns:
            The reply as a single string.
        """
        client = self._get_client()
        if self.provider == "openai":
            messages = []
            if system_prompt:
                messages.append({"role": "system", "content": system_prompt})
            messages.append({"role": "user", "content": prompt})
            response = await client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_completion_tokens=max_tokens,
            )
            return response.choices[0].message.content or ""

        from google.genai import types
        config = types.GenerateContentConfig(
            system_instruction=system_prompt or None,
            temperature=temperature,
            max_output_tokens=max_tokens,
        )
        response = await client.aio.models.generate_content(
            model=self.model,
            contents=prompt,
            config=config,
        )
        return _gemini_text(response)


def _compose_image_prompt(prompt: str, negative_prompt: str | None, aspect_ratio: str | None, provider: str) -> str:
    """Neither provider takes a negative prompt field, so constraints go into the prompt text."""
    parts = [prompt.rstrip()]
    if provider == "google" and aspect_ratio:
        parts.append(f"Aspect ratio: {aspect_ratio}.")
    if negative_prompt:
        parts.append(f"AVOID: {negative_prompt}")
    return "\n\n".join(parts)


def _write_image(img_bytes: bytes, output_path: Path | None) -> bytes | Path:
    if output_path is None:
        return img_bytes
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(img_bytes)
    return output_path


class ImageGenerator:
    """Image generation handle: (prompt, negative constraints, aspect ratio) -> saved image path."""

    def __init__(self, provider: str | None = None, model: str | None = None, **request_kwargs: Any):
        self.provider = _check_provider(provider or IMAGE_PROVIDER, "IMAGE_PROVIDER")
        if model:
            self.model = model
        else:
            self.model = IMAGE_MODEL_OPENAI if self.provider == "openai" else IMAGE_MODEL_GOOGLE
        self.request_kwargs = request_kwargs
        if self.provider == "openai" and not self.model.lower().startswith("dall-e-"):
            self.request_kwargs.setdefault("moderation", "low")
        self._client = None

    def _get_client(self):
        if self._client is None:
            if self.provider == "openai":
                from openai import AsyncOpenAI
                self._client = AsyncOpenAI(api_key=_openai_key())
            else:
                from google import genai
                self._client = genai.Client(api_key=_google_key())
        return self._client

    async def generate(
        self,
        prompt: str,
        negative_prompt: str | None = None,
        aspect_ratio: str = "16:9",
        output_path: Path | str | None = None,
    ) -> bytes | Path:
        """
        Generate one image.

        Returns:
            Path if output_path was set, else raw image bytes.
        """
        client = self._get_client()
        full_prompt = _compose_image_prompt(prompt, negative_prompt, aspect_ratio, self.provider)
        path = Path(output_path) if output_path else None

        if self.provider == "openai":
            req: dict[str, Any] = {
                "model": self.model,
                "prompt": full_prompt,
                "size": ASPECT_RATIO_SIZES.get(aspect_ratio, "1024x1024"),
                "n": 1,
                **self.request_kwargs,
            }
            # response_format is only accepted by dall-e models; GPT image models always return base64
            if self.model.lower().startswith("dall-e-"):
                req["response_format"] = "b64_json"
            resp = await client.images.generate(**req)
            b64_data = getattr(resp.data[0], "b64_json", None)
            if not b64_data:
                raise RuntimeError("OpenAI image response had no b64_json")
            return _write_image(base64.b64decode(b64_data), path)

        response = await client.aio.models.generate_content(
            model=self.model,
            contents=full_prompt,
        )
        img_bytes = None
        if getattr(response, "candidates", None):
            c0 = response.candidates[0]
            if getattr(c0, "content", None) and getattr(c0.content, "parts", None):
                for part in c0.content.parts:
                    inline = getattr(part, "inline_data", None)
                    if inline and getattr(inline, "data", None):
                        img_bytes = inline.data
                        break
        if not img_bytes:
            raise RuntimeError(
                "Google image model did not return image data. "
                "Set IMAGE_MODEL_GOOGLE to an image-capable model (e.g. gemini-2.0-flash-exp) or use IMAGE_PROVIDER=openai."
            )
        return _write_image(img_bytes, path)
