"""
Configuration settings for script and storyboard generation.
Can be overridden via command line arguments.
"""

import os

from dotenv import load_dotenv

load_dotenv()

# LLM provider and model selection (from .env); used by llm_utils
# TEXT_PROVIDER / IMAGE_PROVIDER: "google" or "openai"
# Default to openai when unset
TEXT_PROVIDER = os.getenv("TEXT_PROVIDER", "openai").lower()
TEXT_MODEL_OPENAI = os.getenv("TEXT_MODEL_OPENAI", "gpt-5.2")
TEXT_MODEL_GOOGLE = os.getenv("TEXT_MODEL_GOOGLE", "gemini-2.0-flash")
IMAGE_PROVIDER = os.getenv("IMAGE_PROVIDER", "openai").lower()
IMAGE_MODEL_OPENAI = os.getenv("IMAGE_MODEL_OPENAI", "gpt-image-1.5")
IMAGE_MODEL_GOOGLE = os.getenv("IMAGE_MODEL_GOOGLE", "gemini-2.0-flash-exp")

# Orchestration limits (from .env)
ASSET_WINDOW_SIZE = int(os.getenv("ASSET_WINDOW_SIZE", "20"))
TEXT_TIMEOUT_SECONDS = float(os.getenv("TEXT_TIMEOUT_SECONDS", "300"))
IMAGE_TIMEOUT_SECONDS = float(os.getenv("IMAGE_TIMEOUT_SECONDS", "180"))

# Average speaking rate for narration
WORDS_PER_MINUTE = 150


class Config:
    # Script settings
    default_mode = "war_room"   # Generation mode (see script_types.SCRIPT_MODES)
    target_minutes = 20         # Target narration length; picks short/medium/long word targets
    batch_count = None          # None = use the mode's batch count
    use_research = True         # Whether to fetch Wikipedia research (--no-research to disable)

    # Scene planning
    words_per_minute = WORDS_PER_MINUTE
    max_scenes_per_chunk = 50   # Ceiling for one scene-breakdown call

    # Asset generation
    window_size = ASSET_WINDOW_SIZE          # Max concurrent image calls
    text_timeout_seconds = TEXT_TIMEOUT_SECONDS
    image_timeout_seconds = IMAGE_TIMEOUT_SECONDS

    @property
    def target_duration_seconds(self):
        """Narration duration implied by target_minutes."""
        return self.target_minutes * 60
