"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"


@dataclass(frozen=True)
class Settings:
    # --- Database (story catalogue) ---
    database_url: str = os.getenv(
        "READALONG_DB_URL", f"sqlite+aiosqlite:///{DATA_DIR / 'readalong.db'}"
    )

    # --- Narration ---
    base_words_per_minute: float = 150.0
    speech_rate: float = float(os.getenv("READALONG_SPEECH_RATE", "0.92"))
    speech_pitch: float = 1.0
    language: str = os.getenv("READALONG_LANGUAGE", "en-US")
    inter_page_pause_seconds: float = 0.9

    # --- Recognition / alignment ---
    match_window: int = 5  # forward lookahead in reference words
    prefix_min_length: int = 3  # both words at least this long for prefix matching
    completion_grace_seconds: float = 1.5
    recognition_max_alternatives: int = 3

    def __post_init__(self) -> None:
        if self.base_words_per_minute <= 0 or self.speech_rate <= 0:
            raise ValueError(
                f"narration pace must be positive (base_words_per_minute="
                f"{self.base_words_per_minute}, speech_rate={self.speech_rate})"
            )
        if self.match_window < 1:
            raise ValueError(f"match_window must be at least 1, got {self.match_window}")
        if self.prefix_min_length < 1:
            raise ValueError(
                f"prefix_min_length must be at least 1, got {self.prefix_min_length}"
            )

    @property
    def words_per_minute(self) -> float:
        """Narration pace estimate used to space highlight ticks."""
        return self.base_words_per_minute * self.speech_rate


settings = Settings()

# Ensure directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)
