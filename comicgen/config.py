"""Configuration containers for the comic movie pipeline."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import ClassVar, Optional


@dataclass(slots=True)
class PipelineConfig:
    """Static configuration applied to every project run."""

    env_prefix: ClassVar[str] = "COMICGEN_"

    assets_dir: str = "assets"
    runs_dir: str = "runs"
    outputs_dir: str = "outputs"
    enable_mock_generation: bool = True
    gemini_api_key: Optional[str] = None
    text_model: str = "gemini-2.5-flash"
    image_model: str = "imagen-4.0-generate-001"
    video_model: str = "veo-2.0-generate-001"
    page_delay_sec: float = 5.0
    video_delay_sec: float = 60.0
    poll_interval_sec: float = 10.0
    video_timeout_sec: Optional[float] = 900.0
    finalize_delay_sec: float = 3.0
    request_timeout: int = 120

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Create a config object populated from environment variables."""
        prefix = cls.env_prefix
        return cls(
            assets_dir=os.getenv(f"{prefix}ASSETS_DIR", "assets"),
            runs_dir=os.getenv(f"{prefix}RUNS_DIR", "runs"),
            outputs_dir=os.getenv(f"{prefix}OUTPUTS_DIR", "outputs"),
            enable_mock_generation=os.getenv(f"{prefix}ENABLE_MOCKS", "true").lower() == "true",
            gemini_api_key=os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY"),
            text_model=os.getenv(f"{prefix}TEXT_MODEL", "gemini-2.5-flash"),
            image_model=os.getenv(f"{prefix}IMAGE_MODEL", "imagen-4.0-generate-001"),
            video_model=os.getenv(f"{prefix}VIDEO_MODEL", "veo-2.0-generate-001"),
            page_delay_sec=_env_float(f"{prefix}PAGE_DELAY_SEC", 5.0),
            video_delay_sec=_env_float(f"{prefix}VIDEO_DELAY_SEC", 60.0),
            poll_interval_sec=_env_float(f"{prefix}POLL_INTERVAL_SEC", 10.0),
            video_timeout_sec=_env_timeout(f"{prefix}VIDEO_TIMEOUT_SEC", 900.0),
            finalize_delay_sec=_env_float(f"{prefix}FINALIZE_DELAY_SEC", 3.0),
            request_timeout=int(_env_float(f"{prefix}REQUEST_TIMEOUT", 120)),
        )


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got {raw!r}") from exc


def _env_timeout(name: str, default: float) -> Optional[float]:
    """Like ``_env_float`` but ``0``/``none`` disable the deadline."""
    raw = os.getenv(name)
    if raw is not None and raw.strip().lower() in {"none", "off"}:
        return None
    value = _env_float(name, default)
    return value if value > 0 else None
