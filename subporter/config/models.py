"""Pydantic models used across Subporter configuration flow."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Settings(BaseModel):
    """Import throttling policy, fixed for the duration of one job run.

    ``delay_between_items`` and ``batch_pause_duration`` are seconds.
    """

    model_config = ConfigDict(frozen=True)

    delay_between_items: float = 3.0
    batch_size: int = 10
    batch_pause_duration: float = 10.0

    @field_validator("delay_between_items", "batch_pause_duration", mode="before")
    @classmethod
    def _coerce_duration(cls, value: Any) -> float:
        if value in (None, ""):
            return 0.0
        seconds = float(value)
        if seconds < 0:
            raise ValueError("Durations must be non-negative")
        return seconds

    @field_validator("batch_size")
    @classmethod
    def _validate_batch_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("batch_size must be >= 1")
        return value

    def merged(self, **overrides: Any) -> "Settings":
        """Return a copy with non-None overrides applied and re-validated."""

        payload = self.model_dump()
        payload.update({key: value for key, value in overrides.items() if value is not None})
        return Settings.model_validate(payload)


class BrowserConfig(BaseModel):
    """Playwright launch options for the shared automation page."""

    base_url: str = "https://www.youtube.com"
    listing_path: str = "/feed/channels"
    # 保持登录态：使用持久化用户目录
    user_data_dir: Path = Field(default=Path("browser-profile"))
    headless: bool = False
    channel: str | None = None
    locale: str = "en-US"
    viewport_size: tuple[int, int] = (1280, 900)
    navigation_timeout: int = 30000  # 毫秒
    probe_timeout: int = 10000  # 毫秒
    confirm_delay: float = 0.5

    @field_validator("user_data_dir", mode="before")
    @classmethod
    def _coerce_path(cls, value: Any) -> Path:
        return Path(value)

    @model_validator(mode="after")
    def _validate_timeouts(self) -> "BrowserConfig":
        if self.navigation_timeout <= 0 or self.probe_timeout <= 0:
            raise ValueError("Browser timeouts must be positive milliseconds")
        if self.confirm_delay < 0:
            raise ValueError("confirm_delay must be >= 0")
        self.base_url = self.base_url.rstrip("/")
        return self

    @property
    def listing_url(self) -> str:
        return f"{self.base_url}{self.listing_path}"


class ExtractionConfig(BaseModel):
    """Scroll-until-stable parameters for listing extraction."""

    max_scroll_attempts: int = 100
    stable_rounds: int = 3
    scroll_settle_delay: float = 1.0
    progress_every: int = 10

    @model_validator(mode="after")
    def _validate_positive(self) -> "ExtractionConfig":
        if self.max_scroll_attempts < 1:
            raise ValueError("max_scroll_attempts must be >= 1")
        if self.stable_rounds < 1:
            raise ValueError("stable_rounds must be >= 1")
        if self.progress_every < 1:
            raise ValueError("progress_every must be >= 1")
        if self.scroll_settle_delay < 0:
            raise ValueError("scroll_settle_delay must be >= 0")
        return self


class GlobalConfig(BaseModel):
    """Global controls shared by export and import runs."""

    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    import_defaults: Settings = Field(default_factory=Settings)
    settle_delay: float = 2.0
    enable_progress_bar: bool = True
    exports_dir: Path = Field(default=Path("exports"))
    database_path: Path = Field(default=Path("subporter.db"))

    @field_validator("exports_dir", "database_path", mode="before")
    @classmethod
    def _coerce_paths(cls, value: Any) -> Path:
        return Path(value)

    @field_validator("settle_delay")
    @classmethod
    def _validate_settle(cls, value: float) -> float:
        if value < 0:
            raise ValueError("settle_delay must be >= 0")
        return value

    def resolved(self, base_dir: Path) -> "GlobalConfig":
        """Return a copy whose relative paths are anchored under ``base_dir``."""

        def _anchor(path: Path) -> Path:
            return path if path.is_absolute() else (base_dir / path).resolve()

        browser = self.browser.model_copy(
            update={"user_data_dir": _anchor(self.browser.user_data_dir)}
        )
        return self.model_copy(
            update={
                "browser": browser,
                "exports_dir": _anchor(self.exports_dir),
                "database_path": _anchor(self.database_path),
            }
        )


__all__ = [
    "BrowserConfig",
    "ExtractionConfig",
    "GlobalConfig",
    "Settings",
]
