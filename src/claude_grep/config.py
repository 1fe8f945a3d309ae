"""Settings and persisted user preferences."""

import json
import logging
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from claude_grep.models import OutputFormat

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"


class Settings(BaseSettings):
    """Filesystem locations, overridable through environment variables."""

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    claude_projects_path: Path = Field(
        default_factory=lambda: Path.home() / ".claude" / "projects",
        description="Root directory holding one subdirectory per project",
    )
    claude_grep_config_dir: Path = Field(
        default_factory=lambda: Path.home() / ".claude-grep",
        description="Directory for preferences and project memory",
    )

    @field_validator("claude_projects_path", "claude_grep_config_dir")
    @classmethod
    def expand_home(cls, value: Path) -> Path:
        return value.expanduser()

    @property
    def preferences_path(self) -> Path:
        return self.claude_grep_config_dir / CONFIG_FILENAME


class PreferenceCategory(str, Enum):
    DISPLAY = "display"
    SEARCH = "search"
    PERFORMANCE = "performance"


class DisplayPreferences(BaseModel):
    default_format: OutputFormat = OutputFormat.TABLE
    include_stats: bool = True
    max_preview_length: int = Field(default=200, gt=0)
    show_ranking_explanation: bool = False


class SearchPreferences(BaseModel):
    max_results: int = Field(default=20, gt=0)
    default_days_back: int = Field(default=30, gt=0)
    exhaustive: bool = False
    default_project: str | None = None


class PerformancePreferences(BaseModel):
    batch_size: int = Field(default=10, gt=0)
    memory_limit: int = Field(default=512, gt=0, description="MB")
    enable_progress_bar: bool = True


class Preferences(BaseModel):
    display: DisplayPreferences = Field(default_factory=DisplayPreferences)
    search: SearchPreferences = Field(default_factory=SearchPreferences)
    performance: PerformancePreferences = Field(default_factory=PerformancePreferences)


class PreferencesStore:
    """Loads and saves Preferences as JSON on disk."""

    def __init__(self, path: Path):
        self.path = path

    def load(self) -> Preferences:
        """Read preferences, writing defaults if the file does not exist yet.

        Missing keys take their defaults. An unreadable or invalid file is
        logged and replaced by defaults in memory (the file is left alone).
        """
        if not self.path.exists():
            prefs = Preferences()
            self.save(prefs)
            return prefs

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            return Preferences.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.error("Error loading preferences from %s: %s", self.path, e)
            return Preferences()

    def save(self, prefs: Preferences) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(prefs.model_dump_json(indent=2), encoding="utf-8")

    def reset(self, category: PreferenceCategory | None = None) -> Preferences:
        """Restore defaults for one category, or for everything."""
        if category is None:
            prefs = Preferences()
        else:
            prefs = self.load()
            defaults = Preferences()
            setattr(prefs, category.value, getattr(defaults, category.value))
        self.save(prefs)
        return prefs
