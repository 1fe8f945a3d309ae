"""Project context detection and remembered project selection."""

import json
import logging
import os
import re
import subprocess
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError

from claude_grep.config import Settings
from claude_grep.scanner import ConversationScanner

logger = logging.getLogger(__name__)

PROJECT_STATE_FILENAME = "project-config.json"
MAX_PROJECT_HISTORY = 10
GIT_REMOTE_NAME = re.compile(r"[/:]([^/:]+?)(?:\.git)?/?$")


class ProjectNotFoundError(LookupError):
    """Raised when a named project has no conversation directory."""

    def __init__(self, project_name: str):
        super().__init__(f"Project '{project_name}' not found")
        self.project_name = project_name


@dataclass
class ProjectContext:
    conversation_base_path: Path
    current_project: str | None = None
    available_projects: list[str] = field(default_factory=list)
    is_claude_code: bool = False
    working_directory: Path | None = None


def encode_project_dir(path: Path) -> str:
    """Claude Code stores /home/me/app under a directory named -home-me-app."""
    return str(path).replace("\\", "-").replace("/", "-")


def git_remote_name(cwd: Path) -> str | None:
    """Repository name from ``remote.origin.url``, if cwd is a git checkout."""
    try:
        url = subprocess.check_output(
            ["git", "config", "--get", "remote.origin.url"],
            cwd=cwd,
            text=True,
            stderr=subprocess.PIPE,
        ).strip()
    except (subprocess.CalledProcessError, FileNotFoundError, NotADirectoryError):
        return None

    match = GIT_REMOTE_NAME.search(url)
    return match.group(1) if match else None


def _manifest_project_name(directory: Path) -> str | None:
    package_json = directory / "package.json"
    if package_json.is_file():
        try:
            name = json.loads(package_json.read_text(encoding="utf-8")).get("name")
        except (OSError, json.JSONDecodeError, AttributeError):
            name = None
        if name:
            return name

    pyproject = directory / "pyproject.toml"
    if pyproject.is_file():
        try:
            return tomllib.loads(pyproject.read_text(encoding="utf-8")).get("project", {}).get("name")
        except (OSError, tomllib.TOMLDecodeError):
            return None
    return None


class ProjectContextDetector:
    """Guesses which conversation project the working directory belongs to."""

    def __init__(self, scanner: ConversationScanner):
        self.scanner = scanner

    def detect_context(self, cwd: Path | None = None) -> ProjectContext:
        cwd = (cwd or Path.cwd()).resolve()
        available = self.scanner.list_projects()
        return ProjectContext(
            conversation_base_path=self.scanner.base_path,
            current_project=self.detect_project(cwd, available),
            available_projects=available,
            is_claude_code=self.is_running_in_claude_code(),
            working_directory=cwd,
        )

    @staticmethod
    def is_running_in_claude_code() -> bool:
        return bool(os.environ.get("CLAUDE_CODE")) or os.environ.get("MCP_SERVER_NAME") == "claude-grep"

    def detect_project(self, cwd: Path, available: list[str]) -> str | None:
        if not available:
            return None
        known = set(available)

        encoded = encode_project_dir(cwd)
        if encoded in known:
            return encoded

        for part in cwd.parts:
            if part in known:
                return part

        remote = git_remote_name(cwd)
        if remote and remote in known:
            return remote

        home = Path.home()
        for directory in (cwd, *cwd.parents):
            if directory == home:
                break
            if directory.name in known:
                return directory.name
            manifest_name = _manifest_project_name(directory)
            if manifest_name and manifest_name in known:
                return manifest_name

        basename = cwd.name.lower()
        if basename:
            for project in available:
                lowered = project.lower()
                if basename in lowered or lowered in basename:
                    return project

        return None


class ProjectState(BaseModel):
    last_project: str | None = None
    project_history: list[str] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))


class ProjectManager:
    """Remembers the last selected project across runs."""

    def __init__(
        self,
        settings: Settings,
        scanner: ConversationScanner,
        detector: ProjectContextDetector | None = None,
    ):
        self.state_path = settings.claude_grep_config_dir / PROJECT_STATE_FILENAME
        self.scanner = scanner
        self.detector = detector or ProjectContextDetector(scanner)
        self.state = ProjectState()

    def load(self) -> None:
        if not self.state_path.exists():
            return
        try:
            self.state = ProjectState.model_validate_json(self.state_path.read_text(encoding="utf-8"))
        except (OSError, ValidationError) as e:
            logger.warning("Ignoring unreadable project state %s: %s", self.state_path, e)

    def get_current_context(self, cwd: Path | None = None) -> ProjectContext:
        context = self.detector.detect_context(cwd)
        if not context.current_project and self.state.last_project:
            if self.state.last_project in context.available_projects:
                context.current_project = self.state.last_project
        return context

    def switch_project(self, project_name: str) -> None:
        if not self.scanner.project_exists(project_name):
            raise ProjectNotFoundError(project_name)

        history = [p for p in self.state.project_history if p != project_name]
        self.state.project_history = [project_name, *history][:MAX_PROJECT_HISTORY]
        self.state.last_project = project_name
        self._save()

    def remember_project(self, project_name: str) -> None:
        self.state.last_project = project_name
        self._save()

    @property
    def last_project(self) -> str | None:
        return self.state.last_project

    @property
    def project_history(self) -> list[str]:
        return list(self.state.project_history)

    def clear_project_memory(self) -> None:
        self.state.last_project = None
        self.state.project_history = []
        self._save()

    def _save(self) -> None:
        self.state.last_updated = datetime.now(tz=timezone.utc)
        try:
            self.state_path.parent.mkdir(parents=True, exist_ok=True)
            self.state_path.write_text(self.state.model_dump_json(indent=2), encoding="utf-8")
        except OSError as e:
            logger.error("Failed to save project state to %s: %s", self.state_path, e)
