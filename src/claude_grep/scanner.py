"""Discovery of conversation transcript files on disk."""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable

from claude_grep.config import Settings
from claude_grep.models import ConversationFile, to_utc
from claude_grep.parser import session_id_from_path
from claude_grep.progress import SearchProgress, Stage

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[SearchProgress], None]


class ConversationScanner:
    """Enumerates transcripts laid out as ``<base>/<project>/<session>.jsonl``."""

    def __init__(self, base_path: str | Path | None = None, settings: Settings | None = None):
        if base_path is None:
            base_path = (settings or Settings()).claude_projects_path
        self.base_path = Path(base_path).expanduser()

    def scan_conversations(
        self,
        project_filter: str | None = None,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> list[ConversationFile]:
        """Collect transcript files, newest first.

        Date filters apply to file modification time. A missing base
        directory yields an empty list.
        """
        if not self.base_path.exists():
            logger.warning("Conversation history directory not found: %s", self.base_path)
            return []

        start = to_utc(start_date) if start_date else None
        end = to_utc(end_date) if end_date else None

        project_dirs = self._project_directories()
        total_projects = len(project_dirs)
        processed = 0
        files: list[ConversationFile] = []

        for project_dir in project_dirs:
            if project_filter and project_dir.name != project_filter:
                continue

            files.extend(self._scan_project_directory(project_dir, start, end))

            processed += 1
            if on_progress:
                on_progress(
                    SearchProgress(
                        files_processed=processed,
                        total_files=total_projects,
                        current_file=str(project_dir),
                        stage=Stage.SCANNING,
                    )
                )

        files.sort(key=lambda f: f.last_modified, reverse=True)
        return files

    def _project_directories(self) -> list[Path]:
        try:
            return sorted(entry for entry in self.base_path.iterdir() if entry.is_dir())
        except OSError as e:
            logger.error("Error reading conversation base directory %s: %s", self.base_path, e)
            return []

    def _scan_project_directory(
        self,
        project_dir: Path,
        start: datetime | None,
        end: datetime | None,
    ) -> list[ConversationFile]:
        files: list[ConversationFile] = []

        try:
            for entry in sorted(project_dir.iterdir()):
                if not entry.name.endswith(".jsonl") or not entry.is_file():
                    continue

                mtime = datetime.fromtimestamp(entry.stat().st_mtime, tz=timezone.utc)
                if start and mtime < start:
                    continue
                if end and mtime > end:
                    continue

                files.append(
                    ConversationFile(
                        path=entry.resolve(),
                        session_id=session_id_from_path(entry),
                        last_modified=mtime,
                        project_name=project_dir.name,
                    )
                )
        except OSError as e:
            logger.error("Error scanning project directory %s: %s", project_dir, e)
            return []

        return files

    def get_recent_conversations(
        self, days: int = 7, project_filter: str | None = None
    ) -> list[ConversationFile]:
        cutoff = datetime.now(tz=timezone.utc) - timedelta(days=days)
        return self.scan_conversations(project_filter=project_filter, start_date=cutoff)

    def list_projects(self) -> list[str]:
        """Sorted names of all project directories."""
        if not self.base_path.exists():
            return []
        return [d.name for d in self._project_directories()]

    def project_exists(self, project_name: str) -> bool:
        return self.get_project_path(project_name).is_dir()

    def get_project_path(self, project_name: str) -> Path:
        return self.base_path / project_name
