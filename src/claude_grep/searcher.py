"""Keyword search and relevance scoring over conversation transcripts."""

import logging
import math
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator

from claude_grep.models import (
    ConversationFile,
    ConversationResult,
    ParsedMessage,
    RankingWeights,
    SearchOptions,
    SearchResult,
    SearchResultMetadata,
    SortField,
    SortOrder,
    TimeRange,
    to_utc,
)
from claude_grep.parser import parse_conversation
from claude_grep.progress import ProgressTracker, SearchProgress, Stage
from claude_grep.scanner import ConversationScanner

logger = logging.getLogger(__name__)

STOP_WORDS = frozenset({"the", "and", "or", "but", "for", "with"})
MIN_KEYWORD_LENGTH = 3

RECENCY_SCALE_DAYS = 30
PREVIEW_LENGTH = 200
PREVIEW_LEAD = 50


def extract_keywords(query: str) -> list[str]:
    """Split a query into keywords, dropping short tokens and stop words.

    Case is preserved; matching lowercases both sides.
    """
    return [
        word
        for word in query.split()
        if len(word) >= MIN_KEYWORD_LENGTH and word.lower() not in STOP_WORDS
    ]


def calculate_recency_score(timestamp: datetime, now: datetime | None = None) -> float:
    """Calculate a recency score (0-1) with exponential decay.

    Scale is 30 days: 1.0 for now, ~0.37 at 30 days, ~0.14 at 60 days.
    """
    if now is None:
        now = datetime.now(tz=timezone.utc)
    age_days = max(0.0, (to_utc(now) - to_utc(timestamp)).total_seconds() / 86400)
    return math.exp(-age_days / RECENCY_SCALE_DAYS)


def compile_file_patterns(patterns: list[str]) -> list[re.Pattern[str]]:
    """Translate glob-style patterns (``*`` only) into case-insensitive regexes."""
    return [
        re.compile(".*".join(re.escape(part) for part in pattern.split("*")), re.IGNORECASE)
        for pattern in patterns
    ]


def matches_file_patterns(files: list[str], patterns: list[re.Pattern[str]]) -> bool:
    if not patterns:
        return True
    return any(regex.search(f) for regex in patterns for f in files)


def build_preview(content: str, keywords: list[str], max_length: int = PREVIEW_LENGTH) -> str:
    """Excerpt a message around the first keyword hit."""
    if len(content) <= max_length:
        return content

    lowered = content.lower()
    for keyword in keywords:
        index = lowered.find(keyword.lower())
        if index >= 0:
            start = max(0, index - PREVIEW_LEAD)
            end = min(len(content), index + max_length - PREVIEW_LEAD)
            return "..." + content[start:end] + "..."

    return content[:max_length] + "..."


@dataclass
class _ConversationTally:
    """Running aggregates for one file; matched messages are not retained."""

    message_count: int = 0
    match_count: int = 0
    keyword_total: float = 0.0
    first_match: ParsedMessage | None = None
    matched_error: bool = False
    matched_tool_call: bool = False
    has_errors: bool = False
    has_tool_calls: bool = False
    files: dict[str, None] = field(default_factory=dict)


class SearchEngine:
    """Scans transcripts per query, filters messages and scores conversations."""

    def __init__(
        self,
        base_path: str | Path | None = None,
        ranking_weights: RankingWeights | None = None,
        progress: ProgressTracker | None = None,
        scanner: ConversationScanner | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.scanner = scanner or ConversationScanner(base_path)
        self.ranking_weights = ranking_weights or RankingWeights()
        self.progress = progress
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))

    def search(
        self, options: SearchOptions, progress: ProgressTracker | None = None
    ) -> Iterator[SearchResult]:
        """Yield matching conversations.

        Relevance ordering (explicit, or the default for non-exhaustive
        searches) buffers every result and sorts before emitting. Any other
        ordering streams results in scan order (newest file first) and, when
        not exhaustive, stops scanning once ``limit`` results were produced.
        """
        tracker = progress or self.progress
        keywords = extract_keywords(options.query)
        time_range = options.time_range or TimeRange()
        now = self._clock()

        if tracker:
            tracker.start()

        files = self.scanner.scan_conversations(
            project_filter=options.project_context,
            start_date=time_range.start,
            end_date=time_range.end,
            on_progress=tracker.report_progress if tracker else None,
        )

        buffered = options.sort_by == SortField.RELEVANCE or (
            options.sort_by is None and not options.exhaustive
        )
        total_files = len(files)
        total_matches = 0
        results: list[SearchResult] = []

        for files_processed, file in enumerate(files, 1):
            started = time.perf_counter()
            result = None
            try:
                result = self._search_conversation(file, keywords, options, now)
            except Exception as e:
                logger.warning("Error searching conversation %s: %s", file.path, e)
                if tracker:
                    tracker.report_error(e)

            if tracker:
                tracker.file_processed(time.perf_counter() - started)
                tracker.report_progress(
                    SearchProgress(
                        files_processed=files_processed,
                        total_files=total_files,
                        current_file=str(file.path),
                        stage=Stage.SEARCHING,
                    )
                )

            if result is None or result.score <= 0:
                continue

            total_matches += 1
            if buffered:
                results.append(result)
                continue

            yield result
            if not options.exhaustive and options.limit and total_matches >= options.limit:
                break

        if buffered:
            if tracker:
                tracker.report_progress(
                    SearchProgress(
                        files_processed=total_files,
                        total_files=total_files,
                        stage=Stage.RANKING,
                    )
                )
            results.sort(key=lambda r: r.score, reverse=options.sort_order != SortOrder.ASC)
            if options.limit:
                results = results[: options.limit]
            yield from results

        if tracker:
            tracker.complete(total_matches)

    def _search_conversation(
        self,
        file: ConversationFile,
        keywords: list[str],
        options: SearchOptions,
        now: datetime,
    ) -> SearchResult | None:
        lowered_keywords = [k.lower() for k in keywords]
        tally = _ConversationTally()

        for message in parse_conversation(file.path):
            tally.message_count += 1
            tally.has_errors = tally.has_errors or message.has_error
            tally.has_tool_calls = tally.has_tool_calls or message.has_tool_call

            if self._message_matches(message, lowered_keywords, options):
                tally.match_count += 1
                if tally.first_match is None:
                    tally.first_match = message
                if lowered_keywords:
                    content = message.content.lower()
                    hits = sum(content.count(k) for k in lowered_keywords)
                    tally.keyword_total += hits / len(lowered_keywords)
                tally.matched_error = tally.matched_error or message.has_error
                tally.matched_tool_call = tally.matched_tool_call or message.has_tool_call
                tally.files.update(dict.fromkeys(message.files))
            elif options.file_patterns:
                tally.files.update(dict.fromkeys(message.files))

        files = list(tally.files)
        if options.file_patterns and not matches_file_patterns(
            files, compile_file_patterns(options.file_patterns)
        ):
            return None

        if tally.first_match is None:
            return None

        score = self._calculate_score(tally, file, keywords, options, now)
        branch = tally.first_match.branch

        return SearchResult(
            session_id=file.session_id,
            timestamp=file.last_modified,
            matched_content=build_preview(tally.first_match.content, keywords),
            files=files,
            score=score,
            project_name=file.project_name or "unknown",
            branch=branch,
            match_count=tally.match_count,
            metadata=SearchResultMetadata(
                total_messages=tally.message_count,
                has_errors=tally.has_errors,
                has_tool_calls=tally.has_tool_calls,
                git_branch=branch,
                project_path=file.project_name,
            ),
        )

    @staticmethod
    def _message_matches(
        message: ParsedMessage, lowered_keywords: list[str], options: SearchOptions
    ) -> bool:
        if lowered_keywords:
            content = message.content.lower()
            if not any(k in content for k in lowered_keywords):
                return False

        if options.include_errors is not None and options.include_errors != message.has_error:
            return False

        if (
            options.include_tool_calls is not None
            and options.include_tool_calls != message.has_tool_call
        ):
            return False

        if options.message_types:
            role = "user" if message.role == "user" else "assistant"
            if role not in options.message_types:
                return False

        # Messages without a usable timestamp are not excluded by the range
        if options.time_range and message.timestamp is not None:
            start, end = options.time_range.start, options.time_range.end
            if start and message.timestamp < to_utc(start):
                return False
            if end and message.timestamp > to_utc(end):
                return False

        return True

    def _calculate_score(
        self,
        tally: _ConversationTally,
        file: ConversationFile,
        keywords: list[str],
        options: SearchOptions,
        now: datetime,
    ) -> float:
        weights = self.ranking_weights
        score = 0.0

        if keywords and tally.match_count:
            keyword_score = min(1.0, tally.keyword_total / tally.match_count)
            score += weights.keyword_match * keyword_score

        score += weights.recency * calculate_recency_score(file.last_modified, now)

        if tally.message_count:
            score += weights.message_type_match * (tally.match_count / tally.message_count)

        if options.include_errors and tally.matched_error:
            score += weights.error_presence

        if options.include_tool_calls and tally.matched_tool_call:
            score += weights.tool_call_presence

        return max(0.0, min(1.0, score))

    def get_conversation_by_id(self, session_id: str) -> ConversationResult | None:
        """Load a whole conversation by session id, scanning every project."""
        for file in self.scanner.scan_conversations():
            if file.session_id != session_id:
                continue

            messages = list(parse_conversation(file.path))
            if not messages:
                continue

            files = list(dict.fromkeys(f for m in messages for f in m.files))
            branch = messages[0].branch
            return ConversationResult(
                session_id=file.session_id,
                timestamp=messages[0].timestamp or file.last_modified,
                matched_content=build_preview(messages[0].content, []),
                files=files,
                score=1.0,
                project_name=file.project_name or "unknown",
                branch=branch,
                match_count=len(messages),
                metadata=SearchResultMetadata(
                    total_messages=len(messages),
                    has_errors=any(m.has_error for m in messages),
                    has_tool_calls=any(m.has_tool_call for m in messages),
                    git_branch=branch,
                    project_path=file.project_name,
                ),
                content=render_transcript(messages),
                messages=messages,
            )

        return None


def render_transcript(messages: list[ParsedMessage]) -> str:
    """Concatenate messages into a readable transcript."""
    blocks = []
    for message in messages:
        text = ""
        if message.role:
            stamp = message.timestamp.isoformat() if message.timestamp else "unknown time"
            text += f"[{message.role.upper()}] {stamp}\n"
        text += message.content + "\n"
        if message.files:
            text += f"Files: {', '.join(message.files)}\n"
        blocks.append(text)
    return "\n---\n\n".join(blocks)


def search_conversations(
    options: SearchOptions, base_path: str | Path | None = None
) -> list[SearchResult]:
    """Run a search to completion and sort by the requested field."""
    results = list(SearchEngine(base_path).search(options))
    reverse = options.sort_order != SortOrder.ASC

    if options.sort_by == SortField.DATE:
        results.sort(key=lambda r: r.timestamp, reverse=reverse)
    elif options.sort_by == SortField.MESSAGE_COUNT:
        results.sort(key=lambda r: r.match_count, reverse=reverse)
    else:
        results.sort(key=lambda r: r.score, reverse=reverse)
    return results
