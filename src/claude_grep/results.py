"""Post-search processing: filtering, dedup, statistics and re-ranking."""

import calendar
import math
import re
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum

from claude_grep.models import SearchResult, to_utc

CURRENT_PROJECT_BOOST = 1.1
ERROR_CONTEXT_BOOST = 1.15
RECENCY_BOOST_WEIGHT = 0.2
RECENCY_BOOST_DAYS = 7
FILE_OVERLAP_WEIGHT = 0.1


@dataclass
class ResultProcessorOptions:
    max_results: int | None = None
    min_score: float | None = None
    deduplicate_by_session: bool = False
    group_by_project: bool = False
    highlight_keywords: list[str] | None = None


@dataclass
class SearchStatistics:
    total_conversations_searched: int
    total_matches_found: int
    average_score: float
    project_distribution: dict[str, int] = field(default_factory=dict)
    earliest: datetime | None = None
    latest: datetime | None = None
    search_duration: float | None = None


@dataclass
class ProcessedResults:
    results: list[SearchResult]
    total_matches: int
    project_counts: dict[str, int]
    search_stats: SearchStatistics


@dataclass
class RankingContext:
    """Caller context used to re-rank results (e.g. from an editor)."""

    current_project: str | None = None
    prefer_recent: bool = False
    searching_for_errors: bool = False
    recent_files: list[str] | None = None
    current_branch: str | None = None


class TimePeriod(str, Enum):
    TODAY = "today"
    YESTERDAY = "yesterday"
    THIS_WEEK = "this_week"
    THIS_MONTH = "this_month"
    OLDER = "older"


def deduplicate_by_session(results: list[SearchResult]) -> list[SearchResult]:
    """Keep the highest-scoring result per session, in first-seen order."""
    best: dict[str, SearchResult] = {}
    for result in results:
        existing = best.get(result.session_id)
        if existing is None or result.score > existing.score:
            best[result.session_id] = result
    return list(best.values())


def count_by_project(results: list[SearchResult]) -> dict[str, int]:
    return dict(Counter(r.project_name or "unknown" for r in results))


def group_by_project(results: list[SearchResult]) -> list[SearchResult]:
    """Cluster results by project in first-seen order, keeping order within each project."""
    groups: dict[str, list[SearchResult]] = {}
    for result in results:
        groups.setdefault(result.project_name or "unknown", []).append(result)
    return [result for group in groups.values() for result in group]


def highlight_text(text: str, keywords: list[str]) -> str:
    """Wrap each keyword occurrence (case-insensitive) in ``**`` markers."""
    for keyword in keywords:
        if not keyword:
            continue
        pattern = re.compile(f"({re.escape(keyword)})", re.IGNORECASE)
        text = pattern.sub(r"**\1**", text)
    return text


def _month_before(day: datetime) -> datetime:
    year, month = (day.year, day.month - 1) if day.month > 1 else (day.year - 1, 12)
    last_day = calendar.monthrange(year, month)[1]
    return day.replace(year=year, month=month, day=min(day.day, last_day))


class ResultProcessor:
    """Stateless transformations applied to engine output before formatting."""

    def process_results(
        self, results: list[SearchResult], options: ResultProcessorOptions | None = None
    ) -> ProcessedResults:
        options = options or ResultProcessorOptions()
        processed = list(results)

        if options.min_score is not None:
            processed = [r for r in processed if r.score >= options.min_score]

        if options.deduplicate_by_session:
            processed = deduplicate_by_session(processed)

        if options.group_by_project:
            processed = group_by_project(processed)

        # Statistics describe the filtered set before truncation
        total_matches = len(processed)
        stats = self.calculate_statistics(results, processed)

        if options.max_results and len(processed) > options.max_results:
            processed = processed[: options.max_results]

        if options.highlight_keywords:
            processed = self.highlight_matches(processed, options.highlight_keywords)

        return ProcessedResults(
            results=processed,
            total_matches=total_matches,
            project_counts=count_by_project(processed),
            search_stats=stats,
        )

    def calculate_statistics(
        self, all_results: list[SearchResult], matched: list[SearchResult]
    ) -> SearchStatistics:
        timestamps = [to_utc(r.timestamp) for r in matched]
        return SearchStatistics(
            total_conversations_searched=len(all_results),
            total_matches_found=len(matched),
            average_score=sum(r.score for r in matched) / len(matched) if matched else 0.0,
            project_distribution=count_by_project(matched),
            earliest=min(timestamps) if timestamps else None,
            latest=max(timestamps) if timestamps else None,
        )

    def rank_results(
        self,
        results: list[SearchResult],
        context: RankingContext | None = None,
        now: datetime | None = None,
    ) -> list[SearchResult]:
        """Re-score results with contextual boosts and sort descending."""
        if now is None:
            now = datetime.now(tz=timezone.utc)

        ranked = []
        for result in results:
            score = result.score

            if context:
                if context.prefer_recent:
                    age_days = (to_utc(now) - to_utc(result.timestamp)).total_seconds() / 86400
                    boost = math.exp(-max(0.0, age_days) / RECENCY_BOOST_DAYS)
                    score *= 1 + boost * RECENCY_BOOST_WEIGHT

                if context.current_project and result.project_name == context.current_project:
                    score *= CURRENT_PROJECT_BOOST

                if context.searching_for_errors and result.metadata.has_errors:
                    score *= ERROR_CONTEXT_BOOST

                if context.recent_files and result.files:
                    recent = set(context.recent_files)
                    overlap = sum(1 for f in result.files if f in recent) / len(result.files)
                    score *= 1 + overlap * FILE_OVERLAP_WEIGHT

            ranked.append(replace(result, score=min(1.0, score)))

        ranked.sort(key=lambda r: r.score, reverse=True)
        return ranked

    def highlight_matches(
        self, results: list[SearchResult], keywords: list[str]
    ) -> list[SearchResult]:
        return [
            replace(r, matched_content=highlight_text(r.matched_content, keywords))
            for r in results
        ]

    def group_by_time_period(
        self, results: list[SearchResult], now: datetime | None = None
    ) -> dict[TimePeriod, list[SearchResult]]:
        """Bucket results relative to local-midnight boundaries."""
        if now is None:
            now = datetime.now().astimezone()
        elif now.tzinfo is None:
            now = now.astimezone()

        today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        yesterday = today - timedelta(days=1)
        week_ago = today - timedelta(days=7)
        month_ago = _month_before(today)

        groups: dict[TimePeriod, list[SearchResult]] = {period: [] for period in TimePeriod}
        for result in results:
            ts = to_utc(result.timestamp)
            if ts >= today:
                groups[TimePeriod.TODAY].append(result)
            elif ts >= yesterday:
                groups[TimePeriod.YESTERDAY].append(result)
            elif ts >= week_ago:
                groups[TimePeriod.THIS_WEEK].append(result)
            elif ts >= month_ago:
                groups[TimePeriod.THIS_MONTH].append(result)
            else:
                groups[TimePeriod.OLDER].append(result)
        return groups


def process_search_results(
    results: list[SearchResult], options: ResultProcessorOptions | None = None
) -> ProcessedResults:
    return ResultProcessor().process_results(results, options)
