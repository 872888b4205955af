"""
Analytics over extraction history.

summarize() is a pure reducer over a history snapshot: it reads nothing from
the store and returns the same summary, in the same order, for the same input.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime

from linguaspark.extraction.models import (
    ExtractionHistoryEntry,
    ExtractionSession,
    SessionStatus,
    domain_of,
)

DEFAULT_TOP_ERRORS = 5
DEFAULT_TOP_DOMAINS = 10


@dataclass(frozen=True)
class ErrorCount:
    error: str
    count: int


@dataclass(frozen=True)
class DomainCount:
    domain: str
    count: int


@dataclass(frozen=True)
class AnalyticsSummary:
    """Derived view of extraction outcomes. Never stored."""

    successful_extractions: int = 0
    failed_extractions: int = 0
    average_retries: float = 0.0
    most_common_errors: list[ErrorCount] = field(default_factory=list)
    extractions_by_domain: list[DomainCount] = field(default_factory=list)

    @property
    def total_extractions(self) -> int:
        return self.successful_extractions + self.failed_extractions

    @property
    def success_rate(self) -> float:
        if self.total_extractions == 0:
            return 0.0
        return self.successful_extractions / self.total_extractions

    def to_dict(self) -> dict:
        return {
            "total_extractions": self.total_extractions,
            "successful_extractions": self.successful_extractions,
            "failed_extractions": self.failed_extractions,
            "average_retries": self.average_retries,
            "most_common_errors": [
                {"error": e.error, "count": e.count} for e in self.most_common_errors
            ],
            "extractions_by_domain": [
                {"domain": d.domain, "count": d.count} for d in self.extractions_by_domain
            ],
        }


class _Tally:
    """Counts keyed by text, remembering the earliest timestamp seen per key."""

    def __init__(self) -> None:
        self.counts: dict[str, int] = {}
        self.first_seen: dict[str, datetime] = {}

    def add(self, key: str, timestamp: datetime) -> None:
        self.counts[key] = self.counts.get(key, 0) + 1
        seen = self.first_seen.get(key)
        if seen is None or timestamp < seen:
            self.first_seen[key] = timestamp

    def ranked(self, limit: int) -> list[tuple[str, int]]:
        # count desc, then first seen, then text: independent of input order
        ordered = sorted(
            self.counts.items(),
            key=lambda item: (-item[1], self.first_seen[item[0]], item[0]),
        )
        return ordered[:limit]


def summarize(
    history: Iterable[ExtractionHistoryEntry],
    sessions: Mapping[str, ExtractionSession] | None = None,
    top_errors: int = DEFAULT_TOP_ERRORS,
    top_domains: int = DEFAULT_TOP_DOMAINS,
) -> AnalyticsSummary:
    """
    Reduce a history snapshot to an AnalyticsSummary.

    Args:
        history: History entries, any order
        sessions: Optional live sessions by id, used to recover retry counts
            for entries recorded without one
        top_errors: Length cap of most_common_errors
        top_domains: Length cap of extractions_by_domain

    Returns:
        AnalyticsSummary. Entries with no retry linkage are left out of
        average_retries rather than counted as zero.
    """
    sessions = sessions or {}
    successful = 0
    failed = 0
    retry_total = 0
    retry_samples = 0
    errors = _Tally()
    domains = _Tally()

    for entry in history:
        if entry.status == SessionStatus.COMPLETE:
            successful += 1
        elif entry.status == SessionStatus.FAILED:
            failed += 1
            if entry.error:
                errors.add(entry.error, entry.timestamp)
        else:
            continue

        retry_count = entry.retry_count
        if retry_count is None and entry.session_id in sessions:
            retry_count = sessions[entry.session_id].retry_count
        if retry_count is not None:
            retry_total += retry_count
            retry_samples += 1

        domain = domain_of(entry.url)
        if domain:
            domains.add(domain, entry.timestamp)

    return AnalyticsSummary(
        successful_extractions=successful,
        failed_extractions=failed,
        average_retries=retry_total / retry_samples if retry_samples else 0.0,
        most_common_errors=[ErrorCount(e, c) for e, c in errors.ranked(top_errors)],
        extractions_by_domain=[DomainCount(d, c) for d, c in domains.ranked(top_domains)],
    )
