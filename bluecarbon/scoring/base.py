from abc import ABC, abstractmethod

from bluecarbon.core.config import get_settings
from bluecarbon.models.report import Report, ScoringResult


class ScoringError(Exception):
    """The scoring collaborator could not produce a usable result."""


class Scorer(ABC):
    """Turns a report's monitoring data into a tonnage estimate and a quality score."""

    @abstractmethod
    async def score(self, report: Report) -> ScoringResult:
        ...


class UnconfiguredScorer(Scorer):
    """Used when no scoring service is configured; reports wait in pending_scoring."""

    async def score(self, report: Report) -> ScoringResult:
        raise ScoringError("No scoring service configured (SCORER_URL)")


def get_scorer() -> Scorer:
    settings = get_settings()
    if settings.scorer_url:
        from bluecarbon.scoring.http import HttpScorer
        return HttpScorer(settings.scorer_url, timeout=settings.scorer_timeout_seconds)
    return UnconfiguredScorer()
