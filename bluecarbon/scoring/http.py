"""Remote scoring service client."""

import httpx
import pydantic

from bluecarbon.models.report import Report, ScoringResult
from bluecarbon.scoring.base import Scorer, ScoringError


class HttpScorer(Scorer):
    """POSTs the report's monitoring data to SCORER_URL and expects
    `{"tonnage_estimate": float, "quality_score": float, "evidence_reference": str}` back."""

    def __init__(self, url: str, timeout: float = 10.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self.url = url
        self.timeout = timeout
        self._transport = transport

    def _request_body(self, report: Report) -> dict:
        return {
            "report_id": str(report.id),
            "project_id": str(report.project_id),
            "raw_data": report.raw_data.model_dump(),
            "files": [f.path for f in report.files],
        }

    async def score(self, report: Report) -> ScoringResult:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                resp = await client.post(self.url, json=self._request_body(report))
                resp.raise_for_status()
                data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ScoringError(f"Scoring request failed: {e}") from e
        try:
            return ScoringResult.model_validate(data)
        except pydantic.ValidationError as e:
            raise ScoringError(f"Scoring response rejected: {e.error_count()} invalid field(s)") from e
