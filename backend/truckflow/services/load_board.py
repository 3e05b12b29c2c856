"""Demo load-board ingest (DAT, Truckstop, 123LoadBoard sample postings)."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from truckflow.core.errors import DuplicateLoadError
from truckflow.core.logging import logger
from truckflow.models.fleet import AlertType, LoadCreateRequest, ScrapeResult
from truckflow.services.storage import MemoryStorage


# Mock postings (would come from the DAT/Truckstop/123LoadBoard APIs)
SAMPLE_POSTINGS: List[Dict[str, Any]] = [
    {
        "external_id": "DAT-4789",
        "origin": "Dallas, TX",
        "destination": "Phoenix, AZ",
        "miles": 887,
        "rate": 2034.00,
        "equipment_type": "Van",
        "pickup_in_hours": 24,
        "source": "DAT",
        "match_score": 78,
        "profit_margin": 610.0,
    },
    {
        "external_id": "TS-5621",
        "origin": "Atlanta, GA",
        "destination": "Miami, FL",
        "miles": 663,
        "rate": 1547.00,
        "equipment_type": "Reefer",
        "pickup_in_hours": 6,
        "source": "Truckstop",
        "match_score": 95,
        "profit_margin": 652.0,
    },
    {
        "external_id": "123-9843",
        "origin": "Chicago, IL",
        "destination": "Detroit, MI",
        "miles": 238,
        "rate": 623.00,
        "equipment_type": "Flatbed",
        "pickup_in_hours": 48,
        "source": "123LoadBoard",
        "match_score": 92,
        "profit_margin": 302.0,
    },
]


class LoadBoardIngest:
    """Creates sample loads and skips postings already on the board."""

    def __init__(self, storage: MemoryStorage) -> None:
        self.storage = storage

    def scrape(self) -> ScrapeResult:
        now = datetime.now(timezone.utc)
        created: List[int] = []
        for posting in SAMPLE_POSTINGS:
            data = dict(posting)
            pickup_in_hours = data.pop("pickup_in_hours")
            request = LoadCreateRequest(
                pickup_time=now + timedelta(hours=pickup_in_hours),
                ai_score=data["match_score"],
                **data,
            )
            try:
                load = self.storage.create_load(request)
            except DuplicateLoadError:
                logger.info("Skipping known load-board posting", external_id=request.external_id)
                continue
            created.append(load.id)

        self.storage.create_alert(
            AlertType.SUCCESS,
            "Load board scraping completed",
            f"Found {len(created)} new loads",
        )
        return ScrapeResult(success=True, loads_found=len(created), load_ids=created)
