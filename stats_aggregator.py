"""
Campaign statistics reader.

Stats rows are produced by an external workflow (n8n pulling Mailgun) and are
only read here. refresh_then_fetch pokes that workflow, then gives it a couple
of seconds to write before reading. This is best effort: nothing guarantees
the workflow has finished when we read, so the caller may still see the
previous numbers.
"""

import logging
import time
from datetime import datetime
from typing import List, Optional

import pytz
import requests

import config
from database import CampaignStats, CampaignStatsStore, utc_now_iso
from errors import NotFound

logger = logging.getLogger("leadsync.stats")

_EPOCH = datetime(1970, 1, 1, tzinfo=pytz.utc)


def parse_timestamp(value: str) -> datetime:
    """ISO-8601 to aware UTC datetime. Unparsable / empty sorts as oldest."""
    if not value:
        return _EPOCH
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return _EPOCH
    if parsed.tzinfo is None:
        parsed = pytz.utc.localize(parsed)
    return parsed.astimezone(pytz.utc)


def select_most_recent(rows: List[CampaignStats]) -> Optional[CampaignStats]:
    """
    Row with the latest stats_fetched_at. Equal timestamps go to the row
    listed last; sheet order is not guaranteed, so duplicates get a warning.
    """
    best = None
    best_ts = None
    for row in rows:
        ts = parse_timestamp(row.stats_fetched_at)
        if best is None or ts >= best_ts:
            if best is not None and ts == best_ts:
                logger.warning(
                    f"Duplicate stats rows for project {row.project_id} at {row.stats_fetched_at or 'no timestamp'} "
                    f"({best.campaign_id}, {row.campaign_id}); using the later row"
                )
            best, best_ts = row, ts
    return best


class StatsAggregator:

    def __init__(self,
                 stats: CampaignStatsStore,
                 webhook_url: str = None,
                 refresh_delay: float = None,
                 retry_delay: float = None,
                 timeout: float = None):
        self.stats = stats
        self.webhook_url = webhook_url if webhook_url is not None else config.STATS_WEBHOOK_URL
        self.refresh_delay = config.STATS_REFRESH_DELAY if refresh_delay is None else refresh_delay
        self.retry_delay = config.STATS_RETRY_DELAY if retry_delay is None else retry_delay
        self.timeout = timeout or config.HTTP_TIMEOUT

    def list_for_project(self, project_id: str) -> List[CampaignStats]:
        return self.stats.list_by_project(project_id)

    def fetch(self, project_id: str) -> CampaignStats:
        rows = self.list_for_project(project_id)
        logger.info(f"Campaign stats rows for project {project_id}: {len(rows)}")
        latest = select_most_recent(rows)
        if latest is None:
            raise NotFound(f"No campaign stats for project {project_id}")
        return latest

    def trigger_refresh(self, project_id: str) -> bool:
        """
        Fire-and-forget POST to the stats workflow. The response body may be
        empty or not JSON; it is only logged. Failures are logged, never raised.
        """
        if not self.webhook_url:
            logger.debug("Stats refresh skipped (no webhook configured)")
            return False

        try:
            response = requests.post(
                self.webhook_url,
                json={"project_id": project_id, "timestamp": utc_now_iso()},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.warning(f"Failed to call stats webhook, continuing with existing data: {e}")
            return False

        if not response.ok:
            logger.warning(f"Stats webhook returned {response.status_code}, continuing with existing data")
            return False

        logger.info(f"Stats webhook accepted refresh for {project_id}: {response.text[:200]}")
        return True

    def refresh_then_fetch(self, project_id: str) -> CampaignStats:
        """Trigger, wait, read; if still nothing, wait a bit longer and read once more."""
        self.trigger_refresh(project_id)
        time.sleep(self.refresh_delay)
        try:
            return self.fetch(project_id)
        except NotFound:
            logger.info(f"No stats yet for {project_id}, waiting {self.retry_delay:g}s for the workflow")
        time.sleep(self.retry_delay)
        return self.fetch(project_id)
