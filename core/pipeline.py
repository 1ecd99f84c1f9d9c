"""
Ingestion Pipeline - Queue to Inventory

Drains the URL queue one item at a time:

    fetch -> extract -> normalize -> dedupe -> insert -> fingerprint/score
    -> automated decision -> audit

Each item is failure-isolated: any error is recorded on the queue item and
the batch moves on. Items are claimed with a lease, and expired leases are
swept back into the queue at the start of every batch.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from core.audit import ActorType, AuditActions, AuditLog, get_audit_log
from core.decisions import OverrideService, apply_automated_decision
from core.dedupe import DedupeEngine
from core.fingerprint import Fingerprinter, PhotoHasher
from core.inventory import (
    DuplicateListingError,
    InventoryRepository,
    get_inventory_repository,
)
from core.models import DomainPolicy, Listing, ListingStatus, QueuedUrl, RiskStatus
from core.normalizer import normalize
from core.scoring import RiskAssessment, RiskScorer
from core.url_queue import UrlQueue, get_url_queue
from scraper.base import BaseExtractor, extract_with
from scraper.fallback import FallbackExtractor
from scraper.fetcher import PageFetcher
from scraper.structured import StructuredExtractor
from utils.config import Config


logger = logging.getLogger(__name__)


ETL_ACTOR_ID = "etl-job"
NO_DATA_MESSAGE = "No structured data found"
DEFAULT_RETRY_LIMIT = 20


@dataclass
class BatchStats:
    """Counters for one pipeline run."""

    processed: int = 0
    created: int = 0
    duplicates: int = 0
    errors: int = 0
    held: int = 0
    review_required: int = 0
    reclaimed: int = 0
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "created": self.created,
            "duplicates": self.duplicates,
            "errors": self.errors,
            "held": self.held,
            "review_required": self.review_required,
            "reclaimed": self.reclaimed,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class IngestionPipeline:
    """
    Batch orchestrator for link-out ingestion.

    Not re-entrant: overlapping runs are kept apart by the queue lease,
    not by locking here.
    """

    def __init__(
        self,
        queue: UrlQueue,
        inventory: InventoryRepository,
        fetcher: PageFetcher,
        dedupe: DedupeEngine,
        scorer: RiskScorer,
        audit_log: AuditLog,
        extractors: Optional[list[BaseExtractor]] = None,
        batch_size: int = 50,
        item_delay: float = 0.5,
        lease_seconds: int = 1800,
        max_error_retries: int = 3,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.queue = queue
        self.inventory = inventory
        self.fetcher = fetcher
        self.dedupe = dedupe
        self.scorer = scorer
        self.audit_log = audit_log
        self.extractors = extractors or [StructuredExtractor(), FallbackExtractor()]
        self.batch_size = batch_size
        self.item_delay = item_delay
        self.lease_seconds = lease_seconds
        self.max_error_retries = max_error_retries
        self._sleep = sleep

    def run_batch(self, limit: Optional[int] = None) -> BatchStats:
        """
        Process up to limit queued URLs.

        Args:
            limit: Max items to claim (defaults to batch_size)

        Returns:
            BatchStats for the run
        """
        limit = limit or self.batch_size
        stats = BatchStats()
        logger.info("Starting ETL run (limit=%d)", limit)

        stats.reclaimed = self.reclaim()

        for index in range(limit):
            claimed = self.queue.claim_next(self.lease_seconds)
            if claimed is None:
                break
            item, policy = claimed

            if index > 0:
                self._sleep(self.item_delay)

            try:
                self.process(item, policy, stats)
            except Exception as e:
                message = str(e) or e.__class__.__name__
                logger.error("ETL processing failed for %s: %s", item.url, message)
                self.queue.mark_error(item.id, message)
                stats.errors += 1

            stats.processed += 1

        stats.completed_at = datetime.utcnow()

        self.audit_log.record(
            actor_type=ActorType.SYSTEM,
            actor_id=ETL_ACTOR_ID,
            action=AuditActions.ETL_RUN,
            entity="url_queue",
            payload=stats.to_dict(),
        )
        logger.info("ETL run completed: %s", stats.to_dict())
        return stats

    def process(self, item: QueuedUrl, policy: DomainPolicy, stats: BatchStats) -> Optional[Listing]:
        """
        Run one claimed queue item through the pipeline.

        Returns:
            The created listing, or None for duplicates and extraction misses
        """
        logger.debug("Fetching %s", item.url)
        result = self.fetcher.fetch(item.url)

        extracted = extract_with(self.extractors, result.html, result.final_url)
        if extracted is None:
            logger.warning("No listing data could be extracted from %s", item.url)
            self.queue.mark_error(item.id, NO_DATA_MESSAGE)
            stats.errors += 1
            return None

        normalized = normalize(
            extracted,
            item.domain,
            policy.effective_fields,
            policy.source_type,
        )

        duplicate = self.dedupe.check_duplicate(
            normalized.source_url,
            normalized.content_hash,
            normalized.area,
            normalized.price_amount,
            normalized.bedrooms,
        )
        if duplicate.is_duplicate:
            logger.debug(
                "Duplicate detected for %s (%s -> %s)",
                item.url,
                duplicate.reason.value,
                duplicate.existing_id,
            )
            self._record_duplicate(item, duplicate.existing_id, stats)
            return None

        try:
            listing = self.inventory.insert_listing(Listing.from_normalized(
                normalized,
                fetched_url=result.final_url,
                discovered_at=item.discovered_at,
            ))
        except DuplicateListingError as e:
            self._record_duplicate(item, e.existing_id, stats)
            return None

        assessment = self.scorer.score_listing(listing.id)
        status = self._apply_decision(listing.id, assessment, stats)

        self.queue.mark_done(item.id)
        stats.created += 1

        self.audit_log.record(
            actor_type=ActorType.SYSTEM,
            actor_id=ETL_ACTOR_ID,
            action=AuditActions.ETL_LISTING_CREATED,
            entity="listings",
            entity_id=listing.id,
            payload={
                "source_url": listing.source_url,
                "domain": listing.source_domain,
                "source_type": listing.source_type.value,
                "extraction_method": extracted.extraction_method.value,
                "status": status.value,
                "risk_score": assessment.risk_score if assessment else None,
            },
        )
        logger.info(
            "Listing %s created from %s (%s, %s)",
            listing.id,
            item.url,
            extracted.extraction_method.value,
            status.value,
        )
        return listing

    def _apply_decision(
        self,
        listing_id: str,
        assessment: Optional[RiskAssessment],
        stats: BatchStats,
    ) -> ListingStatus:
        status = apply_automated_decision(self.inventory, listing_id, assessment)
        if status == ListingStatus.HOLD_FOR_REVIEW:
            stats.held += 1
        elif assessment is not None and assessment.status == RiskStatus.REVIEW_REQUIRED:
            stats.review_required += 1
        return status

    def _record_duplicate(self, item: QueuedUrl, existing_id: str, stats: BatchStats) -> None:
        self._finish_unscored(existing_id, stats)
        self.dedupe.record_duplicate(existing_id)
        self.queue.mark_done(item.id)
        stats.duplicates += 1

    def _finish_unscored(self, listing_id: str, stats: BatchStats) -> None:
        """
        Score a listing left pending by an earlier failed run.

        A failure between insert and decision leaves the row behind, so the
        retried URL dedupes against it and has to finish its scoring here.
        """
        if not self.scorer.enabled or self.inventory.get_risk_score(listing_id) is not None:
            return
        listing = self.inventory.get_listing(listing_id)
        if listing is None or listing.status != ListingStatus.PENDING_REVIEW:
            return

        logger.info("Scoring listing %s left pending by an earlier run", listing_id)
        assessment = self.scorer.score_listing(listing_id)
        self._apply_decision(listing_id, assessment, stats)

    def retry_errors(self, limit: int = DEFAULT_RETRY_LIMIT) -> int:
        """Requeue failed items that still have retries left."""
        count = self.queue.requeue_errors(limit, self.max_error_retries)
        logger.info("Queued %d error URLs for retry", count)
        return count

    def reclaim(self) -> int:
        """Sweep processing items whose lease has expired."""
        return self.queue.reclaim_expired(self.max_error_retries)

    def get_stats(self) -> dict[str, Any]:
        """Queue counts, listing counts and the most recent failures."""
        return {
            "queue": self.queue.count_by_status(),
            "listings": self.inventory.count_by_source_type(),
            "recent_errors": [
                {
                    "url": item.url,
                    "error": item.last_error,
                    "at": item.processed_at.isoformat() if item.processed_at else None,
                }
                for item in self.queue.recent_errors(10)
            ],
        }


# =============================================================================
# Service Wiring
# =============================================================================

@dataclass
class PipelineServices:
    """Everything the CLI and web app need, wired from one Config."""

    config: Config
    queue: UrlQueue
    inventory: InventoryRepository
    audit_log: AuditLog
    fingerprinter: Fingerprinter
    scorer: RiskScorer
    overrides: OverrideService
    pipeline: IngestionPipeline

    @classmethod
    def from_config(
        cls,
        config: Config,
        queue: Optional[UrlQueue] = None,
        inventory: Optional[InventoryRepository] = None,
        audit_log: Optional[AuditLog] = None,
        fetcher: Optional[PageFetcher] = None,
        photo_hasher: Optional[PhotoHasher] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "PipelineServices":
        """
        Build services from config.

        Storage defaults to files under config.data_dir; pass instances to
        override (tests pass in-memory ones).
        """
        queue = queue or UrlQueue(config.queue_path)
        inventory = inventory or InventoryRepository(config.inventory_path)
        audit_log = audit_log or AuditLog(config.audit_path)
        fetcher = fetcher or PageFetcher(
            timeout=config.request_timeout,
            max_retries=config.max_retries,
            retry_delay=config.retry_delay,
        )
        fingerprinter = Fingerprinter(inventory, photo_hasher)
        scorer = RiskScorer(
            inventory,
            fingerprinter,
            enabled=config.risk_scoring_enabled,
            photo_match_distance=config.photo_match_distance,
        )
        pipeline = IngestionPipeline(
            queue=queue,
            inventory=inventory,
            fetcher=fetcher,
            dedupe=DedupeEngine(inventory),
            scorer=scorer,
            audit_log=audit_log,
            batch_size=config.batch_size,
            item_delay=config.item_delay,
            lease_seconds=config.lease_timeout,
            max_error_retries=config.max_error_retries,
            sleep=sleep,
        )
        return cls(
            config=config,
            queue=queue,
            inventory=inventory,
            audit_log=audit_log,
            fingerprinter=fingerprinter,
            scorer=scorer,
            overrides=OverrideService(inventory, audit_log),
            pipeline=pipeline,
        )


_services_instance: Optional[PipelineServices] = None


def get_services(config: Optional[Config] = None) -> PipelineServices:
    """
    Get the shared services singleton.

    Uses the module-level storage singletons so every caller in the
    process sees the same queue, inventory and audit log.
    """
    global _services_instance
    if _services_instance is None:
        config = config or Config.load()
        _services_instance = PipelineServices.from_config(
            config,
            queue=get_url_queue(str(config.queue_path)),
            inventory=get_inventory_repository(str(config.inventory_path)),
            audit_log=get_audit_log(str(config.audit_path)),
        )
    return _services_instance
