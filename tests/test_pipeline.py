"""
Tests for the ingestion pipeline end to end, with network access stubbed out.
"""

import json

import pytest

from core.audit import ActorType, AuditActions
from core.models import DomainPolicy, ListingStatus, QueueStatus, RiskStatus, SourceType
from core.pipeline import NO_DATA_MESSAGE, PipelineServices
from core.url_queue import UrlQueue
from scraper.fetcher import FetchError, FetchResult
from utils.config import Config


class StubFetcher:
    """Serves canned HTML (or raises) per URL."""

    def __init__(self):
        self.pages = {}
        self.fetched = []

    def fetch(self, url):
        self.fetched.append(url)
        page = self.pages[url]
        if isinstance(page, Exception):
            raise page
        return FetchResult(html=page, final_url=url, status_code=200, content_type="text/html")


def listing_page(**schema) -> str:
    data = {"@context": "https://schema.org", "@type": "Apartment"}
    data.update(schema)
    return f'<html><head><script type="application/ld+json">{json.dumps(data)}</script></head></html>'


SLIEMA_PAGE = listing_page(
    name="3 Bedroom Apartment in Sliema",
    description="Sea views.",
    offers={"price": 350000, "priceCurrency": "EUR"},
    numberOfBedrooms=3,
    numberOfBathroomsTotal=2,
    address={"streetAddress": "Tower Road", "addressLocality": "Sliema"},
    image=["https://example.mt/img/1.jpg"],
)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fetcher():
    return StubFetcher()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def make_services(inventory, audit_log, photo_hasher, fetcher, sleeps):
    def _make(**config_overrides) -> PipelineServices:
        values = dict(
            batch_size=50,
            item_delay=0.5,
            lease_timeout=1800,
            max_error_retries=3,
            risk_scoring_enabled=True,
        )
        values.update(config_overrides)
        services = PipelineServices.from_config(
            Config(**values),
            queue=UrlQueue(),
            inventory=inventory,
            audit_log=audit_log,
            fetcher=fetcher,
            photo_hasher=photo_hasher,
            sleep=sleeps.append,
        )
        services.queue.set_policy(DomainPolicy(domain="example.mt"))
        services.queue.set_policy(DomainPolicy(domain="partner.mt", allowed_to_republish=True))
        return services

    return _make


@pytest.fixture
def services(make_services):
    return make_services()


# =============================================================================
# Happy Path
# =============================================================================


class TestIngestion:
    """Tests for listings created from queued URLs."""

    def test_partner_listing_published(self, services, fetcher, inventory):
        url = "https://partner.mt/listing/1"
        fetcher.pages[url] = SLIEMA_PAGE
        item = services.queue.enqueue(url)

        stats = services.pipeline.run_batch()

        assert stats.processed == 1
        assert stats.created == 1
        assert stats.errors == 0
        assert services.queue.get(item.id).status == QueueStatus.DONE

        listing = inventory.find_by_source_url(url)
        assert listing.source_type == SourceType.PARTNER
        assert listing.status == ListingStatus.PUBLISHED
        assert listing.description == "Sea views."
        assert listing.images == ["https://example.mt/img/1.jpg"]
        assert listing.address_text == "Tower Road, Sliema"
        assert listing.fetched_url == url
        assert listing.discovered_at == item.discovered_at
        assert inventory.get_risk_score(listing.id).status == RiskStatus.OK

    def test_linkout_listing_is_redacted(self, services, fetcher, inventory):
        url = "https://example.mt/listing/1"
        fetcher.pages[url] = SLIEMA_PAGE
        services.queue.enqueue(url)

        services.pipeline.run_batch()

        listing = inventory.find_by_source_url(url)
        assert listing.source_type == SourceType.LINKOUT
        assert listing.title == "3 Bedroom Apartment in Sliema"
        assert listing.price_amount == 350000.0
        assert listing.bedrooms == 3
        assert listing.area == "Sliema"
        assert listing.description is None
        assert listing.images == []
        assert listing.address_text is None
        # No photos (+15) stays below review
        assert inventory.get_risk_score(listing.id).risk_score == 15
        assert listing.status == ListingStatus.PUBLISHED

    def test_audit_entries(self, services, fetcher, audit_log, inventory):
        url = "https://example.mt/listing/1"
        fetcher.pages[url] = SLIEMA_PAGE
        services.queue.enqueue(url)

        services.pipeline.run_batch()

        listing = inventory.find_by_source_url(url)
        created = audit_log.entries(AuditActions.ETL_LISTING_CREATED, listing.id)
        assert len(created) == 1
        assert created[0].actor_type == ActorType.SYSTEM
        assert created[0].payload == {
            "source_url": url,
            "domain": "example.mt",
            "source_type": "linkout",
            "extraction_method": "structured",
            "status": "published",
            "risk_score": 15,
        }
        runs = audit_log.entries(AuditActions.ETL_RUN)
        assert len(runs) == 1
        assert runs[0].payload["created"] == 1

    def test_scoring_disabled_publishes(self, make_services, fetcher, inventory):
        services = make_services(risk_scoring_enabled=False)
        url = "https://example.mt/listing/1"
        fetcher.pages[url] = SLIEMA_PAGE
        services.queue.enqueue(url)

        services.pipeline.run_batch()

        listing = inventory.find_by_source_url(url)
        assert listing.status == ListingStatus.PUBLISHED
        assert inventory.get_risk_score(listing.id) is None


# =============================================================================
# Risk Outcomes
# =============================================================================


class TestRiskOutcomes:
    """Tests for held and review-required listings."""

    def test_suspicious_listing_held(self, services, fetcher, inventory, make_listing):
        existing = make_listing(
            title="Studio flat",
            address_text=None,
            area=None,
            price_amount=5000,
            bedrooms=1,
        )
        services.fingerprinter.compute_fingerprint(existing.id)
        url = "https://example.mt/listing/cheap"
        fetcher.pages[url] = listing_page(
            name="Studio flat",
            offers={"price": 5000, "priceCurrency": "EUR"},
            numberOfBedrooms=1,
        )
        services.queue.enqueue(url)

        stats = services.pipeline.run_batch()

        listing = inventory.find_by_source_url(url)
        score = inventory.get_risk_score(listing.id)
        # duplicate fingerprint + missing location + no photos + price outlier
        assert score.risk_score == 85
        assert score.status == RiskStatus.HOLD
        assert listing.status == ListingStatus.HOLD_FOR_REVIEW
        assert stats.held == 1
        assert stats.created == 1

    def test_review_required(self, services, fetcher, inventory, make_listing):
        existing = make_listing(
            title="2 Bedroom Apartment",
            address_text=None,
            area="Gzira",
            price_amount=280000,
            bedrooms=None,
        )
        services.fingerprinter.compute_fingerprint(existing.id)
        url = "https://example.mt/listing/gzira"
        fetcher.pages[url] = listing_page(
            name="2 Bedroom Apartment",
            offers={"price": 280000, "priceCurrency": "EUR"},
            numberOfBedrooms=2,
            address={"addressLocality": "Gzira"},
        )
        services.queue.enqueue(url)

        stats = services.pipeline.run_batch()

        listing = inventory.find_by_source_url(url)
        assert inventory.get_risk_score(listing.id).risk_score == 55
        assert listing.status == ListingStatus.PENDING_REVIEW
        assert stats.review_required == 1
        assert stats.held == 0


# =============================================================================
# Duplicates & Failures
# =============================================================================


class TestDuplicatesAndFailures:
    """Tests for duplicate handling and failure isolation."""

    def test_duplicate_url(self, services, fetcher, inventory, make_listing):
        url = "https://example.mt/listing/1"
        existing = make_listing(source_url=url)
        fetcher.pages[url] = SLIEMA_PAGE
        item = services.queue.enqueue(url)

        stats = services.pipeline.run_batch()

        assert stats.duplicates == 1
        assert stats.created == 0
        assert services.queue.get(item.id).status == QueueStatus.DONE
        assert len(inventory.list_listings()) == 1
        assert inventory.get_listing(existing.id).last_checked_at >= existing.created_at

    def test_fuzzy_duplicate(self, services, fetcher, inventory, make_listing):
        make_listing(area="Sliema", bedrooms=3, price_amount=345000)
        url = "https://example.mt/listing/other-agency"
        fetcher.pages[url] = SLIEMA_PAGE
        services.queue.enqueue(url)

        stats = services.pipeline.run_batch()

        assert stats.duplicates == 1
        assert inventory.find_by_source_url(url) is None

    def test_no_data(self, services, fetcher):
        url = "https://example.mt/about"
        fetcher.pages[url] = "<html><head><title>About us</title></head></html>"
        item = services.queue.enqueue(url)

        stats = services.pipeline.run_batch()

        assert stats.errors == 1
        failed = services.queue.get(item.id)
        assert failed.status == QueueStatus.ERROR
        assert failed.last_error == NO_DATA_MESSAGE

    def test_fetch_error_is_isolated(self, services, fetcher, inventory):
        bad = "https://example.mt/listing/bad"
        good = "https://example.mt/listing/good"
        fetcher.pages[bad] = FetchError("HTTP 500", bad, attempts=3)
        fetcher.pages[good] = SLIEMA_PAGE
        bad_item = services.queue.enqueue(bad)
        services.queue.enqueue(good)

        stats = services.pipeline.run_batch()

        assert stats.processed == 2
        assert stats.errors == 1
        assert stats.created == 1
        assert services.queue.get(bad_item.id).last_error == "HTTP 500"
        assert inventory.find_by_source_url(good) is not None

    def test_scoring_failure_leaves_listing_pending(self, services, fetcher, inventory):
        url = "https://example.mt/listing/1"
        fetcher.pages[url] = SLIEMA_PAGE
        item = services.queue.enqueue(url)

        def boom(listing_id):
            raise RuntimeError("scoring unavailable")

        services.pipeline.scorer.score_listing = boom

        stats = services.pipeline.run_batch()

        assert stats.errors == 1
        assert services.queue.get(item.id).last_error == "scoring unavailable"
        assert inventory.find_by_source_url(url).status == ListingStatus.PENDING_REVIEW

    def test_retry_finishes_scoring_after_failure(self, services, fetcher, inventory):
        url = "https://example.mt/listing/1"
        fetcher.pages[url] = SLIEMA_PAGE
        item = services.queue.enqueue(url)
        scorer = services.pipeline.scorer
        score_listing = scorer.score_listing

        def boom(listing_id):
            raise RuntimeError("scoring unavailable")

        scorer.score_listing = boom
        services.pipeline.run_batch()
        scorer.score_listing = score_listing

        assert services.pipeline.retry_errors() == 1
        stats = services.pipeline.run_batch()

        listing = inventory.find_by_source_url(url)
        assert stats.duplicates == 1
        assert stats.errors == 0
        assert services.queue.get(item.id).status == QueueStatus.DONE
        assert inventory.get_risk_score(listing.id) is not None
        assert listing.status != ListingStatus.PENDING_REVIEW
        assert len(inventory.list_listings()) == 1

    def test_retry_scoring_failure_stays_in_error(self, services, fetcher, inventory):
        url = "https://example.mt/listing/1"
        fetcher.pages[url] = SLIEMA_PAGE
        item = services.queue.enqueue(url)

        def boom(listing_id):
            raise RuntimeError("scoring unavailable")

        services.pipeline.scorer.score_listing = boom
        services.pipeline.run_batch()
        services.pipeline.retry_errors()

        stats = services.pipeline.run_batch()

        assert stats.errors == 1
        assert stats.duplicates == 0
        assert services.queue.get(item.id).status == QueueStatus.ERROR
        assert inventory.find_by_source_url(url).status == ListingStatus.PENDING_REVIEW

    def test_items_without_policy_stay_queued(self, services, fetcher):
        item = services.queue.enqueue("https://unknown.mt/listing/1")

        stats = services.pipeline.run_batch()

        assert stats.processed == 0
        assert fetcher.fetched == []
        assert services.queue.get(item.id).status == QueueStatus.NEW


# =============================================================================
# Batch Control
# =============================================================================


class TestBatchControl:
    """Tests for pacing, limits, leases and retries."""

    def test_sleeps_between_items_only(self, services, fetcher, sleeps):
        for n in range(2):
            url = f"https://example.mt/about/{n}"
            fetcher.pages[url] = "<html></html>"
            services.queue.enqueue(url)

        services.pipeline.run_batch()

        assert sleeps == [0.5]

    def test_limit(self, services, fetcher):
        for n in range(3):
            url = f"https://example.mt/about/{n}"
            fetcher.pages[url] = "<html></html>"
            services.queue.enqueue(url)

        stats = services.pipeline.run_batch(limit=2)

        assert stats.processed == 2
        assert services.queue.count_by_status() == {"error": 2, "new": 1}

    def test_expired_leases_reclaimed_first(self, services, fetcher, inventory):
        url = "https://example.mt/listing/1"
        fetcher.pages[url] = SLIEMA_PAGE
        item = services.queue.enqueue(url)
        services.queue.claim_next(lease_seconds=-1)

        stats = services.pipeline.run_batch()

        assert stats.reclaimed == 1
        assert stats.created == 1
        assert services.queue.get(item.id).retry_count == 1
        assert inventory.find_by_source_url(url) is not None

    def test_retry_errors(self, services, fetcher):
        url = "https://example.mt/listing/1"
        fetcher.pages[url] = FetchError("timeout", url)
        item = services.queue.enqueue(url)
        services.pipeline.run_batch()

        assert services.pipeline.retry_errors() == 1
        assert services.queue.get(item.id).status == QueueStatus.NEW

        fetcher.pages[url] = SLIEMA_PAGE
        stats = services.pipeline.run_batch()

        assert stats.created == 1

    def test_get_stats(self, services, fetcher, make_listing):
        make_listing(source_type=SourceType.PARTNER)
        url = "https://example.mt/listing/1"
        fetcher.pages[url] = FetchError("timeout", url)
        services.queue.enqueue(url)
        services.pipeline.run_batch()

        stats = services.pipeline.get_stats()

        assert stats["queue"] == {"error": 1}
        assert stats["listings"] == {"partner": 1}
        assert stats["recent_errors"][0]["url"] == url
        assert stats["recent_errors"][0]["error"] == "timeout"
        assert stats["recent_errors"][0]["at"] is not None
