"""
Tests for the operator CLI.
"""

import json

import pytest

from core.audit import ActorType, AuditActions
from core.cli import CLI_ACTOR_ID, build_parser, main
from core.models import ListingStatus, QueueStatus, SourceType
from core.pipeline import PipelineServices
from core.url_queue import UrlQueue
from utils.config import Config


class FailingFetcher:
    def fetch(self, url):
        raise RuntimeError("network disabled")


@pytest.fixture
def services(inventory, audit_log, photo_hasher):
    return PipelineServices.from_config(
        Config(item_delay=0),
        queue=UrlQueue(),
        inventory=inventory,
        audit_log=audit_log,
        fetcher=FailingFetcher(),
        photo_hasher=photo_hasher,
        sleep=lambda seconds: None,
    )


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_override_decision_choices(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["override", "l-1", "delete", "--admin", "a"])


# =============================================================================
# Queue Commands
# =============================================================================


class TestQueueCommands:
    """Tests for policy, enqueue, run and retry commands."""

    def test_policy_and_enqueue(self, services, capsys):
        assert main(["policy", "Example.mt", "--fields", "title,price,bogus"], services=services) == 0
        assert main(["enqueue", "https://example.mt/1", "https://other.mt/2"], services=services) == 0

        policy = services.queue.get_policy("example.mt")
        assert policy.source_type == SourceType.LINKOUT
        assert {f.value for f in policy.fields_allowed} == {"title", "price"}
        output = capsys.readouterr().out
        assert "Policy saved for example.mt" in output
        assert "no domain policy" in output
        assert len(services.queue.list_all()) == 2

    def test_policy_list(self, services, capsys):
        main(["policy", "partner.mt", "--republish", "--no-fetch"], services=services)
        capsys.readouterr()

        main(["policy", "--list"], services=services)

        row = json.loads(capsys.readouterr().out.strip())
        assert row["domain"] == "partner.mt"
        assert row["allowed_to_republish"] is True
        assert row["allowed_to_fetch"] is False

    def test_run_and_retry(self, services, capsys):
        main(["policy", "example.mt"], services=services)
        main(["enqueue", "https://example.mt/1"], services=services)

        assert main(["run", "--limit", "5"], services=services) == 0
        assert "Errors:          1" in capsys.readouterr().out

        main(["retry-errors"], services=services)
        assert "Requeued 1 URLs" in capsys.readouterr().out
        assert services.queue.list_all()[0].status == QueueStatus.NEW

    def test_reclaim(self, services, capsys):
        main(["policy", "example.mt"], services=services)
        main(["enqueue", "https://example.mt/1"], services=services)
        services.queue.claim_next(lease_seconds=-1)

        main(["reclaim"], services=services)

        assert "Reclaimed 1 URLs" in capsys.readouterr().out

    def test_stats(self, services, capsys, make_listing):
        make_listing()

        main(["stats"], services=services)

        stats = json.loads(capsys.readouterr().out)
        assert stats["listings"] == {"linkout": 1}


# =============================================================================
# Risk Commands
# =============================================================================


class TestRiskCommands:
    """Tests for score and override commands."""

    def test_score(self, services, capsys, make_listing):
        listing = make_listing(images=[], price_amount=300000)

        assert main(["score", listing.id], services=services) == 0

        output = capsys.readouterr().out
        assert "€300,000" in output
        assert "Score:   15 (low)" in output
        assert "No photos provided" in output

    def test_score_is_audited(self, services, make_listing, audit_log):
        listing = make_listing(images=[])

        main(["score", listing.id], services=services)
        main(["score", listing.id, "--admin", "admin-1"], services=services)

        entries = audit_log.entries(AuditActions.RISK_SCORED, listing.id)
        assert [(e.actor_type, e.actor_id) for e in entries] == [
            (ActorType.SYSTEM, CLI_ACTOR_ID),
            (ActorType.USER, "admin-1"),
        ]
        assert entries[0].payload == {"risk_score": 15, "status": "ok"}

    def test_unknown_listing_is_not_audited(self, services, audit_log):
        main(["score", "missing"], services=services)

        assert audit_log.entries(AuditActions.RISK_SCORED, "missing") == []

    def test_score_unknown_listing(self, services, capsys):
        assert main(["score", "missing"], services=services) == 1
        assert "Listing not found" in capsys.readouterr().err

    def test_override(self, services, capsys, make_listing, inventory):
        listing = make_listing()
        main(["score", listing.id], services=services)

        code = main(
            ["override", listing.id, "reject", "--admin", "admin-1", "--notes", "fake"],
            services=services,
        )

        assert code == 0
        assert f"Listing {listing.id}: reject -> rejected" in capsys.readouterr().out
        assert inventory.get_listing(listing.id).status == ListingStatus.REJECTED

    def test_override_unscored(self, services, capsys, make_listing):
        listing = make_listing()

        assert main(["override", listing.id, "allow", "--admin", "admin-1"], services=services) == 1
        assert "Risk score not found" in capsys.readouterr().err
