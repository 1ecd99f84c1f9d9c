"""
URL Queue - Discovered URLs and Domain Policies

The queue is filled by the discovery job and drained by the ingestion
pipeline. An item moves new -> processing -> done | error in place.

The processing status acts as a lease: claiming sets lease_expires_at and
reclaim_expired() returns abandoned items to the queue so a crashed run
cannot strand them.
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import datetime, timedelta
from pathlib import Path
from typing import Final, Optional, Union
from urllib.parse import urlparse

from core.models import DomainPolicy, QueuedUrl, QueueStatus


logger = logging.getLogger(__name__)


MAX_ERROR_LENGTH: Final[int] = 500
LEASE_EXPIRED_MESSAGE: Final[str] = "lease expired"


def domain_for_url(url: str) -> str:
    """Host of url, lowercased, without a leading www."""
    host = (urlparse(url).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host


class UrlQueue:
    """
    Queue of discovered URLs plus the domain policy table.

    Uses in-memory storage with optional file persistence.
    """

    def __init__(self, persist_path: Optional[Union[str, Path]] = None):
        self._items: dict[str, QueuedUrl] = {}
        self._policies: dict[str, DomainPolicy] = {}
        self._lock = threading.RLock()
        self._persist_path = Path(persist_path) if persist_path else None

        if self._persist_path and self._persist_path.exists():
            self._load_from_file()

    def _save_to_file(self) -> None:
        if not self._persist_path:
            return

        data = {
            "items": [item.to_dict() for item in self._items.values()],
            "policies": [policy.to_dict() for policy in self._policies.values()],
            "saved_at": datetime.utcnow().isoformat(),
        }
        self._persist_path.parent.mkdir(parents=True, exist_ok=True)
        self._persist_path.write_text(json.dumps(data, indent=2))

    def _load_from_file(self) -> None:
        try:
            data = json.loads(self._persist_path.read_text())
            for row in data.get("items", []):
                item = QueuedUrl.from_dict(row)
                self._items[item.id] = item
            for row in data.get("policies", []):
                policy = DomainPolicy.from_dict(row)
                self._policies[policy.domain] = policy
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            logger.warning("Could not load queue data: %s", e)

    # =========================================================================
    # Domain Policies
    # =========================================================================

    def set_policy(self, policy: DomainPolicy) -> DomainPolicy:
        with self._lock:
            self._policies[policy.domain] = policy
            self._save_to_file()
            return policy

    def get_policy(self, domain: str) -> Optional[DomainPolicy]:
        return self._policies.get(domain)

    def list_policies(self) -> list[DomainPolicy]:
        return sorted(self._policies.values(), key=lambda p: p.domain)

    # =========================================================================
    # Queue Operations
    # =========================================================================

    def enqueue(self, url: str, discovered_at: Optional[datetime] = None) -> QueuedUrl:
        """
        Add a URL to the queue.

        URLs are unique; enqueueing a known URL returns the existing item.
        """
        with self._lock:
            for item in self._items.values():
                if item.url == url:
                    return item
            item = QueuedUrl(
                url=url,
                domain=domain_for_url(url),
                discovered_at=discovered_at or datetime.utcnow(),
            )
            self._items[item.id] = item
            self._save_to_file()
            return item

    def get(self, item_id: str) -> Optional[QueuedUrl]:
        return self._items.get(item_id)

    def claim_next(
        self,
        lease_seconds: int,
        now: Optional[datetime] = None,
    ) -> Optional[tuple[QueuedUrl, DomainPolicy]]:
        """
        Atomically claim the oldest new item whose domain may be fetched.

        Items without a policy, or whose policy forbids fetching, are left
        untouched.

        Returns:
            (item, policy), or None when nothing is claimable
        """
        now = now or datetime.utcnow()
        with self._lock:
            candidates = sorted(
                (i for i in self._items.values() if i.status == QueueStatus.NEW),
                key=lambda i: i.discovered_at,
            )
            for item in candidates:
                policy = self._policies.get(item.domain)
                if policy is None or not policy.allowed_to_fetch:
                    continue
                item.status = QueueStatus.PROCESSING
                item.lease_expires_at = now + timedelta(seconds=lease_seconds)
                self._save_to_file()
                return item, policy
        return None

    def mark_done(self, item_id: str) -> QueuedUrl:
        with self._lock:
            item = self._require(item_id)
            item.status = QueueStatus.DONE
            item.processed_at = datetime.utcnow()
            item.lease_expires_at = None
            self._save_to_file()
            return item

    def mark_error(self, item_id: str, message: str) -> QueuedUrl:
        """Record a terminal failure for this attempt and bump retry_count."""
        with self._lock:
            item = self._require(item_id)
            item.status = QueueStatus.ERROR
            item.last_error = message[:MAX_ERROR_LENGTH]
            item.retry_count += 1
            item.processed_at = datetime.utcnow()
            item.lease_expires_at = None
            self._save_to_file()
            return item

    def reclaim_expired(self, max_retries: int, now: Optional[datetime] = None) -> int:
        """
        Return processing items with an expired lease to the queue.

        An item that has already used its retries is marked error instead.

        Returns:
            Number of items reclaimed
        """
        now = now or datetime.utcnow()
        reclaimed = 0
        with self._lock:
            for item in self._items.values():
                if item.status != QueueStatus.PROCESSING:
                    continue
                if item.lease_expires_at is None or item.lease_expires_at > now:
                    continue
                item.retry_count += 1
                item.last_error = LEASE_EXPIRED_MESSAGE
                item.lease_expires_at = None
                if item.retry_count >= max_retries:
                    item.status = QueueStatus.ERROR
                    item.processed_at = now
                else:
                    item.status = QueueStatus.NEW
                reclaimed += 1
            if reclaimed:
                self._save_to_file()
        if reclaimed:
            logger.warning("Reclaimed %d queue items with expired leases", reclaimed)
        return reclaimed

    def requeue_errors(self, limit: int, max_retries: int) -> int:
        """
        Put failed items back to new, oldest failure first.

        Only items with retry_count below max_retries are eligible.
        """
        with self._lock:
            failed = sorted(
                (
                    i for i in self._items.values()
                    if i.status == QueueStatus.ERROR and i.retry_count < max_retries
                ),
                key=lambda i: i.processed_at or i.discovered_at,
            )[:limit]
            for item in failed:
                item.status = QueueStatus.NEW
            if failed:
                self._save_to_file()
            return len(failed)

    # =========================================================================
    # Query Operations
    # =========================================================================

    def list_all(self) -> list[QueuedUrl]:
        return list(self._items.values())

    def count_by_status(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for item in self._items.values():
            counts[item.status.value] = counts.get(item.status.value, 0) + 1
        return counts

    def recent_errors(self, limit: int = 10) -> list[QueuedUrl]:
        failed = [i for i in self._items.values() if i.status == QueueStatus.ERROR]
        failed.sort(key=lambda i: i.processed_at or i.discovered_at, reverse=True)
        return failed[:limit]

    def _require(self, item_id: str) -> QueuedUrl:
        item = self._items.get(item_id)
        if item is None:
            raise KeyError(f"Queue item not found: {item_id}")
        return item


_queue_instance: Optional[UrlQueue] = None


def get_url_queue(persist_path: Optional[str] = None) -> UrlQueue:
    """Get the URL queue singleton."""
    global _queue_instance
    if _queue_instance is None:
        _queue_instance = UrlQueue(persist_path or "data/url_queue.json")
    return _queue_instance
