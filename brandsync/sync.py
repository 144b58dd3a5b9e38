"""
Brand cache synchronization.

Keeps a local snapshot whose membership equals the set of remote brands
satisfying ``membership.is_member``. The snapshot is rebuilt from a full
paginated fetch, or reconciled from batches of partial change events.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .config import BRAND_OBJECT
from .errors import CorruptCacheEntry, IncompleteFetchError, RemoteError, ThresholdWarning
from .hubspot import RemoteClient
from .logger import StructuredLogger, get_logger
from .membership import BRAND_CACHE_PROPERTIES, WATCHED_PROPERTIES, is_member, member_filter_groups
from .models import BrandRecord
from .normalize import brand_from_remote
from .storage import diff_dict

SNAPSHOT_KEY = "hubspot-brand-cache"
TIMESTAMP_KEY = "hubspot-brand-cache-timestamp"
SIZE_WARNING_THRESHOLD = 500


class CacheState(Enum):
    NOT_BUILT = "not_built"


NOT_BUILT = CacheState.NOT_BUILT


@dataclass
class ChangeEvent:
    record_id: str
    changed_properties: Dict[str, Any] = field(default_factory=dict)


def parse_events(payload: Union[Dict[str, Any], List[Dict[str, Any]]]) -> List[ChangeEvent]:
    """
    Accept change notifications in any of the shapes the event source sends.

    Supported per-event shapes:
        {"recordId": ..., "changedProperties": {...}}
        {"objectId": ..., "properties": {...}}
        {"objectId": ..., "propertyName": "...", "propertyValue": ...}

    Events without an id are dropped.
    """
    items = payload if isinstance(payload, list) else [payload]
    events = []
    for item in items:
        if not isinstance(item, dict):
            continue
        record_id = item.get("recordId") or item.get("objectId") or item.get("id")
        if record_id is None:
            continue
        if isinstance(item.get("changedProperties"), dict):
            changed = dict(item["changedProperties"])
        elif isinstance(item.get("properties"), dict):
            changed = dict(item["properties"])
        elif item.get("propertyName"):
            changed = {item["propertyName"]: item.get("propertyValue")}
        else:
            changed = {}
        events.append(ChangeEvent(str(record_id), changed))
    return events


def _threshold_warning(count: int, limit: int) -> Optional[ThresholdWarning]:
    return ThresholdWarning(count, limit) if count > limit else None


class CacheSynchronizer:
    """
    Maintains the brand snapshot in ``store``.

    Args:
        client: Remote client used for rebuilds and record hydration
        store: Key/value store (see ``storage``)
        hydrate_missing: Fetch the full record when an event arrives for a
            brand that is not cached, so partial events can still admit it
        clock: Wall clock in epoch seconds (injectable for tests)
    """

    def __init__(
        self,
        client: RemoteClient,
        store,
        object_type: str = BRAND_OBJECT,
        properties: Optional[List[str]] = None,
        page_size: int = 100,
        max_pages: int = 20,
        page_delay: float = 0.15,
        threshold: int = SIZE_WARNING_THRESHOLD,
        hydrate_missing: bool = True,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], None] = time.sleep,
        logger: Optional[StructuredLogger] = None,
    ):
        self.client = client
        self.store = store
        self.object_type = object_type
        self.properties = properties or list(BRAND_CACHE_PROPERTIES)
        self.page_size = page_size
        self.max_pages = max_pages
        self.page_delay = page_delay
        self.threshold = threshold
        self.hydrate_missing = hydrate_missing
        self._clock = clock
        self._sleep = sleep
        self.logger = logger or get_logger()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def load_snapshot(self) -> Optional[Dict[str, Any]]:
        """Return ``{"records": {id: record}, "generatedAt": ms}`` or None."""
        try:
            snapshot = self.store.get(SNAPSHOT_KEY)
        except CorruptCacheEntry as e:
            self.logger.error("Brand snapshot unreadable; treating cache as not built", error=str(e))
            return None
        if not isinstance(snapshot, dict) or not isinstance(snapshot.get("records"), dict):
            return None
        return snapshot

    def _persist(self, records: Dict[str, Dict[str, Any]], changed: int) -> int:
        generated_at = self._now_ms()
        self.store.set_many({
            SNAPSHOT_KEY: {"records": records, "generatedAt": generated_at},
            TIMESTAMP_KEY: generated_at,
        })
        self.logger.record_snapshot_write(changed)
        return generated_at

    def rebuild(self) -> Dict[str, Any]:
        """
        Replace the snapshot with every remote brand matching the rule.

        Returns:
            ``{"pagesFetched", "recordCount", "generatedAt", "warning"}``

        Raises:
            IncompleteFetchError: a page failed or the page cap cut the fetch
                short; the old snapshot is kept
        """
        self.logger.info("Starting full brand cache rebuild", object_type=self.object_type)
        page_result = self.client.search_all(
            self.object_type,
            filter_groups=member_filter_groups(),
            properties=self.properties,
            sorts=[{"propertyName": "hs_lastmodifieddate", "direction": "DESCENDING"}],
            page_size=self.page_size,
            max_pages=self.max_pages,
            page_delay=self.page_delay,
            sleep=self._sleep,
        )
        if page_result.truncated:
            raise IncompleteFetchError(
                f"Brand fetch stopped at the {page_result.pages_fetched} page limit with more pages pending; "
                "snapshot left unchanged"
            )
        if not page_result.complete:
            raise IncompleteFetchError(
                f"Brand fetch failed after {page_result.pages_fetched} pages; snapshot left unchanged"
            )

        records: Dict[str, Dict[str, Any]] = {}
        rejected = 0
        for record in page_result.records:
            props = record.get("properties") or {}
            if not is_member(props):
                rejected += 1
                continue
            record_id = str(record["id"])
            records[record_id] = {"id": record_id, "properties": props}
        if rejected:
            self.logger.warning("Remote returned non-member brands; dropped", count=rejected)

        generated_at = self._persist(records, len(records))
        warning = _threshold_warning(len(records), self.threshold)
        if warning:
            self.logger.warning("Brand cache over size threshold", count=len(records), limit=self.threshold)
        self.logger.info(
            "Brand cache rebuilt",
            pages=page_result.pages_fetched,
            total=len(records),
        )
        return {
            "pagesFetched": page_result.pages_fetched,
            "recordCount": len(records),
            "generatedAt": generated_at,
            "warning": warning.message if warning else None,
        }

    def _hydrate(self, record_id: str) -> Dict[str, Any]:
        record = self.client.get_by_id(self.object_type, record_id, self.properties)
        if not record:
            return {}
        return dict(record.get("properties") or {})

    def apply_events(self, events: Iterable[ChangeEvent]) -> Dict[str, Any]:
        """
        Reconcile a batch of partial change events into the snapshot.

        For each event the rule is evaluated over cached properties merged
        with the incoming ones (incoming wins). The snapshot and its
        timestamp are written only if the batch changed something.
        """
        snapshot = self.load_snapshot()
        records: Dict[str, Dict[str, Any]] = dict(snapshot["records"]) if snapshot else {}
        added = removed = updated = 0

        for event in events:
            record_id = str(event.record_id)
            existing = records.get(record_id)
            if existing is not None:
                base = dict(existing.get("properties") or {})
            elif self.hydrate_missing:
                base = self._hydrate(record_id)
            else:
                base = {}
            merged = {**base, **event.changed_properties}

            if is_member(merged):
                if existing is None:
                    records[record_id] = {"id": record_id, "properties": merged}
                    added += 1
                elif diff_dict(existing.get("properties") or {}, merged):
                    records[record_id] = {"id": record_id, "properties": merged}
                    updated += 1
            elif existing is not None:
                del records[record_id]
                removed += 1

        changed = bool(added or removed or updated)
        result: Dict[str, Any] = {
            "added": added,
            "removed": removed,
            "updated": updated,
            "total": len(records),
            "changed": changed,
            "generatedAt": snapshot.get("generatedAt") if snapshot else None,
            "warning": None,
        }
        if not changed:
            self.logger.debug("Event batch produced no cache changes", total=len(records))
            return result

        result["generatedAt"] = self._persist(records, added + removed + updated)
        warning = _threshold_warning(len(records), self.threshold)
        if warning:
            result["warning"] = warning.message
            self.logger.warning("Brand cache over size threshold", count=len(records), limit=self.threshold)
        self.logger.info(
            "Brand cache reconciled",
            added=added,
            removed=removed,
            updated=updated,
            total=len(records),
        )
        return result

    def members(self) -> List[BrandRecord]:
        """Cached brands as canonical records (empty if never built)."""
        snapshot = self.load_snapshot()
        if snapshot is None:
            return []
        return [brand_from_remote(r) for r in snapshot["records"].values()]

    def query(self) -> Union[Dict[str, Any], CacheState]:
        """
        Display projection of the snapshot.

        Returns ``NOT_BUILT`` if no snapshot was ever written, otherwise
        ``{"records", "total", "generatedAt", "cacheAgeMinutes", "warning"}``.
        """
        snapshot = self.load_snapshot()
        if snapshot is None:
            return NOT_BUILT

        rows = []
        for raw in snapshot["records"].values():
            brand = brand_from_remote(raw)
            rows.append({
                "id": brand.id,
                "name": brand.name or "Unknown",
                "category": brand.category or "N/A",
                "subcategories": brand.subcategories,
                "status": brand.client_status or "Unknown",
                "relationshipType": brand.relationship_type or "",
                "clientType": brand.client_type or "",
                "partnershipCount": brand.partnership_count,
                "dealsCount": brand.deals_count,
                "hasOwner": brand.owner_assigned,
                "lastModified": brand.last_modified_at,
                "oneSheetLink": brand.one_sheet_link,
                "recordUrl": self.client.record_url(self.object_type, brand.id),
            })

        generated_at = snapshot.get("generatedAt")
        age = None
        if generated_at is not None:
            age = round((self._now_ms() - int(generated_at)) / 60000)
        warning = _threshold_warning(len(rows), self.threshold)
        return {
            "records": rows,
            "total": len(rows),
            "generatedAt": generated_at,
            "cacheAgeMinutes": age,
            "warning": warning.message if warning else None,
        }


def subscribe_to_changes(
    client: RemoteClient,
    app_id: str,
    target_url: str,
    object_type: str = BRAND_OBJECT,
    properties: Sequence[str] = tuple(WATCHED_PROPERTIES),
    logger: Optional[StructuredLogger] = None,
) -> List[Dict[str, Any]]:
    """
    Register change subscriptions for every property the membership rule
    reads, plus record creation.

    A failed subscription is reported in the result list and does not stop
    the others.
    """
    logger = logger or get_logger()
    targets: List[Tuple[str, Optional[str]]] = [("propertyChange", p) for p in properties]
    targets.append(("creation", None))

    results = []
    for event_type, property_name in targets:
        entry: Dict[str, Any] = {"eventType": event_type, "property": property_name}
        try:
            created = client.create_webhook_subscription(
                app_id,
                object_type,
                property_name,
                target_url,
                event_type=event_type,
            )
        except RemoteError as e:
            entry.update(status="failed", error=e.to_dict())
        else:
            entry.update(status="success", subscriptionId=created.get("id"))
        results.append(entry)

    failed = sum(1 for r in results if r["status"] != "success")
    logger.info("Change subscriptions registered", total=len(results), failed=failed)
    return results
