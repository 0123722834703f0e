"""
Builds the enriched property view models used by the dashboard and the property detail page.

Every related table is read with its own request. Properties are enriched in parallel on a
thread pool, and a failing related fetch only blanks that one field: the property is still
returned and the shared `error` message on the result is set.

Results are cached per (kind, id) key. Identical requests that arrive while a load is running
wait on the same in-flight future instead of issuing their own backend calls.
"""
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import date
from typing import NamedTuple, Optional

from constants import (
    ADDRESSES_TABLE,
    DOCUMENTS_TABLE,
    ENRICHMENT_MAX_WORKERS,
    LOAD_PROPERTIES_ERROR,
    MAINTENANCE_TASKS_TABLE,
    PROPERTIES_TABLE,
    TRANSACTIONS_TABLE,
)
from logic.lease_logic import split_leases
from services.lease_service import get_leases_by_property, get_tenant_for_lease

log = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 30
NO_ADDRESS = "Address not available"


class RequestCancelled(Exception):
    """Raised inside a load once its CancellationToken has been cancelled."""


class CancellationToken:
    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise RequestCancelled()


class EnrichmentResult(NamedTuple):
    properties_by_id: dict
    error: Optional[str]


def empty_enriched_property(property_row: dict) -> dict:
    return {
        'raw_property': property_row,
        'raw_active_lease': None,
        'raw_past_leases': None,
        'raw_address': None,
        'raw_tenant': None,
        'raw_documents': None,
        'raw_transactions': None,
        'raw_tasks': None,
    }


def format_address(address: dict | None) -> str:
    """Single-line address, e.g. "12 Main St, #4, Springfield, IL, 62701"."""
    if not address:
        return NO_ADDRESS
    street = ' '.join(p for p in (address.get('street_number'), address.get('street')) if p)
    parts = [
        street,
        f"#{address['apartment_number']}" if address.get('apartment_number') else '',
        address.get('city') or '',
        address.get('state') or '',
        address.get('zip_code') or '',
    ]
    line = ', '.join(p for p in parts if p)
    return line or NO_ADDRESS


def property_status(enriched: dict) -> str:
    prop = enriched.get('raw_property') or {}
    if prop.get('property_status') in ('maintenance', 'listed'):
        return prop['property_status']
    lease = enriched.get('raw_active_lease')
    return 'occupied' if lease and lease.get('is_lease_active') else 'vacant'


def property_card(enriched: dict) -> dict:
    """Flattens an enriched property into the dashboard card view model."""
    prop = enriched.get('raw_property') or {}
    lease = enriched.get('raw_active_lease') or {}
    return {
        'id': prop.get('id'),
        'title': prop.get('title'),
        'address': format_address(enriched.get('raw_address')),
        'status': property_status(enriched),
        'rental_price': lease.get('rent_amount'),
        'currency': lease.get('currency') or prop.get('currency'),
        'payment_frequency': lease.get('payment_frequency'),
        'bedrooms': prop.get('bedrooms'),
        'bathrooms': prop.get('bathrooms'),
        'size': prop.get('size'),
        'unit_system': prop.get('unit_system'),
        'property_type': prop.get('property_type'),
    }


class PropertyEnricher:
    """
    Loads properties with their related rows through a BackendClient.

    `detail=False` (dashboard) fetches the address and the active lease only. `detail=True`
    (property page) also fetches past leases, tenant, documents, transactions and tasks.
    """

    def __init__(self, client, max_workers: int = ENRICHMENT_MAX_WORKERS,
                 cache_ttl_seconds: float = CACHE_TTL_SECONDS):
        self.client = client
        self.cache_ttl_seconds = cache_ttl_seconds
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='enrich')
        self._lock = threading.Lock()
        self._cache = {}
        self._in_flight = {}

    # --- public API -----------------------------------------------------------------

    def load_user_properties(self, user_id: str, token: CancellationToken = None,
                             force: bool = False, today: date = None) -> EnrichmentResult:
        return self._load(('user', user_id),
                          lambda t: self._enrich_user_properties(user_id, t, today), token, force)

    def load_property(self, property_row_or_id, token: CancellationToken = None,
                      force: bool = False, today: date = None) -> EnrichmentResult:
        property_id = property_row_or_id.get('id') if isinstance(property_row_or_id, dict) else property_row_or_id
        return self._load(('property', property_id),
                          lambda t: self._enrich_single_property(property_row_or_id, t, today), token, force)

    def invalidate(self, user_id: str = None, property_id: str = None) -> None:
        with self._lock:
            if user_id is not None:
                self._cache.pop(('user', user_id), None)
            if property_id is not None:
                self._cache.pop(('property', property_id), None)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)

    # --- cache and de-duplication ---------------------------------------------------

    def _cached(self, key):
        entry = self._cache.get(key)
        if entry is None:
            return None
        stored_at, result = entry
        if time.monotonic() - stored_at > self.cache_ttl_seconds:
            del self._cache[key]
            return None
        return result

    def _load(self, key, loader, token, force) -> EnrichmentResult:
        token = token or CancellationToken()
        with self._lock:
            if not force:
                cached = self._cached(key)
                if cached is not None:
                    log.info(f"Serving {key[0]} {key[1]} from enrichment cache.")
                    return cached
            future = self._in_flight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._in_flight[key] = future

        if not owner:
            log.info(f"Joining in-flight enrichment for {key[0]} {key[1]}.")
            return future.result()

        try:
            result = loader(token)
            token.raise_if_cancelled()
        except BaseException as e:
            with self._lock:
                self._in_flight.pop(key, None)
            future.set_exception(e)
            raise
        with self._lock:
            self._in_flight.pop(key, None)
            # Partial failures are not cached so a retry fetches again
            if result.error is None:
                self._cache[key] = (time.monotonic(), result)
        future.set_result(result)
        return result

    # --- loaders --------------------------------------------------------------------

    def _enrich_user_properties(self, user_id, token, today) -> EnrichmentResult:
        token.raise_if_cancelled()
        rows = self.client.select(
            PROPERTIES_TABLE, [('user_id', 'eq', user_id)], order_by='created_at', descending=True,
        ).unwrap()
        return self._enrich_many(rows or [], token, detail=False, today=today)

    def _enrich_single_property(self, property_row_or_id, token, today) -> EnrichmentResult:
        token.raise_if_cancelled()
        if isinstance(property_row_or_id, dict):
            row = property_row_or_id
        else:
            row = self.client.select_one(PROPERTIES_TABLE, property_row_or_id).unwrap()
        if row is None:
            return EnrichmentResult({}, None)
        return self._enrich_many([row], token, detail=True, today=today)

    def _enrich_many(self, rows: list, token, detail: bool, today) -> EnrichmentResult:
        futures = {
            row['id']: self._executor.submit(self._enrich_one, row, token, detail, today)
            for row in rows
        }
        properties_by_id = {}
        failed = False
        for property_id, fut in futures.items():
            enriched, had_error = fut.result()
            properties_by_id[property_id] = enriched
            failed = failed or had_error
        token.raise_if_cancelled()
        return EnrichmentResult(properties_by_id, LOAD_PROPERTIES_ERROR if failed else None)

    def _enrich_one(self, row: dict, token, detail: bool, today) -> tuple:
        """Returns (enriched property, whether any related fetch failed)."""
        enriched = empty_enriched_property(row)
        property_id = row['id']
        failed = False

        def fetch(field, fn):
            nonlocal failed
            token.raise_if_cancelled()
            try:
                enriched[field] = fn()
            except RequestCancelled:
                raise
            except Exception as e:
                log.error(f"Error fetching {field} for property {property_id}: {e}")
                failed = True

        if row.get('address_id'):
            fetch('raw_address', lambda: self.client.select_one(ADDRESSES_TABLE, row['address_id']).unwrap())

        leases = None

        def load_leases():
            nonlocal leases
            leases = get_leases_by_property(self.client, property_id)
            current, others = split_leases(leases, today)
            if detail:
                enriched['raw_past_leases'] = others
            return current

        fetch('raw_active_lease', load_leases)

        if not detail:
            return enriched, failed

        if leases is not None:
            fetch('raw_tenant', lambda: get_tenant_for_lease(self.client, enriched['raw_active_lease']))
        fetch('raw_documents', lambda: self._related(DOCUMENTS_TABLE, property_id, 'created_at'))
        fetch('raw_transactions', lambda: self._related(TRANSACTIONS_TABLE, property_id, 'transaction_date'))
        fetch('raw_tasks', lambda: self._related(MAINTENANCE_TASKS_TABLE, property_id, 'created_at'))
        return enriched, failed

    def _related(self, table: str, property_id: str, order_by: str) -> list:
        return self.client.select(
            table, [('property_id', 'eq', property_id)], order_by=order_by, descending=True,
        ).unwrap() or []

