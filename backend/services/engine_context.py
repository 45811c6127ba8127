"""
Engine Context - owns the published snapshot and drives rebuilds

The context replaces module-level state: the host creates one EngineContext
and injects it wherever dashboard, filter, search or project lookups are
served.

Publishing model:
    A rebuild normalizes and aggregates into brand-new stores, then swaps
    the snapshot reference in a single assignment. Readers take the
    reference once per call, so they see either the old snapshot or the
    new one, never a half-built store. Reads take no lock.

Single-flight:
    At most one rebuild runs at a time. A rebuild requested while another
    is in flight waits for it and receives the same payload (or the same
    exception). A failed rebuild leaves the previous snapshot published.

Usage:
    ctx = EngineContext(EngineConfig.from_env())
    ctx.rebuild(lambda: (fetch_sales_groups(), fetch_rental_groups()))
    payload = ctx.filtered({'district': 'D09', 'year': '2024'})
"""

import logging
import random
import threading
from concurrent.futures import Future
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from config import EngineConfig
from models.transaction import RentalRecord, SaleRecord
from services.aggregation_service import StreamingAggregator
from services.bedroom_model import EMPTY_MODEL, BedroomModel
from services.filtered_dashboard import (
    DashboardFilters,
    RecordIndex,
    build_filtered_dashboard,
    get_filter_options,
    search_rentals,
    search_sales,
)
from services.json_serializer import safe_json_dumps
from services.normalizer import TransactionNormalizer
from services.project_service import ProjectService
from services.rental_aggregate import RentalAggregate
from utils.timing import log_timing

logger = logging.getLogger('engine')

FetchResult = Tuple[Iterable[Any], Iterable[Any]]


@dataclass(frozen=True)
class EngineSnapshot:
    """Everything one full rebuild produced. Never mutated after publish."""

    generation: int
    sales: Tuple[SaleRecord, ...]
    rentals: Tuple[RentalRecord, ...]
    bedroom_model: BedroomModel
    payload: Dict[str, Any]
    computed_yields: Optional[Dict[str, float]]
    project_index: Dict[str, Any] = field(default_factory=dict)
    sales_index: Optional[RecordIndex] = None
    rental_index: Optional[RecordIndex] = None
    built_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def _newest_first(records: List, cap: int, label: str) -> Tuple:
    records = sorted(records, key=lambda r: -r.ordinal)
    if len(records) > cap:
        logger.warning(f"Trimming {label} store from {len(records)} to {cap} newest records")
        records = records[:cap]
    return tuple(records)


class EngineContext:
    def __init__(self, config: Optional[EngineConfig] = None, rng: Optional[random.Random] = None):
        self.config = config or EngineConfig()
        self._rng = rng or random.Random(self.config.random_seed)
        self._snapshot: Optional[EngineSnapshot] = None
        self._lock = threading.Lock()
        self._inflight: Optional[Future] = None
        self.projects = ProjectService(cache_size=self.config.project_cache_size)

    @property
    def snapshot(self) -> Optional[EngineSnapshot]:
        return self._snapshot

    # ------------------------------------------------------------------
    # Rebuild
    # ------------------------------------------------------------------

    def rebuild(self, fetch: Callable[[], FetchResult]) -> Dict[str, Any]:
        """
        Run a full rebuild, or join the one already in flight.

        Args:
            fetch: returns (sales_groups, rental_groups) of raw URA project dicts

        Returns:
            The published dashboard payload
        """
        with self._lock:
            future = self._inflight
            leader = future is None
            if leader:
                future = self._inflight = Future()

        if not leader:
            logger.info("Rebuild already in flight - waiting for its result")
            return future.result()

        try:
            payload = self._rebuild(fetch)
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(payload)
            return payload
        finally:
            with self._lock:
                self._inflight = None

    @log_timing("full rebuild", log=logger)
    def _rebuild(self, fetch: Callable[[], FetchResult]) -> Dict[str, Any]:
        logger.info("Rebuild started")
        sales_groups, rental_groups = fetch()
        config = self.config

        aggregator = StreamingAggregator(config, self._rng)
        for group in sales_groups:
            aggregator.add(group)
        if aggregator.skipped_groups:
            logger.warning(f"Skipped {aggregator.skipped_groups} unusable sales groups")

        segment_lookup = {name: p.segment for name, p in aggregator.rollup.by_project.items()}
        normalizer = TransactionNormalizer()
        rentals = [
            record
            for group in rental_groups
            for record in normalizer.map_rental_project(group, segment_lookup=segment_lookup)
        ]
        normalizer.log_summary('rentals')
        rentals = _newest_first(rentals, config.max_rental_records, 'rental')

        rental_aggregate = RentalAggregate.from_records(
            rentals, rng=self._rng, median_capacity=config.rental_median_capacity
        )
        if rental_aggregate is not None:
            rental_aggregate.log_summary()
        bedroom_model = BedroomModel.from_rentals(rentals) if rentals else EMPTY_MODEL

        payload = aggregator.build(rental_aggregate)
        sales = _newest_first(aggregator.store, config.max_sales_records, 'sales')

        previous = self._snapshot
        snapshot = EngineSnapshot(
            generation=(previous.generation + 1) if previous else 1,
            sales=sales,
            rentals=rentals,
            bedroom_model=bedroom_model,
            payload=payload,
            computed_yields=aggregator.computed_yields,
            project_index=payload.get('projIndex', {}),
            sales_index=RecordIndex.build(sales),
            rental_index=RecordIndex.build(rentals),
        )
        self._publish(snapshot)
        return payload

    def _publish(self, snapshot: EngineSnapshot) -> None:
        self._snapshot = snapshot
        self.projects.clear()
        logger.info(
            f"Published snapshot #{snapshot.generation}: {len(snapshot.sales)} sales, "
            f"{len(snapshot.rentals)} rentals (built {snapshot.built_at.isoformat()})"
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def dashboard(self) -> Optional[Dict[str, Any]]:
        snapshot = self._snapshot
        return snapshot.payload if snapshot else None

    def dashboard_json(self, **kwargs) -> Optional[str]:
        """Published payload as a JSON string, for snapshot writers and HTTP hosts."""
        payload = self.dashboard()
        return safe_json_dumps(payload, **kwargs) if payload is not None else None

    def filtered(self, filters: Union[DashboardFilters, Mapping[str, Any], None]) -> Optional[Dict[str, Any]]:
        """
        Dashboard payload for a filter combination; None when nothing matches
        or no snapshot has been published yet.

        Raises:
            ValidationError: on malformed filter values
        """
        if not isinstance(filters, DashboardFilters):
            filters = DashboardFilters.from_params(filters)
        snapshot = self._snapshot
        if snapshot is None:
            return None
        return build_filtered_dashboard(
            snapshot.sales,
            snapshot.rentals,
            filters,
            base_payload=snapshot.payload,
            yields=snapshot.computed_yields,
            config=self.config,
            rng=random.Random(self.config.random_seed),
            sales_index=snapshot.sales_index,
            rental_index=snapshot.rental_index,
        )

    def project(self, name: str) -> Optional[Dict[str, Any]]:
        return self.projects.get_project(self._snapshot, name)

    def search_sales(self, **params) -> Optional[Dict[str, Any]]:
        snapshot = self._snapshot
        return search_sales(snapshot.sales, **params) if snapshot else None

    def search_rentals(self, **params) -> Optional[Dict[str, Any]]:
        snapshot = self._snapshot
        return search_rentals(snapshot.rentals, **params) if snapshot else None

    def filter_options(self) -> Optional[Dict[str, Any]]:
        snapshot = self._snapshot
        return get_filter_options(snapshot.sales, snapshot.rentals) if snapshot else None
