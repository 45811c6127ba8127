"""
Filtered Dashboard - re-aggregation over the retained record stores

Recomputes the full dashboard payload for a filter combination straight
from the normalized in-memory records: no fetch, no re-normalization.
The matching records are folded into a fresh SalesRollup in one pass and
handed to the same build_payload() the full rebuild uses.

Candidates come from a RecordIndex built when the snapshot is published:
the smallest district / year / segment group covering the filters is
scanned, and only the remaining filter fields are checked per record.

Also hosts paginated transaction search and the filter-option listing,
which read the same stores.

Empty-result contract:
    build_filtered_dashboard() returns None when no sale matches the
    filters. A payload with totalTx == 0 is never produced.
"""

import logging
import math
import random
from collections import defaultdict
from dataclasses import dataclass
from operator import attrgetter
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from config import EngineConfig
from constants import (
    AREA_SQFT_RANGES,
    SALE_TYPES,
    SEGMENTS,
    TENURE_TYPES,
    district_sort_key,
)
from models.transaction import RentalRecord, SaleRecord
from services.aggregation_service import SalesRollup
from services.dashboard_service import NAVIGATION_KEYS, build_payload
from services.rental_aggregate import RentalAggregate
from utils.normalize import (
    ValidationError,
    to_choice,
    to_district,
    to_int,
    to_range,
    to_str,
    to_year,
)
from utils.timing import log_timing

logger = logging.getLogger('filtered_dashboard')

# Filtered builds are interactive; anything slower is logged
FILTERED_SLOW_MS = 50

MAX_QUERY_LENGTH = 200
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500

SALES_SORTS = {
    'date_desc': (lambda r: r.period, True),
    'date_asc': (lambda r: r.period, False),
    'price_desc': (lambda r: r.price, True),
    'price_asc': (lambda r: r.price, False),
    'psf_desc': (lambda r: r.psf, True),
    'psf_asc': (lambda r: r.psf, False),
    'area_desc': (lambda r: r.area, True),
    'area_asc': (lambda r: r.area, False),
}

RENTAL_SORTS = {
    'date_desc': (lambda r: r.period, True),
    'date_asc': (lambda r: r.period, False),
    'rent_desc': (lambda r: r.rent, True),
    'rent_asc': (lambda r: r.rent, False),
    'psf_desc': (lambda r: r.rent_psf, True),
    'psf_asc': (lambda r: r.rent_psf, False),
    'area_desc': (lambda r: r.area, True),
    'area_asc': (lambda r: r.area, False),
}


# ============================================================================
# FILTERS
# ============================================================================

@dataclass(frozen=True)
class DashboardFilters:
    """Validated dashboard filters. Rentals honour district, year and segment only."""

    district: Optional[str] = None
    year: Optional[str] = None
    segment: Optional[str] = None
    property_type: Optional[str] = None
    tenure: Optional[str] = None

    @classmethod
    def from_params(cls, params: Optional[Mapping[str, Any]]) -> 'DashboardFilters':
        """
        Build filters from caller parameters (camelCase keys as sent by the UI).

        Raises:
            ValidationError: on a malformed district, year, segment or tenure
        """
        params = params or {}
        return cls(
            district=to_district(params.get('district'), field='district'),
            year=to_year(params.get('year'), field='year'),
            segment=to_choice(params.get('segment'), SEGMENTS, field='segment'),
            property_type=to_str(params.get('propertyType'), max_length=100),
            tenure=to_choice(params.get('tenure'), TENURE_TYPES, field='tenure'),
        )

    def is_empty(self) -> bool:
        return not any((self.district, self.year, self.segment, self.property_type, self.tenure))

    def as_dict(self) -> Dict[str, str]:
        applied = {
            'district': self.district,
            'year': self.year,
            'segment': self.segment,
            'propertyType': self.property_type,
            'tenure': self.tenure,
        }
        return {k: v for k, v in applied.items() if v}

    def sale_criteria(self) -> Dict[str, str]:
        """Record attribute -> required value, for the sale filters in use."""
        criteria = {
            'district': self.district,
            'year': self.year,
            'segment': self.segment,
            'property_type': self.property_type,
            'tenure': self.tenure,
        }
        return {k: v for k, v in criteria.items() if v}

    def rental_criteria(self) -> Dict[str, str]:
        criteria = {'district': self.district, 'year': self.year, 'segment': self.segment}
        return {k: v for k, v in criteria.items() if v}

    def matches_sale(self, r: SaleRecord) -> bool:
        return all(getattr(r, k) == v for k, v in self.sale_criteria().items())

    def matches_rental(self, r: RentalRecord) -> bool:
        return all(getattr(r, k) == v for k, v in self.rental_criteria().items())


# ============================================================================
# RECORD INDEX
# ============================================================================

INDEXED_FIELDS = ('district', 'year', 'segment')


@dataclass(frozen=True)
class RecordIndex:
    """Store records grouped by each indexed field, groups in store order."""

    groups: Dict[str, Dict[str, Tuple]]

    @classmethod
    def build(cls, records: Iterable) -> 'RecordIndex':
        groups = {name: defaultdict(list) for name in INDEXED_FIELDS}
        by_district, by_year, by_segment = (groups[name] for name in INDEXED_FIELDS)
        for r in records:
            by_district[r.district].append(r)
            by_year[r.year].append(r)
            by_segment[r.segment].append(r)
        return cls(groups={
            name: {value: tuple(rs) for value, rs in buckets.items()}
            for name, buckets in groups.items()
        })

    def group(self, name: str, value: str) -> Optional[Tuple]:
        """Records with `name` == `value`; None when `name` is not indexed."""
        buckets = self.groups.get(name)
        if buckets is None:
            return None
        return buckets.get(value, ())


def select_records(
    store: Sequence,
    criteria: Mapping[str, str],
    index: Optional[RecordIndex] = None,
) -> List:
    """Records of `store` matching every criterion, in store order."""
    if not criteria:
        return list(store)

    pool, used = store, None
    if index is not None:
        for name, value in criteria.items():
            group = index.group(name, value)
            if group is not None and (used is None or len(group) < len(pool)):
                pool, used = group, name

    remaining = [(name, value) for name, value in criteria.items() if name != used]
    if not remaining:
        return list(pool)
    getter = attrgetter(*(name for name, _ in remaining))
    wanted = remaining[0][1] if len(remaining) == 1 else tuple(value for _, value in remaining)
    return [r for r in pool if getter(r) == wanted]


# ============================================================================
# FILTERED RE-AGGREGATION
# ============================================================================

@log_timing("filtered dashboard", slow_ms=FILTERED_SLOW_MS, log=logger)
def build_filtered_dashboard(
    sales: Sequence[SaleRecord],
    rentals: Sequence[RentalRecord],
    filters: DashboardFilters,
    base_payload: Optional[Mapping[str, Any]] = None,
    yields: Optional[Dict[str, float]] = None,
    config: Optional[EngineConfig] = None,
    rng: Optional[random.Random] = None,
    sales_index: Optional[RecordIndex] = None,
    rental_index: Optional[RecordIndex] = None,
) -> Optional[Dict[str, Any]]:
    """
    Dashboard payload scoped to `filters`, or None when no sale matches.

    Args:
        sales, rentals: retained stores of the published snapshot
        base_payload: full dashboard payload; its navigation indexes and
            lastUpdated are reused so compare and search stay market-wide.
            With no filters applied it is returned as is.
        yields: segment yields computed by the full build
        sales_index, rental_index: indexes over the same stores
    """
    config = config or EngineConfig()
    rng = rng or random.Random(config.random_seed)

    if filters.is_empty() and base_payload is not None and sales:
        payload = dict(base_payload)
        payload['appliedFilters'] = {}
        payload['filteredSalesCount'] = len(sales)
        payload['filteredRentalCount'] = len(rentals)
        return payload

    matched: List[SaleRecord] = select_records(sales, filters.sale_criteria(), sales_index)
    if not matched:
        logger.info(f"No sales match filters {filters.as_dict()}")
        return None

    rollup = SalesRollup(config, rng)
    for r in matched:
        rollup.add_record(r)

    matched_rentals = select_records(rentals, filters.rental_criteria(), rental_index)
    rental_aggregate = RentalAggregate.from_records(
        matched_rentals, rng=rng, median_capacity=config.rental_median_capacity
    )

    navigation = None
    if base_payload is not None:
        navigation = {k: base_payload.get(k) for k in NAVIGATION_KEYS if k in base_payload}

    payload = build_payload(
        rollup,
        matched,
        rental_aggregate,
        yields=yields,
        config=config,
        rng=rng,
        navigation=navigation,
    )
    if base_payload is not None and base_payload.get('lastUpdated'):
        payload['lastUpdated'] = base_payload['lastUpdated']
    payload['appliedFilters'] = filters.as_dict()
    payload['filteredSalesCount'] = len(matched)
    payload['filteredRentalCount'] = len(matched_rentals)
    return payload


# ============================================================================
# SEARCH
# ============================================================================

def _page_params(page, limit, sort, sorts) -> tuple:
    page = to_int(page, default=1, minimum=1, field='page')
    limit = to_int(limit, default=DEFAULT_PAGE_SIZE, minimum=1, maximum=MAX_PAGE_SIZE, field='limit')
    sort = to_choice(sort, sorts.keys(), field='sort') or 'date_desc'
    return page, limit, sort


def _paginate(results: list, page: int, limit: int, sort: str, sorts, row) -> Dict[str, Any]:
    key, reverse = sorts[sort]
    results = sorted(results, key=key, reverse=reverse)
    total = len(results)
    start = (page - 1) * limit
    return {
        'total': total,
        'page': page,
        'pages': math.ceil(total / limit),
        'limit': limit,
        'results': [row(r) for r in results[start:start + limit]],
    }


def _text_match(q: Optional[str]):
    if not q:
        return lambda r: True
    ql = q.lower()
    return lambda r: ql in r.project.lower() or ql in r.street.lower()


def _sale_search_row(r: SaleRecord) -> Dict[str, Any]:
    return {
        'date': r.period, 'project': r.project, 'street': r.street,
        'district': r.district, 'segment': r.segment, 'area': r.area,
        'price': r.price, 'psf': r.psf, 'floor': r.floor_band or '-',
        'type': r.sale_type, 'propertyType': r.property_type, 'tenure': r.tenure,
    }


def _rental_search_row(r: RentalRecord) -> Dict[str, Any]:
    return {
        'period': r.period, 'project': r.project, 'street': r.street,
        'district': r.district, 'segment': r.segment, 'area': r.area_label,
        'bedrooms': r.bedrooms, 'rent': r.rent, 'rentPsf': r.rent_psf,
        'contracts': r.contracts, 'leaseDate': r.lease_date,
    }


def search_sales(
    store: Sequence[SaleRecord],
    q: Optional[str] = None,
    district: Optional[str] = None,
    segment: Optional[str] = None,
    sale_type: Optional[str] = None,
    tenure: Optional[str] = None,
    page: Any = 1,
    limit: Any = DEFAULT_PAGE_SIZE,
    sort: Optional[str] = 'date_desc',
) -> Dict[str, Any]:
    """
    Paginated sale transaction search.

    `q` matches project or street (case-insensitive, first 200 chars).

    Raises:
        ValidationError: on malformed filters, page, limit or sort
    """
    q = to_str(q, max_length=MAX_QUERY_LENGTH)
    district = to_district(district, field='district')
    segment = to_choice(segment, SEGMENTS, field='segment')
    sale_type = to_choice(sale_type, SALE_TYPES, field='type')
    tenure = to_choice(tenure, TENURE_TYPES, field='tenure')
    page, limit, sort = _page_params(page, limit, sort, SALES_SORTS)

    text_match = _text_match(q)
    results = [
        r for r in store
        if text_match(r)
        and (not district or r.district == district)
        and (not segment or r.segment == segment)
        and (not sale_type or r.sale_type == sale_type)
        and (not tenure or r.tenure == tenure)
    ]
    return _paginate(results, page, limit, sort, SALES_SORTS, _sale_search_row)


def search_rentals(
    store: Sequence[RentalRecord],
    q: Optional[str] = None,
    district: Optional[str] = None,
    segment: Optional[str] = None,
    bedrooms: Optional[str] = None,
    area_range: Optional[str] = None,
    page: Any = 1,
    limit: Any = DEFAULT_PAGE_SIZE,
    sort: Optional[str] = 'date_desc',
) -> Dict[str, Any]:
    """
    Paginated rental contract search.

    `area_range` is "lo-hi" in sqft, lower bound inclusive.
    """
    q = to_str(q, max_length=MAX_QUERY_LENGTH)
    district = to_district(district, field='district')
    segment = to_choice(segment, SEGMENTS, field='segment')
    bedrooms = to_str(bedrooms, max_length=10)
    area = to_range(area_range, field='areaSqft')
    page, limit, sort = _page_params(page, limit, sort, RENTAL_SORTS)

    text_match = _text_match(q)
    results = [
        r for r in store
        if text_match(r)
        and (not district or r.district == district)
        and (not segment or r.segment == segment)
        and (not bedrooms or r.bedrooms == bedrooms)
        and (not area or area[0] <= r.area < area[1])
    ]
    return _paginate(results, page, limit, sort, RENTAL_SORTS, _rental_search_row)


def get_filter_options(sales: Sequence[SaleRecord], rentals: Sequence[RentalRecord]) -> Dict[str, Any]:
    """Distinct values present in the stores, for filter dropdowns."""
    bedrooms = {r.bedrooms for r in rentals if r.has_bedroom_count}
    return {
        'districts': sorted({r.district for r in sales}, key=district_sort_key),
        'segments': sorted({r.segment for r in sales}),
        'types': sorted({r.sale_type for r in sales}),
        'tenures': sorted({r.tenure for r in sales}),
        'propertyTypes': sorted({r.property_type for r in sales}),
        'years': sorted({r.year for r in sales}),
        'bedrooms': sorted(bedrooms, key=int),
        'areaSqftRanges': [dict(r) for r in AREA_SQFT_RANGES],
    }


__all__ = [
    'DashboardFilters',
    'ValidationError',
    'build_filtered_dashboard',
    'search_sales',
    'search_rentals',
    'get_filter_options',
]
