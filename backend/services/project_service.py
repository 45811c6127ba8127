"""
Project Service - per-project detail from the retained stores

Derives everything the project page needs from the published snapshot:
current PSF, quarterly trends, floor premium, year x floor heat map,
bedroom breakdowns (via the bedroom model) and nearby projects. Nothing
is fetched; an unknown project returns None.

Results are held in a small insertion-ordered cache that the engine
context clears whenever a new snapshot is published.
"""

import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

from constants import DEFAULT_SEGMENT, FLOOR_BANDS
from models.transaction import RentalRecord, SaleRecord
from utils.cache import BoundedCache
from utils.numeric import avg, gross_yield_pct, median, pct_change, round_half_up, round_int
from utils.periods import latest_period, month_cutoff, quarter_sort_key

logger = logging.getLogger('project')

CURRENT_PSF_QUARTER_WINDOWS = (1, 2, 4)
CURRENT_PSF_MIN_TX = 3
TREND_QUARTERS = 8
FLOOR_PREMIUM_MONTHS = 12
THIN_BAND_TX = 3
HEATMAP_YEARS = 7
SCATTER_POINTS = 80
NEARBY_LIMIT = 15
SIZE_PERCENTILES = (0.05, 0.15, 0.3, 0.5, 0.7, 0.85, 0.95)


def _avg_of(values: List[float]) -> int:
    return avg(sum(values), len(values))


def _bed_sort_key(label: str):
    return [int(p) if p.isdigit() else 0 for p in label.split('/')]


def _period_range(first: str, last: str) -> str:
    return first if first == last else f"{first}-{last}"


def _band_bounds(band: str):
    lo, hi = band.split('-')
    return int(lo), int(hi)


def _bed_year_averages(records, infer, value) -> Dict[str, Dict[str, int]]:
    """Average of `value` per inferred bedroom label and year; "2/3" counts toward both."""
    sums: Dict[str, Dict[str, List[float]]] = defaultdict(lambda: defaultdict(lambda: [0.0, 0]))
    for r in records:
        beds = infer(r)
        if not beds:
            continue
        for bt in beds.split('/'):
            acc = sums[bt][r.year]
            acc[0] += value(r)
            acc[1] += 1
    return {
        bt: {y: avg(s, n) for y, (s, n) in sorted(by_year.items())}
        for bt, by_year in sums.items()
    }


def _current_psf(txs: List[SaleRecord], quarters: List[str], years: List[str]):
    for window in CURRENT_PSF_QUARTER_WINDOWS:
        w_qtrs = quarters[-window:]
        w_set = set(w_qtrs)
        w_tx = [t for t in txs if t.quarter in w_set]
        if len(w_tx) >= CURRENT_PSF_MIN_TX:
            return w_tx, _period_range(w_qtrs[0], w_qtrs[-1])
    latest_year = years[-1]
    lat_tx = [t for t in txs if t.year == latest_year]
    if lat_tx:
        return lat_tx, latest_year
    return txs, 'all'


def _floor_premium(txs: List[SaleRecord], reference_period: str, fallback_psf: int) -> Dict[str, Any]:
    cutoff = month_cutoff(reference_period, FLOOR_PREMIUM_MONTHS)
    recent = [t for t in txs if t.period >= cutoff]
    if sum(1 for t in recent if t.floor_mid > 0) >= THIN_BAND_TX:
        source, floor_period = recent, f"{FLOOR_PREMIUM_MONTHS}M"
    else:
        source, floor_period = txs, 'all'

    low = [t.psf for t in source if 0 < t.floor_mid <= 5]
    low_avg = _avg_of(low) if len(low) >= THIN_BAND_TX else None
    baseline = low_avg or fallback_psf

    bands, thin = [], []
    for band in FLOOR_BANDS:
        lo, hi = _band_bounds(band)
        psfs = [t.psf for t in source if lo <= t.floor_mid <= hi]
        if not psfs:
            continue
        band_psf = _avg_of(psfs)
        is_thin = len(psfs) < THIN_BAND_TX
        if is_thin:
            thin.append(band)
        bands.append({
            'range': band,
            'premium': (pct_change(band_psf, baseline) or 0) if baseline > 0 else 0,
            'psf': band_psf,
            'count': len(psfs),
            'thin': is_thin,
        })
    return {
        'projFloor': bands,
        'floorPeriod': floor_period,
        'thinBands': thin,
        'baselineSource': 'low_floor' if low_avg else 'project_avg',
    }


def _heat_map(txs: List[SaleRecord], years: List[str], floor_bands: List[str]) -> Dict[str, Any]:
    hm_years = years[-HEATMAP_YEARS:]
    matrix = {}
    for band in floor_bands:
        lo, hi = _band_bounds(band)
        for y in hm_years:
            cell = [t for t in txs if t.year == y and lo <= t.floor_mid <= hi]
            if cell:
                matrix[f"{band}-{y}"] = {
                    'psf': _avg_of([t.psf for t in cell]),
                    'vol': len(cell),
                    'price': _avg_of([t.price for t in cell]),
                }
    return {'hmYears': hm_years, 'hmFloors': list(floor_bands), 'hmMatrix': matrix}


def _size_options(txs: List[SaleRecord]) -> Dict[str, List[int]]:
    sizes = sorted({t.area for t in txs})
    if len(sizes) >= len(SIZE_PERCENTILES):
        picked = sorted({sizes[int(p * (len(sizes) - 1))] for p in SIZE_PERCENTILES})
    else:
        picked = list(sizes)
    return {'projSizes': picked, 'sizeOptions': sizes}


def _rent_trend(rentals: List[RentalRecord]) -> List[Dict[str, Any]]:
    by_q: Dict[str, List[float]] = defaultdict(list)
    for r in rentals:
        by_q[r.quarter].append(r.rent)
    return [
        {'q': q, 'avg': _avg_of(by_q[q]), 'med': median(by_q[q])}
        for q in sorted(by_q, key=quarter_sort_key)
    ]


def _nearby_projects(snapshot, name: str, district: str, street: str) -> List[Dict[str, Any]]:
    index = snapshot.project_index
    same_street, same_dist = [], []
    for other, entry in index.items():
        if other == name:
            continue
        if street and entry.get('street') == street:
            same_street.append((other, entry, 'street'))
        elif entry.get('dist') == district:
            same_dist.append((other, entry, 'district'))
    same_street.sort(key=lambda x: -x[1]['n'])
    same_dist.sort(key=lambda x: -x[1]['n'])
    picked = (same_street + same_dist[:max(0, NEARBY_LIMIT - len(same_street))])[:NEARBY_LIMIT]
    if not picked:
        return []

    names = {p[0] for p in picked}
    rents: Dict[str, List[float]] = defaultdict(lambda: [0.0, 0])
    for r in snapshot.rentals:
        if r.project in names:
            rents[r.project][0] += r.rent
            rents[r.project][1] += 1
    sales_by_proj: Dict[str, List[SaleRecord]] = defaultdict(list)
    for r in snapshot.sales:
        if r.project in names:
            sales_by_proj[r.project].append(r)

    model = snapshot.bedroom_model

    def infer(r):
        return model.infer(r.project, r.area)

    result = []
    for other, entry, rel in picked:
        total, n = rents.get(other, (0.0, 0))
        recs = sales_by_proj.get(other, [])
        result.append({
            'name': other,
            **entry,
            'rent': round_int(total / n / 100) * 100 if n else 0,
            'bedYearPsf': _bed_year_averages(recs, infer, lambda r: r.psf),
            'bedYearPrice': _bed_year_averages(recs, infer, lambda r: r.price),
            'rel': rel,
        })
    return result


def derive_project(snapshot, name: str) -> Optional[Dict[str, Any]]:
    """
    Project detail derived from `snapshot`, or None when the project has no sales.
    """
    txs = sorted((r for r in snapshot.sales if r.project == name), key=lambda r: -r.ordinal)
    if not txs:
        return None
    rentals = sorted((r for r in snapshot.rentals if r.project == name), key=lambda r: -r.ordinal)

    payload = snapshot.payload
    meta = snapshot.project_index.get(name, {})
    first = txs[0]
    district = meta.get('dist') or first.district
    street = first.street or meta.get('street', '')
    segment = first.segment or meta.get('seg', DEFAULT_SEGMENT)
    model = snapshot.bedroom_model

    years = sorted({t.year for t in txs})
    quarters = sorted({t.quarter for t in txs}, key=quarter_sort_key)

    psf_source, psf_period = _current_psf(txs, quarters, years)
    avg_psf = _avg_of([t.psf for t in psf_source])

    reference = latest_period(snapshot.sales) or first.period
    floor = _floor_premium(txs, reference, avg_psf)

    by_q: Dict[str, List[int]] = defaultdict(list)
    for t in txs:
        by_q[t.quarter].append(t.psf)
    psf_trend = [
        {'q': q, 'avg': _avg_of(by_q[q]), 'med': median(by_q[q]), 'vol': len(by_q[q])}
        for q in quarters[-TREND_QUARTERS:]
    ]

    beds = {t: model.infer(name, t.area) for t in txs}

    real_avg_rent = _avg_of([r.rent for r in rentals]) if rentals else 0
    real_rent_psf = round_half_up(sum(r.rent_psf for r in rentals) / len(rentals), 2) if rentals else 0
    rental_periods = sorted({r.period for r in rentals})

    dist_avg = next(
        (row['v'] for row in payload.get('sDistBar', []) if row['d'] == district),
        avg_psf,
    )

    result = {
        'projInfo': {
            'name': name,
            'district': f"{district} ({street})" if street else district,
            'segment': segment,
            'tenure': first.tenure,
            'type': first.property_type or meta.get('type', ''),
            'units': len(txs),
            'avgPsf': avg_psf,
            'psfPeriod': psf_period,
            'medPsf': median(t.psf for t in psf_source),
            'totalTx': len(txs),
            'avgRent': real_avg_rent,
            'rentPsf': real_rent_psf,
            'yield': gross_yield_pct(real_rent_psf, avg_psf) if rentals else 0,
            'distAvg': dist_avg,
            'hasRealRental': bool(rentals),
            'rentalPeriod': _period_range(rental_periods[0], rental_periods[-1]) if rental_periods else '',
            'rentalCount': len(rentals),
        },
        'projPsfTrend': psf_trend,
        'projRentTrend': _rent_trend(rentals),
        **floor,
        'projScatter': [
            {'area': t.area, 'psf': t.psf, 'floor': t.floor_mid, 'price': t.price, 'beds': beds[t]}
            for t in txs[:SCATTER_POINTS]
        ],
        'projTx': [
            {
                'date': t.period, 'address': t.floor_band or '-', 'area': t.area,
                'price': t.price, 'psf': t.psf, 'type': t.sale_type, 'beds': beds[t],
                'tenure': t.tenure, 'floorMid': t.floor_mid,
            }
            for t in txs
        ],
        'projRentTx': [
            {
                'date': r.period, 'address': '-', 'area': r.area_label, 'areaSqf': r.area,
                'bedrooms': r.bedrooms, 'rent': r.rent, 'psf': r.rent_psf,
                'leaseDate': r.lease_date, 'contracts': r.contracts,
            }
            for r in rentals
        ],
        **_heat_map(txs, years, [b['range'] for b in floor['projFloor']]),
        **_size_options(txs),
        'nearbyProjects': _nearby_projects(snapshot, name, district, street),
        'yearPsf': {y: _avg_of([t.psf for t in txs if t.year == y]) for y in years},
        'yearPrice': {y: _avg_of([t.price for t in txs if t.year == y]) for y in years},
        'bedYearPsf': _bed_year_averages(txs, lambda t: beds[t], lambda t: t.psf),
        'bedYearPrice': _bed_year_averages(txs, lambda t: beds[t], lambda t: t.price),
        'rentalBedrooms': sorted({r.bedrooms for r in rentals if r.has_bedroom_count}, key=int),
        'bedOptions': sorted({b for b in beds.values() if b}, key=_bed_sort_key),
    }
    result['floorRanges'] = result['hmFloors']
    return result


class ProjectService:
    """Project detail lookups with a bounded cache keyed by snapshot generation."""

    def __init__(self, cache_size: int = 20):
        self._cache = BoundedCache(maxsize=cache_size)

    def get_project(self, snapshot, name: str) -> Optional[Dict[str, Any]]:
        if snapshot is None or not name:
            return None
        key = (snapshot.generation, name)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        result = derive_project(snapshot, name)
        if result is None:
            logger.info(f"Project not found: '{name}'")
            return None
        self._cache.set(key, result)
        return result

    def clear(self) -> None:
        self._cache.clear()
        logger.info("Project cache cleared")

    def cache_stats(self) -> Dict[str, Any]:
        return self._cache.stats()
