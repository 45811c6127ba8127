"""
Dashboard Service - payload derivation from sales rollups

Turns a completed SalesRollup (plus the matching sale records and an
optional real-rental aggregate) into the flat dashboard payload: trends,
breakdowns, histograms, scatter samples, yield/CAGR rankings, latest
transactions and the project navigation indexes.

The full rebuild and the filtered re-aggregation both call build_payload(),
so the two payloads always share one key set and one set of formulas.

Key Features:
- Rolling "current" windows (3/6/12 months, >= 20 records) anchored on the
  latest month in the data
- Real rent wherever a bucket has observations, yield-based estimates
  otherwise
- One CAGR policy for every scope (see _cagr_window)

Usage:
    from services.dashboard_service import build_payload, resolve_yields

    yields = resolve_yields(sales, rental_aggregate, config)
    payload = build_payload(rollup, sales, rental_aggregate, yields=yields, config=config)
"""

import logging
import random
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from config import EngineConfig
from constants import FALLBACK_YIELD, PAYLOAD_VERSION, SEGMENTS, district_sort_key
from models.transaction import RentalRecord, SaleRecord
from services.rental_aggregate import RentalAggregate, compute_segment_yields, segment_yield
from utils.numeric import (
    avg,
    cagr_pct,
    dominant_segment,
    gross_yield_pct,
    histogram,
    median,
    pct_change,
    percentile,
    round_half_up,
    round_int,
)
from utils.periods import latest_period, quarter_sort_key, rolling_window

logger = logging.getLogger('dashboard')

# ============================================================================
# CONFIGURATION
# ============================================================================

TREND_QUARTERS = 8
VOLUME_QUARTERS = 12
TOP_DISTRICT_LINES = 5
DIST_BAR_LIMIT = 10
TYPE_LIMIT = 5
TOP_PROJECTS = 8
YIELD_RANK_LIMIT = 8
CAGR_RANK_LIMIT = 8
SCATTER_POINTS = 200
RENT_HIST_SAMPLE = 2000
MARKET_TX_LIMIT = 500
LATEST_SAMPLE_MIN = 50

PSF_BUCKET_WIDTH = 200
RENT_BUCKET_WIDTH = 500

CMP_POOL_MIN_TX = 5
CMP_POOL_LIMIT = 30
PROJ_LIST_MIN_TX = 3
PROJ_PERF_MIN_TX = 5
DIST_TOP_PROJECTS = 15

# Year buckets thinner than this are flagged lowConf in CAGR tables
LOW_CONF_DISTRICT_TX = 3
LOW_CONF_PROJECT_TX = 2

NAVIGATION_KEYS = ('cmpPool', 'projList', 'projIndex', 'distTopPsf')


# ============================================================================
# WINDOWS AND YIELDS
# ============================================================================

def _current_window(records: Sequence, min_records: int) -> Tuple[List, Optional[str]]:
    """
    Records behind a "current" figure and the label of their period.

    Narrowest of 3/6/12 months with `min_records`, else the latest year,
    else everything.
    """
    window, label = rolling_window(records, min_records)
    if window is not None:
        return window, label
    latest = latest_period(records)
    if latest is None:
        return [], None
    latest_year = latest[:4]
    window = [r for r in records if r.year == latest_year]
    return (window or list(records)), latest_year


def current_sales_window(
    sales: Sequence[SaleRecord],
    min_records: int,
) -> Tuple[List[SaleRecord], Optional[str]]:
    return _current_window(sales, min_records)


def current_rental_window(
    rentals: Sequence[RentalRecord],
    min_records: int,
) -> Tuple[List[RentalRecord], str]:
    """Same policy as sales; an empty rental set is labelled 'all'."""
    window, label = _current_window(rentals, min_records)
    return window, label or 'all'


def resolve_yields(
    sales: Sequence[SaleRecord],
    rental_aggregate: Optional[RentalAggregate],
    config: EngineConfig,
) -> Optional[Dict[str, float]]:
    """Computed segment yields from real rents; None means use the defaults."""
    if rental_aggregate is None or not rental_aggregate.by_project:
        logger.info("No rental data - using estimated yields")
        return None
    sales_window, _ = current_sales_window(sales, config.rolling_min_records)
    rental_window, _ = current_rental_window(rental_aggregate.records, config.rolling_min_records)
    return compute_segment_yields(sales_window, rental_window)


def _weighted_yield(segment_counts: Dict[str, int], yields: Optional[Dict[str, float]]) -> float:
    total = sum(segment_counts.values())
    if total == 0:
        return FALLBACK_YIELD
    return sum(segment_yield(seg, yields) * n for seg, n in segment_counts.items()) / total


def _estimated_rent(psf: float, yld: float, area: float) -> int:
    return round_int(psf * yld / 12 * area)


def _estimated_rent_psf(psf: float, yld: float) -> float:
    return round_half_up(psf * yld / 12, 2)


def _cagr_window(years: List[str], window_years: int) -> Optional[Tuple[str, str, int]]:
    """
    (start_year, end_year, span) for CAGR, or None when span < 1.

    The end is the latest observed year; the start is `window_years` earlier,
    clamped up to the first observed year.
    """
    if not years:
        return None
    end = int(years[-1])
    start = max(end - window_years, int(years[0]))
    span = end - start
    if span < 1:
        return None
    return str(start), str(end), span


# ============================================================================
# PAYLOAD SECTIONS
# ============================================================================

def _rental_stats(
    rentals: Sequence[RentalRecord],
    config: EngineConfig,
    est_rent: int,
    est_rent_psf: float,
) -> Dict[str, Any]:
    window, label = current_rental_window(rentals, config.rolling_min_records)
    seg_counts = defaultdict(int)
    for r in window:
        seg_counts[r.segment] += 1
    n = len(window)
    if n:
        avg_rent = avg(sum(r.rent for r in window), n)
        avg_rent_psf = round_half_up(sum(r.rent_psf for r in window) / n, 2)
        med_rent = median(r.rent for r in window)
    else:
        avg_rent, avg_rent_psf, med_rent = est_rent, est_rent_psf, est_rent
    return {
        'rentalTotal': n,
        'rentalPeriod': label,
        'rentalSegCounts': {seg: seg_counts.get(seg, 0) for seg in SEGMENTS},
        'avgRent': avg_rent,
        'avgRentPsf': avg_rent_psf,
        'medRent': med_rent,
    }


def _rent_trend(rollup, quarters, rental_aggregate, yields, avg_area) -> List[Dict[str, Any]]:
    def quarter_rent(q):
        real = rental_aggregate.by_quarter.get(q) if rental_aggregate else None
        if real is not None and real.count > 0:
            return real.avg_rent, real.median_rent, True
        qb = rollup.by_quarter[q]
        rent = _estimated_rent(qb.avg, _weighted_yield(qb.segment_counts, yields), avg_area)
        return rent, rent, False

    trend = []
    prev_rent = None
    for q in quarters[-TREND_QUARTERS:]:
        rent, med, real = quarter_rent(q)
        trend.append({'q': q, 'avg': rent, 'med': med, 'qoq': pct_change(rent, prev_rent), 'real': real})
        prev_rent = rent
    return trend


def _breakdowns(rollup, latest_year, quarters, rental_aggregate, yields, avg_area) -> Dict[str, Any]:
    s_seg = [
        {'name': seg, 'val': rollup.by_segment[seg].latest_or_overall(latest_year), 'count': rollup.by_segment[seg].n}
        for seg in SEGMENTS if seg in rollup.by_segment and rollup.by_segment[seg].n > 0
    ]
    r_seg = []
    for s in s_seg:
        rb = rental_aggregate.by_segment.get(s['name']) if rental_aggregate else None
        val = rb.avg_rent if rb else _estimated_rent(s['val'], segment_yield(s['name'], yields), avg_area)
        r_seg.append({'name': s['name'], 'val': val, 'count': rb.count if rb else 0})

    by_count = sorted(rollup.by_project.values(), key=lambda p: -p.n)
    s_top = [{'n': p.name, 'c': p.n} for p in by_count[:TOP_PROJECTS]]
    r_top = s_top
    if rental_aggregate and rental_aggregate.by_project:
        ranked = sorted(rental_aggregate.by_project.items(), key=lambda kv: -kv[1].count)
        r_top = [{'n': name, 'c': b.count} for name, b in ranked[:TOP_PROJECTS]] or s_top

    district_names = sorted(rollup.by_district, key=district_sort_key)
    top_districts = [
        d for d, _ in sorted(rollup.by_district.items(), key=lambda kv: -kv[1].n)[:TOP_DISTRICT_LINES]
    ]

    s_dist_line, r_dist_line = [], []
    for q in quarters[-TREND_QUARTERS:]:
        s_row, r_row = {'q': q}, {'q': q}
        for d in top_districts:
            dq = rollup.by_district[d].by_quarter.get(q)
            s_row[d] = dq.avg if dq else None
            r_row[d] = rental_aggregate.district_rent_psf(d, q) if rental_aggregate else None
        s_dist_line.append(s_row)
        r_dist_line.append(r_row)

    s_dist_bar = sorted(
        ({'d': d, 'v': _latest_year_psf(rollup.by_district[d], latest_year)} for d in district_names),
        key=lambda x: -x['v'],
    )[:DIST_BAR_LIMIT]
    r_dist_bar = []
    for row in s_dist_bar:
        rb = rental_aggregate.by_district.get(row['d']) if rental_aggregate else None
        if rb:
            r_dist_bar.append({'d': row['d'], 'v': rb.avg_rent_psf})
        else:
            yld = _weighted_yield(rollup.by_district[row['d']].segment_counts, yields)
            r_dist_bar.append({'d': row['d'], 'v': _estimated_rent_psf(row['v'], yld)})

    s_type = sorted(
        ({'t': t, 'v': b.latest_or_overall(latest_year)} for t, b in rollup.by_type.items()),
        key=lambda x: -x['v'],
    )[:TYPE_LIMIT]
    r_type = []
    for row in s_type:
        total_rent, count = 0.0, 0
        if rental_aggregate:
            for p in rollup.by_project.values():
                rb = rental_aggregate.by_project.get(p.name) if p.property_type == row['t'] else None
                if rb:
                    total_rent += rb.total_rent
                    count += rb.count
        r_type.append({'t': row['t'], 'v': avg(total_rent, count)})

    s_tenure = sorted(
        ({'t': t, 'v': b.latest_or_overall(latest_year)} for t, b in rollup.by_tenure.items()),
        key=lambda x: -x['v'],
    )

    return {
        'sSeg': s_seg, 'rSeg': r_seg, 'sTop': s_top, 'rTop': r_top,
        'topDistricts': top_districts, 'districtNames': district_names,
        'sDistLine': s_dist_line, 'rDistLine': r_dist_line,
        'sDistBar': s_dist_bar, 'rDistBar': r_dist_bar,
        'sType': s_type, 'rType': r_type, 'sTenure': s_tenure,
    }


def _latest_year_psf(bucket, latest_year) -> int:
    ly = bucket.by_year.get(latest_year)
    return ly.avg if ly else bucket.avg


def _investment(rollup, years, latest_year, rental_aggregate, yields, config) -> Dict[str, Any]:
    district_names = sorted(rollup.by_district, key=district_sort_key)

    yd_all = {}
    for d in district_names:
        b = rollup.by_district[d]
        bp = _latest_year_psf(b, latest_year)
        if bp <= 0:
            continue
        rb = rental_aggregate.by_district.get(d) if rental_aggregate else None
        rp = rb.avg_rent_psf if rb else _estimated_rent_psf(bp, _weighted_yield(b.segment_counts, yields))
        yd_all[d] = {
            'd': d, 'rp': rp, 'bp': bp, 'y': gross_yield_pct(rp, bp),
            'seg': dominant_segment(b.segment_counts), 'real': rb is not None,
        }
    yd = sorted((r for r in yd_all.values() if r['y'] > 0), key=lambda r: -r['y'])[:YIELD_RANK_LIMIT]

    cagr_data, dist_perf, proj_perf = [], [], []
    window = _cagr_window(years, config.cagr_window_years)
    if window is not None:
        start_y, end_y, span = window

        for d in district_names:
            b = rollup.by_district[d]
            sb, eb = b.by_year.get(start_y), b.by_year.get(end_y)
            if sb is None or eb is None:
                continue
            s_avg, e_avg = sb.avg, eb.avg
            cagr = cagr_pct(s_avg, e_avg, span)
            if cagr is None:
                continue
            yld = yd_all[d]['y'] if d in yd_all else 0
            low_conf = sb.n < LOW_CONF_DISTRICT_TX or eb.n < LOW_CONF_DISTRICT_TX
            seg = dominant_segment(b.segment_counts)
            total = round_half_up(cagr + yld, 2)
            cagr_data.append({
                'd': d, 'cagr': cagr, 'y': yld, 'seg': seg, 'bp': e_avg,
                'total': total, 'cagrYears': span, 'lowConf': low_conf,
            })
            dist_perf.append({
                'd': d, 'seg': seg,
                'startPsf': s_avg, 'endPsf': e_avg,
                'absDiff': e_avg - s_avg, 'pctChg': pct_change(e_avg, s_avg),
                'cagr': cagr, 'yield': yld, 'totalReturn': total,
                'startYear': start_y, 'endYear': end_y, 'window': span,
                'txStart': sb.n, 'txEnd': eb.n, 'txTotal': b.n, 'lowConf': low_conf,
            })

        for p in rollup.by_project.values():
            if p.n < PROJ_PERF_MIN_TX:
                continue
            sb, eb = p.by_year.get(start_y), p.by_year.get(end_y)
            if sb is None or eb is None:
                continue
            s_avg, e_avg = sb.avg, eb.avg
            cagr = cagr_pct(s_avg, e_avg, span)
            if cagr is None:
                continue
            rb = rental_aggregate.by_project.get(p.name) if rental_aggregate else None
            yld = gross_yield_pct(rb.avg_rent_psf, e_avg) if rb else 0
            proj_perf.append({
                'name': p.name, 'dist': p.district, 'seg': p.segment, 'street': p.street,
                'startPsf': s_avg, 'endPsf': e_avg,
                'absDiff': e_avg - s_avg, 'pctChg': pct_change(e_avg, s_avg),
                'cagr': cagr, 'yield': yld, 'totalReturn': round_half_up(cagr + yld, 2),
                'startYear': start_y, 'endYear': end_y, 'window': span,
                'txStart': sb.n, 'txEnd': eb.n, 'txTotal': p.n,
                'lowConf': sb.n < LOW_CONF_PROJECT_TX or eb.n < LOW_CONF_PROJECT_TX,
            })

    cagr_data = sorted(cagr_data, key=lambda r: -r['total'])[:CAGR_RANK_LIMIT]
    dist_perf.sort(key=lambda r: -r['cagr'])
    proj_perf.sort(key=lambda r: -r['cagr'])

    return {
        'yd': yd,
        'cagrData': cagr_data,
        'distPerf': dist_perf,
        'projPerf': proj_perf,
        'bestYield': yd[0] if yd else None,
        'avgCagr': round_half_up(sum(r['cagr'] for r in dist_perf) / len(dist_perf), 1) if dist_perf else 0,
        'avgYield': round_half_up(sum(r['y'] for r in yd) / len(yd), 2) if yd else 0,
    }


def sale_tx_row(r: SaleRecord) -> Dict[str, Any]:
    return {
        'date': r.period, 'project': r.project, 'district': r.district, 'segment': r.segment,
        'type': r.property_type, 'unit': r.floor_band or '-', 'area': r.area,
        'floor': r.floor_mid, 'psf': r.psf, 'price': r.price,
    }


def rent_tx_row(r: RentalRecord) -> Dict[str, Any]:
    return {
        'date': r.period, 'project': r.project, 'district': r.district, 'segment': r.segment,
        'unit': '-', 'area': r.area_label, 'bedrooms': r.bedrooms, 'floor': 0,
        'rent': r.rent, 'rentPsf': r.rent_psf,
    }


def build_navigation(rollup, rental_aggregate: Optional[RentalAggregate], avg_area: int) -> Dict[str, Any]:
    """
    Market-wide project indexes: comparison pool, project list and index,
    per-district PSF leaderboard.
    """
    def project_yield(p, psf):
        rb = rental_aggregate.by_project.get(p.name) if rental_aggregate else None
        return (gross_yield_pct(rb.avg_rent_psf, psf) if rb else 0), rb

    def project_avg_area(p):
        return avg(sum(p.areas), len(p.areas)) if p.areas else avg_area

    by_count = sorted(rollup.by_project.values(), key=lambda p: -p.n)

    cmp_pool = []
    for p in by_count:
        if p.n < CMP_POOL_MIN_TX:
            break
        if len(cmp_pool) >= CMP_POOL_LIMIT:
            break
        psf = p.latest_psf()
        yld, rb = project_yield(p, psf)
        cmp_pool.append({
            'name': p.name, 'psf': psf,
            'rent': round_int(rb.avg_rent / 100) * 100 if rb else 0,
            'yield': yld, 'dist': p.district, 'street': p.street,
            'age': p.first_year, 'type': p.property_type, 'units': p.n,
            'segment': p.segment, 'yearPsf': p.year_psf(), 'yearPrice': p.year_price(),
            'avgArea': project_avg_area(p),
        })

    proj_list = [p.name for p in by_count if p.n >= PROJ_LIST_MIN_TX]

    proj_index = {}
    dist_groups: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for p in rollup.by_project.values():
        if p.n < PROJ_LIST_MIN_TX:
            continue
        psf = p.latest_psf()
        yld, _ = project_yield(p, psf)
        proj_index[p.name] = {
            'dist': p.district, 'seg': p.segment, 'psf': psf, 'n': p.n, 'yield': yld,
            'street': p.street, 'type': p.property_type,
            'yearPsf': p.year_psf(), 'yearPrice': p.year_price(), 'avgArea': project_avg_area(p),
        }
        dist_groups[p.district].append({
            'name': p.name, 'psf': psf, 'n': p.n, 'seg': p.segment, 'street': p.street,
            'tenure': p.tenure, 'yield': yld, 'latest': p.latest,
        })

    dist_top_psf = []
    for d, projects in dist_groups.items():
        projects.sort(key=lambda x: -x['psf'])
        db = rollup.by_district.get(d)
        dist_top_psf.append({
            'dist': d,
            'seg': dominant_segment(db.segment_counts if db else None),
            'avgPsf': avg(sum(x['psf'] for x in projects), len(projects)),
            'topPsf': projects[0]['psf'],
            'topProject': projects[0]['name'],
            'count': len(projects),
            'projects': projects[:DIST_TOP_PROJECTS],
        })
    dist_top_psf.sort(key=lambda x: -x['topPsf'])

    return {'cmpPool': cmp_pool, 'projList': proj_list, 'projIndex': proj_index, 'distTopPsf': dist_top_psf}


# ============================================================================
# PAYLOAD
# ============================================================================

def build_payload(
    rollup,
    sales: Sequence[SaleRecord],
    rental_aggregate: Optional[RentalAggregate] = None,
    yields: Optional[Dict[str, float]] = None,
    config: Optional[EngineConfig] = None,
    rng: Optional[random.Random] = None,
    navigation: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """
    Derive the dashboard payload from a completed rollup.

    Args:
        rollup: SalesRollup fed with exactly the records in `sales`
        sales: the sale records behind the rollup (rolling windows)
        rental_aggregate: real rentals for the same scope, or None
        yields: computed segment yields; None uses the default yields
        navigation: precomputed navigation indexes to reuse instead of
            deriving them from this rollup
    """
    config = config or rollup.config
    rng = rng or rollup.rng
    rentals = rental_aggregate.records if rental_aggregate else ()
    has_rental = bool(rental_aggregate and rental_aggregate.by_project)
    if not has_rental:
        rental_aggregate = None

    years = rollup.years
    quarters = sorted(rollup.by_quarter, key=quarter_sort_key)
    latest_year = years[-1] if years else None
    prev_year = years[-2] if len(years) > 1 else None

    # Current PSF over the rolling window
    window, psf_period = current_sales_window(sales, config.rolling_min_records)
    if window:
        avg_psf = avg(sum(r.psf for r in window), len(window))
        med_psf = median(r.psf for r in window)
    else:
        avg_psf, med_psf = 0, 0

    latest_samples = [s for s in rollup.samples if s.year == latest_year]
    recent_samples = latest_samples if len(latest_samples) >= LATEST_SAMPLE_MIN else list(rollup.samples)
    avg_area = avg(sum(s.area for s in recent_samples), len(recent_samples))

    lat_avg = rollup.by_year[latest_year].avg if latest_year else avg_psf
    prev_avg = rollup.by_year[prev_year].avg if prev_year else 0
    overall_yield = _weighted_yield({seg: b.n for seg, b in rollup.by_segment.items()}, yields)

    yoy = []
    prev = None
    for y in years:
        b = rollup.by_year[y]
        yoy.append({'year': y, 'avg': b.avg, 'med': median(b.sample.items), 'yoy': pct_change(b.avg, prev)})
        prev = b.avg

    sorted_psf = sorted(s.psf for s in recent_samples)
    est_rent = _estimated_rent(avg_psf, overall_yield, avg_area)
    est_rent_psf = _estimated_rent_psf(avg_psf, overall_yield)

    if rentals:
        rent_values = [r.rent for r in rentals[:RENT_HIST_SAMPLE]]
    else:
        rent_values = [_estimated_rent(s.psf, segment_yield(s.segment, yields), s.area) for s in recent_samples]

    shuffled = list(recent_samples)
    rng.shuffle(shuffled)
    latest_rentals = sorted(rentals, key=lambda r: -r.ordinal)

    payload: Dict[str, Any] = {
        'version': PAYLOAD_VERSION,
        'lastUpdated': datetime.now(timezone.utc).isoformat(),
        'totalTx': rollup.total,
        'totalVolume': rollup.volume,
        'avgPsf': avg_psf,
        'medPsf': med_psf,
        'yoyPct': pct_change(lat_avg, prev_avg),
        'latestYear': latest_year,
        'psfPeriod': psf_period,
        'hasRealRental': has_rental,
        'segCounts': {seg: rollup.by_segment[seg].n if seg in rollup.by_segment else 0 for seg in SEGMENTS},
        'psfP5': percentile(sorted_psf, 0.05),
        'psfP25': percentile(sorted_psf, 0.25),
        'psfP75': percentile(sorted_psf, 0.75),
        'psfP95': percentile(sorted_psf, 0.95),
        'years': years,
        'quarters': quarters,
        'yoy': yoy,
        'rTrend': _rent_trend(rollup, quarters, rental_aggregate, yields, avg_area),
        'sHist': histogram([s.psf for s in recent_samples], PSF_BUCKET_WIDTH),
        'rHist': histogram(rent_values, RENT_BUCKET_WIDTH),
        'sScat': [{'a': s.area, 'p': s.psf, 's': s.segment} for s in shuffled[:SCATTER_POINTS]],
        'rScat': [{'a': r.area, 'p': r.rent_psf, 's': r.segment} for r in rentals[:SCATTER_POINTS]],
        'sCum': [{'d': q, 'v': rollup.by_quarter[q].v} for q in quarters[-VOLUME_QUARTERS:]],
        'rCum': [
            {'d': q, 'v': rental_aggregate.by_quarter[q].count
             if rental_aggregate and q in rental_aggregate.by_quarter else 0}
            for q in quarters[-VOLUME_QUARTERS:]
        ],
        'mktSaleTx': [sale_tx_row(r) for r in rollup.recent.result()],
        'mktRentTx': [rent_tx_row(r) for r in latest_rentals[:MARKET_TX_LIMIT]],
    }
    payload.update(_rental_stats(rentals, config, est_rent, est_rent_psf))
    payload.update(_breakdowns(rollup, latest_year, quarters, rental_aggregate, yields, avg_area))
    payload.update(_investment(rollup, years, latest_year, rental_aggregate, yields, config))
    if navigation is None:
        navigation = build_navigation(rollup, rental_aggregate, avg_area)
    payload.update({k: navigation.get(k, [] if k != 'projIndex' else {}) for k in NAVIGATION_KEYS})
    return payload
