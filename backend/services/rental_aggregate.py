"""
Rental Aggregate - real rental contract rollups

Folds normalized RentalRecords into per-project, per-district (with
per-quarter), per-segment and per-quarter running sums. The dashboard
prefers these real figures over yield-based estimates wherever a bucket
has at least one observation.

Also computes gross yield per market segment from the sales and rental
rolling windows; those yields drive every estimate made when real rent
is missing.
"""

import logging
import random
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Optional, Sequence

from constants import DEFAULT_SEGMENT_YIELDS, FALLBACK_YIELD, SEGMENTS
from models.transaction import RentalRecord, SaleRecord
from services.collectors import ReservoirSample
from utils.numeric import avg, median, round_half_up, safe_div

logger = logging.getLogger('rental')

# Per-quarter rent sample behind each quarter's median
QUARTER_MEDIAN_CAPACITY = 500


@dataclass
class RentBucket:
    total_rent: float = 0.0
    total_psf: float = 0.0
    count: int = 0

    def add(self, r: RentalRecord) -> None:
        self.total_rent += r.rent
        self.total_psf += r.rent_psf
        self.count += 1

    @property
    def avg_rent(self) -> int:
        return avg(self.total_rent, self.count)

    @property
    def avg_rent_psf(self) -> float:
        return safe_div(self.total_psf, self.count)


@dataclass
class ProjectRentBucket(RentBucket):
    segment: str = ''
    district: str = ''


@dataclass
class DistrictRentBucket(RentBucket):
    by_quarter: Dict[str, RentBucket] = field(default_factory=lambda: defaultdict(RentBucket))


@dataclass
class QuarterRentBucket(RentBucket):
    sample: Optional[ReservoirSample] = None

    def add(self, r: RentalRecord) -> None:
        super().add(r)
        self.sample.add(r.rent)

    @property
    def median_rent(self) -> float:
        return median(self.sample.items)


class RentalAggregate:
    """
    Real rental rollups over one set of rental records.

    Build with from_records(); the constructor is not meant to be called
    directly.
    """

    def __init__(self, records: Sequence[RentalRecord]):
        self.records = records
        self.by_project: Dict[str, ProjectRentBucket] = {}
        self.by_district: Dict[str, DistrictRentBucket] = defaultdict(DistrictRentBucket)
        self.by_segment: Dict[str, RentBucket] = defaultdict(RentBucket)
        self.by_quarter: Dict[str, QuarterRentBucket] = {}
        self.total = RentBucket()
        self.median_rent = 0

    @classmethod
    def from_records(
        cls,
        records: Sequence[RentalRecord],
        rng: Optional[random.Random] = None,
        median_capacity: int = 5000,
        quarter_capacity: int = QUARTER_MEDIAN_CAPACITY,
    ) -> Optional['RentalAggregate']:
        """
        Aggregate rental records; None when there are none.

        Medians come from bounded reservoir samples: `median_capacity` rents
        overall and `quarter_capacity` per quarter.
        """
        if not records:
            return None

        agg = cls(records)
        sample = ReservoirSample(median_capacity, rng)
        for r in records:
            agg.total.add(r)
            sample.add(r.rent)
            if r.project not in agg.by_project:
                agg.by_project[r.project] = ProjectRentBucket(segment=r.segment, district=r.district)
            agg.by_project[r.project].add(r)
            dist = agg.by_district[r.district]
            dist.add(r)
            dist.by_quarter[r.quarter].add(r)
            agg.by_segment[r.segment].add(r)
            qb = agg.by_quarter.get(r.quarter)
            if qb is None:
                qb = agg.by_quarter[r.quarter] = QuarterRentBucket(
                    sample=ReservoirSample(quarter_capacity, rng)
                )
            qb.add(r)

        agg.median_rent = median(sample.items)

        # Plain dicts from here on so read-side lookups never insert
        for d in agg.by_district.values():
            d.by_quarter = dict(d.by_quarter)
        agg.by_district = dict(agg.by_district)
        agg.by_segment = dict(agg.by_segment)
        return agg

    @property
    def count(self) -> int:
        return self.total.count

    @property
    def avg_rent(self) -> int:
        return self.total.avg_rent

    @property
    def avg_rent_psf(self) -> float:
        return self.total.avg_rent_psf

    def district_rent_psf(self, district: str, quarter: Optional[str] = None) -> Optional[float]:
        """Rent PSF for a district, per quarter when observed, else all-time."""
        d = self.by_district.get(district)
        if d is None or d.count == 0:
            return None
        if quarter is not None:
            q = d.by_quarter.get(quarter)
            if q is not None and q.count > 0:
                return q.avg_rent_psf
        return d.avg_rent_psf

    def log_summary(self) -> None:
        logger.info(
            f"Rental aggregate: {self.count} records from {len(self.by_project)} projects, "
            f"{len(self.by_quarter)} quarters, median rent ${self.median_rent}"
        )


def compute_segment_yields(
    sales_window: Sequence[SaleRecord],
    rental_window: Sequence[RentalRecord],
) -> Dict[str, float]:
    """
    Gross yield (fraction) per segment: rent_psf * 12 / sale_psf.

    Segments lacking either side get the sales-count-weighted average of
    the segments that have both; with none, the flat fallback yield.
    """
    sale_s: Dict[str, float] = defaultdict(float)
    sale_n: Dict[str, int] = defaultdict(int)
    for r in sales_window:
        sale_s[r.segment] += r.psf
        sale_n[r.segment] += 1
    rent_s: Dict[str, float] = defaultdict(float)
    rent_n: Dict[str, int] = defaultdict(int)
    for r in rental_window:
        rent_s[r.segment] += r.rent_psf
        rent_n[r.segment] += 1

    yields: Dict[str, float] = {}
    weighted, weight = 0.0, 0
    for seg in SEGMENTS:
        sp = avg(sale_s[seg], sale_n[seg])
        rp = round_half_up(rent_s[seg] / rent_n[seg], 2) if rent_n[seg] else 0
        if sp > 0 and rp > 0:
            yields[seg] = rp * 12 / sp
            weighted += yields[seg] * sale_n[seg]
            weight += sale_n[seg]

    fallback = weighted / weight if weight else FALLBACK_YIELD
    for seg in SEGMENTS:
        yields.setdefault(seg, fallback)

    logger.info("Computed yields: " + ', '.join(f"{k}: {v * 100:.2f}%" for k, v in yields.items()))
    return yields


def segment_yield(segment: str, yields: Optional[Dict[str, float]] = None) -> float:
    """Yield for a segment from computed yields, else the defaults."""
    return (yields or DEFAULT_SEGMENT_YIELDS).get(segment, FALLBACK_YIELD)
