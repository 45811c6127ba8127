"""
Aggregation Service - streaming rollups over normalized sale records

SalesRollup is the single-pass accumulator: one add_record() call updates
every rollup bucket (year, quarter, segment, district, property type,
tenure, project, floor band) plus the bounded samples. It is fed by:

- StreamingAggregator, during a full rebuild, from raw URA project groups
- the filtered dashboard, from a filtered slice of the retained store

so both paths derive the dashboard from identically shaped rollups.

StreamingAggregator is single-use: add()* then exactly one build().

Usage:
    agg = StreamingAggregator(config, rng=random.Random(7))
    for group in sales_groups:
        agg.add(group)
    payload = agg.build(rental_aggregate)
    sales_store = agg.store
"""

import logging
import random
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, List, NamedTuple, Optional

from config import EngineConfig
from models.transaction import SaleRecord
from services.collectors import ReservoirSample, TopN
from services.dashboard_service import build_payload, resolve_yields
from services.normalizer import TransactionNormalizer
from utils.numeric import avg
from utils.timing import log_timing

logger = logging.getLogger('aggregator')


class AggregatorStateError(RuntimeError):
    """Raised when an aggregator is used outside its add()* → build() lifecycle."""


# =============================================================================
# ROLLUP BUCKETS
# =============================================================================

@dataclass
class PsfBucket:
    s: float = 0
    n: int = 0

    def add(self, psf: float) -> None:
        self.s += psf
        self.n += 1

    @property
    def avg(self) -> int:
        return avg(self.s, self.n)


@dataclass
class YearPsfBucket(PsfBucket):
    by_year: Dict[str, PsfBucket] = field(default_factory=lambda: defaultdict(PsfBucket))

    def add_year(self, year: str, psf: float) -> None:
        self.add(psf)
        self.by_year[year].add(psf)

    def latest_or_overall(self, latest_year: str, min_n: int = 3) -> int:
        """Latest-year average when it has `min_n` records, else all-time."""
        ly = self.by_year.get(latest_year)
        if ly is not None and ly.n >= min_n:
            return ly.avg
        return self.avg


@dataclass
class YearBucket(PsfBucket):
    v: float = 0
    sample: Optional[ReservoirSample] = None


@dataclass
class QuarterBucket(PsfBucket):
    v: float = 0
    segment_counts: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class SegmentCountBucket(YearPsfBucket):
    segment_counts: Dict[str, int] = field(default_factory=lambda: defaultdict(int))


@dataclass
class DistrictBucket(SegmentCountBucket):
    v: float = 0
    by_quarter: Dict[str, PsfBucket] = field(default_factory=lambda: defaultdict(PsfBucket))


@dataclass
class ProjectYearBucket(PsfBucket):
    price_sum: float = 0

    @property
    def avg_price(self) -> int:
        return avg(self.price_sum, self.n)


@dataclass
class ProjectBucket:
    name: str
    street: str
    segment: str
    district: str
    tenure: str
    property_type: str
    s: float = 0
    n: int = 0
    areas: List[int] = field(default_factory=list)
    by_year: Dict[str, ProjectYearBucket] = field(default_factory=lambda: defaultdict(ProjectYearBucket))
    by_floor: Dict[str, PsfBucket] = field(default_factory=lambda: defaultdict(PsfBucket))
    latest: str = ''

    @property
    def avg(self) -> int:
        return avg(self.s, self.n)

    @property
    def latest_year(self) -> Optional[str]:
        return max(self.by_year) if self.by_year else None

    @property
    def first_year(self) -> str:
        return min(self.by_year) if self.by_year else ''

    def latest_psf(self) -> int:
        """Average PSF of the project's own latest year, else all-time."""
        ly = self.latest_year
        return self.by_year[ly].avg if ly else self.avg

    def year_psf(self) -> Dict[str, int]:
        return {y: b.avg for y, b in sorted(self.by_year.items())}

    def year_price(self) -> Dict[str, int]:
        return {y: b.avg_price for y, b in sorted(self.by_year.items())}


class Sample(NamedTuple):
    psf: int
    area: int
    segment: str
    district: str
    year: str


def _recency_key(record: SaleRecord) -> int:
    return -record.ordinal


class SalesRollup:
    """
    Multi-key rollup over SaleRecords with bounded samples.

    Buckets are mutated in place and never corrected; build a new rollup
    to recompute.
    """

    def __init__(self, config: Optional[EngineConfig] = None, rng: Optional[random.Random] = None):
        self.config = config or EngineConfig()
        self.rng = rng or random.Random(self.config.random_seed)

        self.total = 0
        self.volume = 0.0
        self.samples: ReservoirSample[Sample] = ReservoirSample(self.config.reservoir_capacity, self.rng)
        self.by_year: Dict[str, YearBucket] = {}
        self.by_quarter: Dict[str, QuarterBucket] = defaultdict(QuarterBucket)
        self.by_segment: Dict[str, YearPsfBucket] = defaultdict(YearPsfBucket)
        self.by_district: Dict[str, DistrictBucket] = defaultdict(DistrictBucket)
        self.by_type: Dict[str, SegmentCountBucket] = defaultdict(SegmentCountBucket)
        self.by_tenure: Dict[str, YearPsfBucket] = defaultdict(YearPsfBucket)
        self.by_project: Dict[str, ProjectBucket] = {}
        self.by_floor: Dict[str, PsfBucket] = defaultdict(PsfBucket)
        self.recent: TopN[SaleRecord] = TopN(self.config.recent_tx_capacity, key=_recency_key)

    def add_record(self, r: SaleRecord) -> None:
        y, q, seg, psf = r.year, r.quarter, r.segment, r.psf

        self.total += 1
        self.volume += r.price
        self.samples.add(Sample(psf, r.area, seg, r.district, y))

        yb = self.by_year.get(y)
        if yb is None:
            yb = self.by_year[y] = YearBucket(
                sample=ReservoirSample(self.config.year_sample_capacity, self.rng)
            )
        yb.add(psf)
        yb.v += r.price
        yb.sample.add(psf)

        qb = self.by_quarter[q]
        qb.add(psf)
        qb.v += r.price
        qb.segment_counts[seg] += 1

        self.by_segment[seg].add_year(y, psf)

        db = self.by_district[r.district]
        db.add_year(y, psf)
        db.v += r.price
        db.segment_counts[seg] += 1
        db.by_quarter[q].add(psf)

        tb = self.by_type[r.property_type]
        tb.add_year(y, psf)
        tb.segment_counts[seg] += 1

        self.by_tenure[r.tenure].add_year(y, psf)

        pb = self.by_project.get(r.project)
        if pb is None:
            pb = self.by_project[r.project] = ProjectBucket(
                name=r.project,
                street=r.street,
                segment=seg,
                district=r.district,
                tenure=r.tenure,
                property_type=r.property_type,
            )
        pb.s += psf
        pb.n += 1
        if len(pb.areas) < self.config.project_sample_capacity:
            pb.areas.append(r.area)
        pyb = pb.by_year[y]
        pyb.add(psf)
        pyb.price_sum += r.price
        if r.floor_band:
            pb.by_floor[r.floor_band].add(psf)
            self.by_floor[r.floor_band].add(psf)
        if r.period > pb.latest:
            pb.latest = r.period

        self.recent.add(r)

    @property
    def years(self) -> List[str]:
        return sorted(self.by_year)

    def log_summary(self) -> None:
        logger.info(
            f"Rollup: {self.total} transactions, {len(self.by_project)} projects, "
            f"{len(self.by_district)} districts, {len(self.by_year)} years"
        )


# =============================================================================
# STREAMING AGGREGATOR
# =============================================================================

class StreamingAggregator:
    """
    Folds raw URA project groups into a SalesRollup in one pass.

    Every accepted record is also appended to `store`, the retained
    transaction store used later for search and filtered re-aggregation.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        rng: Optional[random.Random] = None,
        store: Optional[List[SaleRecord]] = None,
    ):
        self.config = config or EngineConfig()
        self.rng = rng or random.Random(self.config.random_seed)
        self.rollup = SalesRollup(self.config, self.rng)
        self.normalizer = TransactionNormalizer()
        self.store: List[SaleRecord] = store if store is not None else []
        self.computed_yields: Optional[Dict[str, float]] = None
        self._built = False

    @property
    def skipped_groups(self) -> int:
        return self.normalizer.get_stats()['projects_skipped']

    def add(self, group: Any) -> int:
        """
        Consume one project's transaction group.

        Returns the number of transactions accepted. Unusable groups are
        skipped and counted, never raised.
        """
        if self._built:
            raise AggregatorStateError("add() called after build(); create a new aggregator")
        accepted = 0
        for record in self.normalizer.map_project(group):
            self.rollup.add_record(record)
            self.store.append(record)
            accepted += 1
        return accepted

    @log_timing("dashboard build", log=logger)
    def build(self, rental_aggregate=None) -> Dict[str, Any]:
        """
        Derive the dashboard payload. Terminal: may be called once.

        Args:
            rental_aggregate: RentalAggregate of real rentals, or None to
                estimate rents from segment yields
        """
        if self._built:
            raise AggregatorStateError("build() already called on this aggregator")
        self._built = True

        self.normalizer.log_summary('sales')
        self.rollup.log_summary()

        self.computed_yields = resolve_yields(self.store, rental_aggregate, self.config)
        return build_payload(
            self.rollup,
            self.store,
            rental_aggregate,
            yields=self.computed_yields,
            config=self.config,
            rng=self.rng,
        )
