"""
Bedroom Inference Model

Estimates bedroom count from unit area (sqft). URA sales data doesn't
include bedroom count, but rental contracts do, so area ranges are learned
from rentals and applied to sales.

Two scopes:
- Project: ranges from that project's own rental contracts
- Market: ranges from all rental contracts, used when a project has none

A scope is usable only with >= 2 bedroom groups of >= 3 observations each.
Overlapping ranges are surfaced as "2/3" rather than resolved.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from models.transaction import RentalRecord

logger = logging.getLogger('bedroom')

# Label returned when no usable range exists for the area
UNKNOWN_BEDROOMS = ''

MIN_OBSERVATIONS = 3
MIN_GROUPS = 2


@dataclass(frozen=True)
class BedroomRange:
    bedrooms: str
    min_area: int
    max_area: int
    median_area: int
    count: int

    def contains(self, area: float) -> bool:
        return self.min_area <= area <= self.max_area


def _build_ranges(areas_by_bed: Dict[str, List[int]]) -> Optional[Tuple[BedroomRange, ...]]:
    ranges = []
    for bedrooms, areas in areas_by_bed.items():
        if len(areas) < MIN_OBSERVATIONS:
            continue
        s = sorted(areas)
        ranges.append(BedroomRange(
            bedrooms=bedrooms,
            min_area=s[0],
            max_area=s[-1],
            median_area=s[len(s) // 2],
            count=len(s),
        ))
    if len(ranges) < MIN_GROUPS:
        return None
    ranges.sort(key=lambda r: r.median_area)
    return tuple(ranges)


@dataclass(frozen=True)
class BedroomModel:
    project_ranges: Dict[str, Tuple[BedroomRange, ...]] = field(default_factory=dict)
    market_ranges: Optional[Tuple[BedroomRange, ...]] = None

    @classmethod
    def from_rentals(cls, rentals: Iterable[RentalRecord]) -> 'BedroomModel':
        """Learn area ranges from rental records with a numeric bedroom label."""
        project_areas: Dict[str, Dict[str, List[int]]] = defaultdict(lambda: defaultdict(list))
        market_areas: Dict[str, List[int]] = defaultdict(list)

        for r in rentals:
            if not r.has_bedroom_count or r.area <= 0:
                continue
            project_areas[r.project][r.bedrooms].append(r.area)
            market_areas[r.bedrooms].append(r.area)

        project_ranges = {}
        for project, areas_by_bed in project_areas.items():
            ranges = _build_ranges(areas_by_bed)
            if ranges:
                project_ranges[project] = ranges

        model = cls(project_ranges=project_ranges, market_ranges=_build_ranges(market_areas))
        market = (
            ', '.join(f"{r.bedrooms}BR[{r.min_area}-{r.max_area}]" for r in model.market_ranges)
            if model.market_ranges else 'none'
        )
        logger.info(f"Bedroom model: {len(project_ranges)} projects with project-level ranges, market=[{market}]")
        return model

    def ranges_for(self, project: str) -> Optional[Tuple[BedroomRange, ...]]:
        return self.project_ranges.get(project) or self.market_ranges

    def infer(self, project: str, area: float) -> str:
        """
        Infer bedroom label for a unit of `area` sqft in `project`.

        Returns a single label ("3"), an ambiguous overlap ("2/3"), the
        closest-median label when no range contains the area, or
        UNKNOWN_BEDROOMS when neither scope is usable.
        """
        if area <= 0:
            return UNKNOWN_BEDROOMS
        ranges = self.ranges_for(project)
        if not ranges:
            return UNKNOWN_BEDROOMS

        matches = [r.bedrooms for r in ranges if r.contains(area)]
        if matches:
            return '/'.join(matches)

        best = min(ranges, key=lambda r: abs(area - r.median_area))
        return best.bedrooms


EMPTY_MODEL = BedroomModel()
