"""
Transaction Normalizer - Raw URA records → canonical in-memory records

Converts the URA Data Service project/transaction structure into the compact
SaleRecord / RentalRecord shapes retained by the aggregation engine.
Handles:
- Contract date parsing (MMYY → "YYYY-MM", quarter label "24Q1")
- Area conversion (sqm → integer sqft) and PSF derivation with sanity bounds
- Floor range parsing ("06 to 10" → band "06-10", midpoint 8)
- Tenure and sale type categorisation
- Rental area-range midpoints and reference-quarter date fallback

FAIL-CLOSED POLICY:
    A transaction that fails any rule is dropped, never raised. URA data is
    dirty often enough that one bad row must not abort a batch. Every drop is
    counted by reason so the summary log shows what was discarded.

Usage:
    from services.normalizer import TransactionNormalizer, normalize_sale

    normalizer = TransactionNormalizer()
    for record in normalizer.map_project(project_dict):
        aggregator_input.append(record)
    normalizer.log_summary()
"""

import logging
import math
from datetime import date
from typing import Any, Dict, Iterator, Optional, Tuple

from constants import (
    DEFAULT_SEGMENT,
    MAX_PSF,
    SALE_TYPE_RESALE,
    SQM_TO_SQFT,
    TYPE_OF_SALE_MAP,
    normalize_segment,
    normalize_tenure,
)
from models.transaction import RentalRecord, SaleRecord

logger = logging.getLogger('normalizer')

__all__ = [
    'TransactionNormalizer',
    'normalize_sale',
    'normalize_rental',
    'parse_contract_date',
    'parse_floor_range',
    'parse_area_range',
    'normalize_district',
    'map_sale_type',
    'quarter_label',
]

# Two-digit years above this are 19xx (legacy records), otherwise 20xx
CENTURY_PIVOT = 50


# =============================================================================
# Date Parsing
# =============================================================================

def parse_contract_date(mmyy: Any) -> Optional[date]:
    """
    Parse URA's MMYY contract date to the first day of that month.

    Examples:
        >>> parse_contract_date("0125")
        date(2025, 1, 1)
        >>> parse_contract_date("1298")
        date(1998, 12, 1)
    """
    if not mmyy or not isinstance(mmyy, str):
        return None

    mmyy = mmyy.strip()
    if len(mmyy) != 4 or not mmyy.isdigit():
        return None

    mm = int(mmyy[:2])
    yy = int(mmyy[2:])
    if not (1 <= mm <= 12):
        return None

    year = 1900 + yy if yy > CENTURY_PIVOT else 2000 + yy
    return date(year, mm, 1)


def quarter_label(d: date) -> str:
    """Quarter label in the "{yy}Q{n}" form, e.g. date(2024, 5, 1) → "24Q2"."""
    return f"{d.year % 100:02d}Q{math.ceil(d.month / 3)}"


def _period(d: date) -> str:
    return f"{d.year}-{d.month:02d}"


def parse_reference_quarter(ref: Any) -> Optional[date]:
    """
    Middle month of a rental reference quarter ("24q1" → date(2024, 2, 1)).
    """
    if not ref:
        return None
    s = str(ref).strip().lower()
    if len(s) != 4 or s[2] != 'q' or not s[:2].isdigit() or s[3] not in '1234':
        return None
    yy = int(s[:2])
    year = 1900 + yy if yy > CENTURY_PIVOT else 2000 + yy
    return date(year, (int(s[3]) - 1) * 3 + 2, 1)


# =============================================================================
# Field Parsing Helpers
# =============================================================================

def parse_float_safe(value: Any, field_name: str = "unknown") -> Optional[float]:
    """Safely parse a value to float, returning None on failure."""
    if value is None:
        return None
    try:
        result = float(value)
        if math.isnan(result) or math.isinf(result):
            return None
        return result
    except (ValueError, TypeError):
        logger.debug(f"Failed to parse {field_name} as float: '{value}'")
        return None


def parse_int_safe(value: Any, field_name: str = "unknown", default: int = 1) -> int:
    """Safely parse a value to int, returning default on failure."""
    if value is None:
        return default
    try:
        return int(float(value))
    except (ValueError, TypeError):
        logger.debug(f"Failed to parse {field_name} as int: '{value}'")
        return default


def normalize_district(district: Any) -> str:
    """
    Normalize district to D01, D02, etc. format.

    URA API returns "01", "02", etc. We standardize to "D01", "D02".
    Unparseable input is returned stripped (empty string for missing).
    """
    if district is None:
        return ""

    district = str(district).strip()
    if not district:
        return ""

    num = district[1:] if district.upper().startswith('D') else district
    try:
        return f"D{int(num):02d}"
    except ValueError:
        logger.debug(f"Unable to normalize district: '{district}'")
        return district


def map_sale_type(type_of_sale: Any) -> str:
    """Map URA typeOfSale code ("1", "2", "3") to the canonical label."""
    return TYPE_OF_SALE_MAP.get(str(type_of_sale).strip(), SALE_TYPE_RESALE)


def _leading_int(text: str) -> int:
    digits = ''
    for ch in text.strip():
        if ch.isdigit():
            digits += ch
        else:
            break
    return int(digits) if digits else 0


def parse_floor_range(floor_range: Any) -> Tuple[Optional[str], float]:
    """
    Parse a floor range into (band, midpoint).

    "06 to 10" → ("06-10", 8.0); "06-10" is accepted as already normalized.
    Missing, "-" or unparseable ranges → (None, 0).

    Basement levels ("B1 to B2") are unparseable and count as unknown.
    """
    if not floor_range or not isinstance(floor_range, str):
        return None, 0
    fr = floor_range.strip()
    if not fr or fr == '-':
        return None, 0

    compact = fr.replace(' ', '').lower()
    if 'to' in compact:
        parts = compact.split('to')
    else:
        parts = compact.split('-')
    if len(parts) != 2:
        return None, 0

    lo, hi = _leading_int(parts[0]), _leading_int(parts[1])
    if lo <= 0 or hi <= 0 or hi < lo:
        return None, 0
    return f"{lo:02d}-{hi:02d}", (lo + hi) / 2


def parse_area_range(value: Any) -> float:
    """
    Midpoint of an area range string ("800-900" → 850.0); single values pass through.

    Returns 0 when the value is missing or unparseable.
    """
    if value is None or value == '':
        return 0
    parts = [parse_float_safe(p, 'area') for p in str(value).split('-')]
    if len(parts) == 2 and parts[0] and parts[1] and parts[0] > 0:
        return (parts[0] + parts[1]) / 2
    if len(parts) == 1 and parts[0] and parts[0] > 0:
        return parts[0]
    return 0


def format_area_label(area_sqft_raw: Any, area_sqft: int) -> str:
    """Display label for a rental area: "1,000 - 1,100", or the midpoint alone."""
    if area_sqft_raw:
        try:
            return ' - '.join(f"{int(float(v)):,}" for v in str(area_sqft_raw).split('-'))
        except ValueError:
            pass
    return f"{area_sqft:,}"


# =============================================================================
# Record Normalization (pure)
# =============================================================================

def _sale_or_reason(
    txn: Dict[str, Any],
    project: str,
    street: str,
    segment: str,
) -> Tuple[Optional[SaleRecord], Optional[str]]:
    if not project:
        return None, 'missing_project'

    d = parse_contract_date(txn.get('contractDate'))
    if d is None:
        return None, 'invalid_date'

    area_sqm = parse_float_safe(txn.get('area'), 'area') or 0
    area = int(math.floor(area_sqm * SQM_TO_SQFT + 0.5))
    if area <= 0:
        return None, 'invalid_area'

    price = parse_float_safe(txn.get('price'), 'price') or 0
    if price <= 0:
        return None, 'invalid_price'

    psf = int(math.floor(price / area + 0.5))
    if psf <= 0 or psf > MAX_PSF:
        return None, 'invalid_psf'

    band, mid = parse_floor_range(txn.get('floorRange'))

    return SaleRecord(
        period=_period(d),
        project=project,
        street=street,
        district=normalize_district(txn.get('district')),
        segment=segment,
        property_type=str(txn.get('propertyType') or '').strip() or 'Unknown',
        tenure=normalize_tenure(txn.get('tenure')),
        area=area,
        price=price,
        psf=psf,
        floor_band=band,
        floor_mid=mid,
        sale_type=map_sale_type(txn.get('typeOfSale', '3')),
    ), None


def normalize_sale(
    txn: Dict[str, Any],
    project: str,
    street: str = '',
    segment: str = DEFAULT_SEGMENT,
) -> Optional[SaleRecord]:
    """
    Normalize one raw URA sale transaction.

    Returns None when the record fails any rule: bad date, area <= 0,
    price <= 0, or PSF outside (0, 50000].
    """
    record, _ = _sale_or_reason(txn, project, street, segment)
    return record


def _rental_or_reason(
    rental: Dict[str, Any],
    project: str,
    street: str,
    district: str,
    segment: str,
    ref_quarter: Any = None,
) -> Tuple[Optional[RentalRecord], Optional[str]]:
    if not project:
        return None, 'missing_project'

    area_raw = rental.get('areaSqft')
    area = int(math.floor(parse_area_range(area_raw) + 0.5))
    if area <= 0:
        area = int(math.floor(parse_area_range(rental.get('areaSqm')) * SQM_TO_SQFT + 0.5))
    if area <= 0:
        return None, 'invalid_area'

    rent = parse_float_safe(rental.get('rent'), 'rent') or 0
    if rent <= 0:
        return None, 'invalid_rent'

    lease_date = str(rental.get('leaseDate') or '').strip()
    d = parse_contract_date(lease_date) or parse_reference_quarter(ref_quarter)
    if d is None:
        return None, 'invalid_date'

    return RentalRecord(
        period=_period(d),
        project=project,
        street=street,
        district=district,
        segment=segment,
        area=area,
        area_label=format_area_label(area_raw, area),
        bedrooms=str(rental.get('noOfBedRoom') or '').strip(),
        rent=rent,
        rent_psf=round(rent / area, 2),
        contracts=parse_int_safe(rental.get('noOfRentalContract'), 'noOfRentalContract', default=1),
        lease_date=lease_date,
    ), None


def normalize_rental(
    rental: Dict[str, Any],
    project: str,
    street: str = '',
    district: str = '',
    segment: str = DEFAULT_SEGMENT,
    ref_quarter: Any = None,
) -> Optional[RentalRecord]:
    """
    Normalize one raw URA rental contract row.

    The lease date wins when parseable; otherwise the middle month of the
    reference quarter the batch was fetched for is used.
    """
    record, _ = _rental_or_reason(rental, project, street, district, segment, ref_quarter)
    return record


# =============================================================================
# Batch Mapper (pure mapping + skip statistics)
# =============================================================================

SKIP_REASONS = (
    'missing_project', 'invalid_date', 'invalid_area',
    'invalid_price', 'invalid_psf', 'invalid_rent', 'exception',
)


class TransactionNormalizer:
    """
    Maps URA project groups to canonical records and counts what was dropped.

    Example:
        normalizer = TransactionNormalizer()
        for project in api_response['Result']:
            for record in normalizer.map_project(project):
                ...
    """

    def __init__(self):
        self._stats: Dict[str, int] = {}
        self.reset_stats()

    def reset_stats(self) -> None:
        """Reset processing statistics."""
        self._stats = {
            'projects_processed': 0,
            'projects_skipped': 0,
            'records_processed': 0,
            'records_skipped': 0,
        }
        for reason in SKIP_REASONS:
            self._stats[f'skip_{reason}'] = 0

    def get_stats(self) -> Dict[str, int]:
        """Get processing statistics."""
        return dict(self._stats)

    def _skip(self, reason: str) -> None:
        self._stats['records_skipped'] += 1
        self._stats[f'skip_{reason}'] += 1

    def _rows(self, group: Any, key: str) -> Optional[list]:
        if not isinstance(group, dict):
            logger.warning(f"Skipping project group: expected mapping, got {type(group).__name__}")
            self._stats['projects_skipped'] += 1
            return None
        rows = group.get(key) or []
        if not isinstance(rows, (list, tuple)):
            logger.warning(f"Skipping project '{group.get('project')}': '{key}' is not a list")
            self._stats['projects_skipped'] += 1
            return None
        return rows

    def map_project(self, project: Any) -> Iterator[SaleRecord]:
        """
        Map a URA sales project group to SaleRecords.

        Args:
            project: dict with 'project', 'street', 'marketSegment', 'transaction'

        Yields:
            SaleRecord for each transaction that passes normalization
        """
        transactions = self._rows(project, 'transaction')
        if transactions is None:
            return
        self._stats['projects_processed'] += 1

        name = str(project.get('project') or '').strip()
        street = str(project.get('street') or '').strip()
        segment = normalize_segment(project.get('marketSegment'))

        for txn in transactions:
            try:
                if not isinstance(txn, dict):
                    raise TypeError(f"transaction is {type(txn).__name__}")
                record, reason = _sale_or_reason(txn, name, street, segment)
            except Exception as e:
                logger.error(f"Error mapping transaction in '{name}': {e}")
                self._skip('exception')
                continue
            if record is None:
                logger.debug(f"Skipping transaction in '{name}': {reason}")
                self._skip(reason)
                continue
            self._stats['records_processed'] += 1
            yield record

    def map_rental_project(
        self,
        project: Any,
        ref_quarter: Any = None,
        segment_lookup: Optional[Dict[str, str]] = None,
    ) -> Iterator[RentalRecord]:
        """
        Map a URA rental project group to RentalRecords.

        Args:
            project: dict with 'project', 'street', 'district', 'marketSegment', 'rental'
            ref_quarter: quarter the batch was fetched for ("24q1"); date fallback
            segment_lookup: project → segment from sales data, preferred over the
                rental feed's own segment
        """
        rentals = self._rows(project, 'rental')
        if rentals is None:
            return
        self._stats['projects_processed'] += 1

        name = str(project.get('project') or '').strip()
        street = str(project.get('street') or '').strip()
        district = normalize_district(project.get('district'))
        segment = (segment_lookup or {}).get(name) or normalize_segment(project.get('marketSegment'))
        ref = project.get('refPeriod', ref_quarter)

        for rental in rentals:
            try:
                if not isinstance(rental, dict):
                    raise TypeError(f"rental is {type(rental).__name__}")
                record, reason = _rental_or_reason(rental, name, street, district, segment, ref)
            except Exception as e:
                logger.error(f"Error mapping rental in '{name}': {e}")
                self._skip('exception')
                continue
            if record is None:
                logger.debug(f"Skipping rental in '{name}': {reason}")
                self._skip(reason)
                continue
            self._stats['records_processed'] += 1
            yield record

    def log_summary(self, label: str = 'sales') -> None:
        """Log one summary line with the skip breakdown."""
        skip_breakdown = [
            f"{reason}={self._stats[f'skip_{reason}']}"
            for reason in SKIP_REASONS
            if self._stats[f'skip_{reason}'] > 0
        ]
        skip_detail = f" ({', '.join(skip_breakdown)})" if skip_breakdown else ""
        group_detail = (
            f", {self._stats['projects_skipped']} groups skipped"
            if self._stats['projects_skipped'] else ""
        )
        logger.info(
            f"Normalized {label}: {self._stats['projects_processed']} projects, "
            f"{self._stats['records_processed']} records, "
            f"{self._stats['records_skipped']} skipped{skip_detail}{group_detail}"
        )
