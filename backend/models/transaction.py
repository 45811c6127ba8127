"""
Canonical Records - normalized sale and rental transactions

These are the compact, immutable records the engine retains in memory after
normalization. Raw URA fields map as follows:

  URA field            → Record field      Notes
  ──────────────────────────────────────────────────────────────
  contractDate (MMYY)  → period            "YYYY-MM", month resolution
                       → year / quarter    "2024" / "24Q1"
  area (sqm)           → area              Integer sqft (sqm × 10.7639)
  price                → price
  (computed)           → psf               round(price / area), (0, 50000]
  floorRange           → floor_band        "06-10", None when unknown
                       → floor_mid         Numeric midpoint, 0 when unknown
  tenure (free text)   → tenure            Freehold / 999-yr / Leasehold
  typeOfSale           → sale_type         New Sale / Sub Sale / Resale
  district             → district          "D01".."D28"

Rental records carry the monthly rent, rent per sqft, the formatted area
range label ("800 - 900") and the bedroom label as published ("" = unknown).
"""
from dataclasses import dataclass, field
from typing import Optional


def period_ordinal(period: str) -> int:
    """Month ordinal for a "YYYY-MM" period (monotonic across years)."""
    return int(period[:4]) * 12 + int(period[5:7]) - 1


def period_quarter(period: str) -> str:
    """"24Q1" label for a "YYYY-MM" period."""
    return f"{period[2:4]}Q{(int(period[5:7]) - 1) // 3 + 1}"


def _set_period_fields(record) -> None:
    # Derived once so rollups and filters read plain attributes
    object.__setattr__(record, 'year', record.period[:4])
    object.__setattr__(record, 'quarter', period_quarter(record.period))
    object.__setattr__(record, 'ordinal', period_ordinal(record.period))


@dataclass(frozen=True)
class SaleRecord:
    period: str
    project: str
    street: str
    district: str
    segment: str
    property_type: str
    tenure: str
    area: int
    price: float
    psf: int
    floor_band: Optional[str]
    floor_mid: float
    sale_type: str

    year: str = field(init=False, repr=False, compare=False)
    quarter: str = field(init=False, repr=False, compare=False)
    ordinal: int = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        _set_period_fields(self)


@dataclass(frozen=True)
class RentalRecord:
    period: str
    project: str
    street: str
    district: str
    segment: str
    area: int
    area_label: str
    bedrooms: str
    rent: float
    rent_psf: float
    contracts: int
    lease_date: str

    year: str = field(init=False, repr=False, compare=False)
    quarter: str = field(init=False, repr=False, compare=False)
    ordinal: int = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        _set_period_fields(self)

    @property
    def has_bedroom_count(self) -> bool:
        return self.bedrooms.isdigit()
