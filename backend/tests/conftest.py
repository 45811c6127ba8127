"""
Root pytest configuration for backend tests.

Provides:
- backend/ on sys.path so `from services.x import ...` works
- Shared fixtures: seeded RNG, engine config, raw URA project groups
- Record factories for building canonical records directly
"""

import random
import sys
from pathlib import Path

# Add backend directory to Python path so imports like
# `from services.normalizer import ...` and `from utils.normalize import ...` work
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

import pytest

from config import EngineConfig
from models.transaction import RentalRecord, SaleRecord


def make_sale(
    period='2024-01',
    project='ALPHA',
    psf=1000,
    area=1000,
    district='D09',
    segment='CCR',
    street='ORCHARD ROAD',
    property_type='Condominium',
    tenure='Freehold',
    floor_band='06-10',
    floor_mid=8.0,
    sale_type='Resale',
    price=None,
):
    """Build a SaleRecord; price defaults to psf * area."""
    return SaleRecord(
        period=period,
        project=project,
        street=street,
        district=district,
        segment=segment,
        property_type=property_type,
        tenure=tenure,
        area=area,
        price=price if price is not None else psf * area,
        psf=psf,
        floor_band=floor_band,
        floor_mid=floor_mid,
        sale_type=sale_type,
    )


def make_rental(
    period='2024-01',
    project='ALPHA',
    rent=4000,
    area=1000,
    bedrooms='3',
    district='D09',
    segment='CCR',
    street='ORCHARD ROAD',
):
    return RentalRecord(
        period=period,
        project=project,
        street=street,
        district=district,
        segment=segment,
        area=area,
        area_label=f"{area:,}",
        bedrooms=bedrooms,
        rent=rent,
        rent_psf=round(rent / area, 2),
        contracts=1,
        lease_date='',
    )


@pytest.fixture
def rng():
    """Deterministic RNG so sampling-dependent assertions never flake."""
    return random.Random(42)


@pytest.fixture
def config():
    return EngineConfig(random_seed=42)


@pytest.fixture
def alpha_project():
    """Three 2024 sales for project Alpha (area in sqm, as URA publishes it)."""
    return {
        "project": "Alpha",
        "street": "ALPHA ROAD",
        "marketSegment": "RCR",
        "transaction": [
            {
                "contractDate": "0124",
                "propertyType": "Condominium",
                "district": "15",
                "tenure": "Freehold",
                "price": "1000000",
                "area": "50.0",
                "floorRange": "06 to 10",
                "typeOfSale": "3",
            },
            {
                "contractDate": "0224",
                "propertyType": "Condominium",
                "district": "15",
                "tenure": "99 yrs lease commencing from 2010",
                "price": "1100000",
                "area": "55.0",
                "floorRange": "11 to 15",
                "typeOfSale": "3",
            },
            {
                "contractDate": "0324",
                "propertyType": "Condominium",
                "district": "15",
                "tenure": "999 yrs lease commencing from 1885",
                "price": "950000",
                "area": "50.0",
                "floorRange": "-",
                "typeOfSale": "1",
            },
        ],
    }


@pytest.fixture
def rental_project():
    """URA rental group: one project with 1-, 2- and 3-bedroom contracts."""
    return {
        "project": "Alpha",
        "street": "ALPHA ROAD",
        "district": "15",
        "marketSegment": "RCR",
        "refPeriod": "24q1",
        "rental": [
            {"areaSqft": "500-600", "rent": "2800", "noOfBedRoom": "1", "leaseDate": "0124", "noOfRentalContract": "1"},
            {"areaSqft": "500-600", "rent": "2900", "noOfBedRoom": "1", "leaseDate": "0224", "noOfRentalContract": "1"},
            {"areaSqft": "600-700", "rent": "3000", "noOfBedRoom": "1", "leaseDate": "0324", "noOfRentalContract": "2"},
            {"areaSqft": "700-800", "rent": "3600", "noOfBedRoom": "2", "leaseDate": "0124", "noOfRentalContract": "1"},
            {"areaSqft": "800-900", "rent": "3800", "noOfBedRoom": "2", "leaseDate": "0224", "noOfRentalContract": "1"},
            {"areaSqft": "800-900", "rent": "3900", "noOfBedRoom": "2", "leaseDate": "", "noOfRentalContract": "1"},
            {"areaSqft": "1000-1100", "rent": "4800", "noOfBedRoom": "3", "leaseDate": "0124", "noOfRentalContract": "1"},
            {"areaSqft": "1100-1200", "rent": "5000", "noOfBedRoom": "3", "leaseDate": "0224", "noOfRentalContract": "1"},
            {"areaSqft": "1100-1200", "rent": "5200", "noOfBedRoom": "3", "leaseDate": "0324", "noOfRentalContract": "1"},
        ],
    }


@pytest.fixture
def sale():
    """Factory fixture: sale(period=..., psf=..., ...) -> SaleRecord."""
    return make_sale


@pytest.fixture
def rental():
    """Factory fixture: rental(period=..., rent=..., ...) -> RentalRecord."""
    return make_rental
