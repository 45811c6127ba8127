"""
Tests for the Transaction Normalizer

Raw URA project groups → SaleRecord / RentalRecord, with fail-closed drops.
"""

import pytest
from datetime import date

from services.normalizer import (
    TransactionNormalizer,
    normalize_sale,
    normalize_rental,
    parse_contract_date,
    parse_reference_quarter,
    parse_floor_range,
    parse_area_range,
    normalize_district,
    map_sale_type,
    quarter_label,
)
from constants import (
    SALE_TYPE_NEW,
    SALE_TYPE_RESALE,
    SALE_TYPE_SUB,
    TENURE_999_YEAR,
    TENURE_FREEHOLD,
    TENURE_LEASEHOLD,
)


def _txn(**overrides):
    txn = {
        "contractDate": "0124",
        "propertyType": "Condominium",
        "district": "09",
        "tenure": "Freehold",
        "price": "1000000",
        "area": "100",
        "floorRange": "06 to 10",
        "typeOfSale": "3",
    }
    txn.update(overrides)
    return txn


@pytest.fixture
def normalizer():
    return TransactionNormalizer()


# =============================================================================
# Field Parsing
# =============================================================================

class TestParseContractDate:
    """Tests for MMYY contract date parsing."""

    def test_parse_recent_date(self):
        """0124 is January 2024."""
        assert parse_contract_date("0124") == date(2024, 1, 1)

    def test_parse_legacy_century(self):
        """Two-digit years above 50 belong to the 1900s."""
        assert parse_contract_date("1298") == date(1998, 12, 1)

    def test_parse_invalid_inputs(self):
        """Malformed dates return None."""
        assert parse_contract_date(None) is None
        assert parse_contract_date("") is None
        assert parse_contract_date("1324") is None
        assert parse_contract_date("ab24") is None
        assert parse_contract_date("01245") is None

    def test_quarter_label(self):
        """Quarter labels use the two-digit year."""
        assert quarter_label(date(2024, 1, 1)) == "24Q1"
        assert quarter_label(date(2024, 5, 1)) == "24Q2"
        assert quarter_label(date(1998, 12, 1)) == "98Q4"

    def test_reference_quarter_is_middle_month(self):
        """A reference quarter maps to its middle month."""
        assert parse_reference_quarter("24q1") == date(2024, 2, 1)
        assert parse_reference_quarter("23Q4") == date(2023, 11, 1)
        assert parse_reference_quarter("24q5") is None
        assert parse_reference_quarter(None) is None


class TestParseFloorRange:
    """Tests for floor range parsing."""

    def test_ura_format(self):
        assert parse_floor_range("06 to 10") == ("06-10", 8.0)

    def test_already_normalized(self):
        assert parse_floor_range("11-15") == ("11-15", 13.0)

    def test_unknown_floor(self):
        """Missing, dash and basement ranges are unknown."""
        assert parse_floor_range("-") == (None, 0)
        assert parse_floor_range("") == (None, 0)
        assert parse_floor_range(None) == (None, 0)
        assert parse_floor_range("B1 to B2") == (None, 0)


class TestParseAreaRange:
    """Tests for rental area range midpoints."""

    def test_range_midpoint(self):
        assert parse_area_range("800-900") == 850.0

    def test_single_value(self):
        assert parse_area_range("1200") == 1200.0

    def test_unparseable(self):
        assert parse_area_range(None) == 0
        assert parse_area_range("") == 0
        assert parse_area_range("abc-def") == 0


class TestSimpleMappings:
    """District and sale type mapping."""

    def test_normalize_district(self):
        assert normalize_district("9") == "D09"
        assert normalize_district("15") == "D15"
        assert normalize_district("d12") == "D12"
        assert normalize_district(None) == ""

    def test_map_sale_type(self):
        assert map_sale_type("1") == SALE_TYPE_NEW
        assert map_sale_type("2") == SALE_TYPE_SUB
        assert map_sale_type("3") == SALE_TYPE_RESALE
        assert map_sale_type("9") == SALE_TYPE_RESALE


# =============================================================================
# Sale Normalization
# =============================================================================

class TestNormalizeSale:
    """Tests for single-transaction normalization."""

    def test_area_converted_to_sqft(self):
        """100 sqm → 1076 sqft, psf = round(price / sqft)."""
        record = normalize_sale(_txn(), "ALPHA")
        assert record.area == 1076
        assert record.psf == 929
        assert record.period == "2024-01"
        assert record.quarter == "24Q1"
        assert record.district == "D09"

    def test_psf_upper_bound_inclusive(self):
        """PSF of exactly 50,000 is kept; 50,001 is dropped."""
        # 1 sqm → 11 sqft
        assert normalize_sale(_txn(area="1", price="550000"), "ALPHA").psf == 50000
        assert normalize_sale(_txn(area="1", price="550011"), "ALPHA") is None

    def test_non_positive_area_dropped(self):
        assert normalize_sale(_txn(area="0"), "ALPHA") is None
        assert normalize_sale(_txn(area="-5"), "ALPHA") is None

    def test_non_positive_price_dropped(self):
        assert normalize_sale(_txn(price="0"), "ALPHA") is None
        assert normalize_sale(_txn(price="abc"), "ALPHA") is None

    def test_missing_project_dropped(self):
        assert normalize_sale(_txn(), "") is None

    def test_tenure_categories(self):
        """Free text tenure collapses to three categories."""
        assert normalize_sale(_txn(tenure="Freehold"), "A").tenure == TENURE_FREEHOLD
        assert normalize_sale(_txn(tenure="999 yrs lease commencing from 1885"), "A").tenure == TENURE_999_YEAR
        assert normalize_sale(_txn(tenure="99 yrs lease commencing from 2010"), "A").tenure == TENURE_LEASEHOLD
        assert normalize_sale(_txn(tenure=None), "A").tenure == TENURE_LEASEHOLD

    def test_unknown_floor_kept(self):
        """An unknown floor range does not drop the transaction."""
        record = normalize_sale(_txn(floorRange="-"), "ALPHA")
        assert record.floor_band is None
        assert record.floor_mid == 0


class TestMapProject:
    """Tests for mapping whole URA project groups."""

    def test_alpha_project(self, normalizer, alpha_project):
        """All three Alpha transactions survive with derived fields."""
        records = list(normalizer.map_project(alpha_project))

        assert len(records) == 3
        assert [r.psf for r in records] == [1859, 1858, 1766]
        assert [r.area for r in records] == [538, 592, 538]
        assert all(r.district == "D15" for r in records)
        assert all(r.segment == "RCR" for r in records)
        assert records[0].floor_band == "06-10"
        assert records[2].floor_band is None
        assert records[2].sale_type == SALE_TYPE_NEW

    def test_skip_reasons_counted(self, normalizer):
        group = {
            "project": "BETA",
            "transaction": [_txn(), _txn(price="0"), _txn(contractDate="9999"), "not a dict"],
        }
        records = list(normalizer.map_project(group))
        stats = normalizer.get_stats()

        assert len(records) == 1
        assert stats['records_processed'] == 1
        assert stats['records_skipped'] == 3
        assert stats['skip_invalid_price'] == 1
        assert stats['skip_invalid_date'] == 1
        assert stats['skip_exception'] == 1

    def test_unknown_segment_defaults(self, normalizer):
        group = {"project": "GAMMA", "marketSegment": "XYZ", "transaction": [_txn()]}
        assert list(normalizer.map_project(group))[0].segment == "RCR"

    def test_malformed_group_skipped(self, normalizer):
        """Non-dict groups and non-list transactions are skipped, not raised."""
        assert list(normalizer.map_project("garbage")) == []
        assert list(normalizer.map_project({"project": "X", "transaction": "nope"})) == []
        assert normalizer.get_stats()['projects_skipped'] == 2


# =============================================================================
# Rental Normalization
# =============================================================================

class TestNormalizeRental:
    """Tests for rental contract normalization."""

    def test_area_midpoint_and_rent_psf(self):
        record = normalize_rental(
            {"areaSqft": "800-900", "rent": "3400", "noOfBedRoom": "2", "leaseDate": "0324"},
            "ALPHA", district="D15",
        )
        assert record.area == 850
        assert record.rent_psf == 4.0
        assert record.area_label == "800 - 900"
        assert record.bedrooms == "2"
        assert record.period == "2024-03"

    def test_reference_quarter_fallback(self):
        """Without a lease date the reference quarter's middle month is used."""
        record = normalize_rental(
            {"areaSqft": "800-900", "rent": "3400", "leaseDate": ""},
            "ALPHA", ref_quarter="24q3",
        )
        assert record.period == "2024-08"
        assert record.bedrooms == ""

    def test_sqm_fallback(self):
        record = normalize_rental({"areaSqm": "100", "rent": "5000", "leaseDate": "0124"}, "ALPHA")
        assert record.area == 1076

    def test_invalid_rent_dropped(self):
        assert normalize_rental({"areaSqft": "800-900", "rent": "0", "leaseDate": "0124"}, "A") is None

    def test_no_date_at_all_dropped(self):
        assert normalize_rental({"areaSqft": "800-900", "rent": "3000"}, "A") is None

    def test_map_rental_project(self, normalizer, rental_project):
        records = list(normalizer.map_rental_project(rental_project))

        assert len(records) == 9
        assert all(r.district == "D15" for r in records)
        assert records[5].period == "2024-02"
        assert records[2].contracts == 2

    def test_segment_lookup_overrides_feed(self, normalizer, rental_project):
        records = list(normalizer.map_rental_project(rental_project, segment_lookup={"Alpha": "CCR"}))
        assert {r.segment for r in records} == {"CCR"}
