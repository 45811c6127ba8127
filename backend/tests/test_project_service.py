"""
Tests for project detail derivation and the project cache.
"""

import pytest

from services.bedroom_model import BedroomModel, BedroomRange
from services.engine_context import EngineSnapshot
from services.project_service import ProjectService, derive_project


@pytest.fixture
def snapshot(sale, rental):
    """ALPHA on ALPHA ROAD (D15), a street neighbour, a district neighbour and a far project."""
    sales = (
        [sale(project='ALPHA', street='ALPHA ROAD', district='D15', segment='RCR',
              period='2024-03', psf=1000, floor_band='01-05', floor_mid=3.0) for _ in range(3)]
        + [sale(project='ALPHA', street='ALPHA ROAD', district='D15', segment='RCR',
                period='2024-03', psf=1100, floor_band='11-15', floor_mid=13.0) for _ in range(3)]
        + [sale(project='ALPHA', street='ALPHA ROAD', district='D15', segment='RCR',
                period='2023-06', psf=900, area=800) for _ in range(2)]
        + [sale(project='BETA', street='ALPHA ROAD', district='D15', segment='RCR',
                period='2024-01', psf=1300) for _ in range(3)]
    )
    rentals = (
        rental(project='ALPHA', district='D15', segment='RCR', period='2024-01', rent=4000, area=1000),
        rental(project='ALPHA', district='D15', segment='RCR', period='2024-02', rent=4000, area=1000),
        rental(project='BETA', district='D15', segment='RCR', period='2024-02', rent=3333, area=900),
    )
    model = BedroomModel(market_ranges=(
        BedroomRange('2', 700, 850, 800, 3),
        BedroomRange('3', 950, 1200, 1000, 3),
    ))
    index = {
        'ALPHA': {'dist': 'D15', 'seg': 'RCR', 'street': 'ALPHA ROAD', 'n': 8, 'psf': 1050},
        'BETA': {'dist': 'D15', 'seg': 'RCR', 'street': 'ALPHA ROAD', 'n': 3, 'psf': 1300},
        'GAMMA': {'dist': 'D15', 'seg': 'RCR', 'street': 'GAMMA LANE', 'n': 10, 'psf': 1200},
        'FAR': {'dist': 'D01', 'seg': 'CCR', 'street': 'FAR WAY', 'n': 50, 'psf': 3000},
    }
    payload = {'projIndex': index, 'sDistBar': [{'d': 'D15', 'v': 1111}]}
    return EngineSnapshot(
        generation=1,
        sales=tuple(sales),
        rentals=rentals,
        bedroom_model=model,
        payload=payload,
        computed_yields=None,
        project_index=index,
    )


class TestDeriveProject:
    """Tests for derive_project()."""

    def test_unknown_project(self, snapshot):
        assert derive_project(snapshot, 'NOWHERE') is None

    def test_project_info(self, snapshot):
        info = derive_project(snapshot, 'ALPHA')['projInfo']

        assert info['totalTx'] == 8
        assert info['avgPsf'] == 1050
        assert info['psfPeriod'] == '24Q1'
        assert info['district'] == 'D15 (ALPHA ROAD)'
        assert info['distAvg'] == 1111
        assert info['avgRent'] == 4000
        assert info['rentPsf'] == 4.0
        assert info['yield'] == 4.57
        assert info['rentalPeriod'] == '2024-01-2024-02'
        assert info['hasRealRental'] is True

    def test_floor_premium_against_low_floors(self, snapshot):
        detail = derive_project(snapshot, 'ALPHA')

        assert detail['baselineSource'] == 'low_floor'
        assert detail['floorPeriod'] == '12M'
        premiums = {b['range']: b['premium'] for b in detail['projFloor']}
        assert premiums == {'01-05': 0.0, '06-10': -10.0, '11-15': 10.0}
        assert detail['thinBands'] == ['06-10']

    def test_heat_map_and_trend(self, snapshot):
        detail = derive_project(snapshot, 'ALPHA')

        assert detail['hmYears'] == ['2023', '2024']
        assert detail['hmFloors'] == ['01-05', '06-10', '11-15']
        assert detail['floorRanges'] == detail['hmFloors']
        assert detail['hmMatrix']['06-10-2023'] == {'psf': 900, 'vol': 2, 'price': 720000}
        assert [row['q'] for row in detail['projPsfTrend']] == ['23Q2', '24Q1']
        assert detail['yearPsf'] == {'2023': 900, '2024': 1050}

    def test_transactions_newest_first(self, snapshot):
        tx = derive_project(snapshot, 'ALPHA')['projTx']
        assert len(tx) == 8
        assert tx[0]['date'] == '2024-03'
        assert tx[-1]['date'] == '2023-06'

    def test_bedroom_breakdowns(self, snapshot):
        detail = derive_project(snapshot, 'ALPHA')

        assert detail['bedOptions'] == ['2', '3']
        assert detail['bedYearPsf'] == {'3': {'2024': 1050}, '2': {'2023': 900}}
        assert detail['projSizes'] == [800, 1000]

    def test_nearby_same_street_first(self, snapshot):
        nearby = derive_project(snapshot, 'ALPHA')['nearbyProjects']

        assert [(p['name'], p['rel']) for p in nearby] == [('BETA', 'street'), ('GAMMA', 'district')]
        assert nearby[0]['rent'] == 3300
        assert nearby[1]['rent'] == 0


class TestProjectService:
    """Tests for the cached lookup."""

    def test_cached_per_generation(self, snapshot):
        service = ProjectService(cache_size=20)
        first = service.get_project(snapshot, 'ALPHA')
        second = service.get_project(snapshot, 'ALPHA')

        assert first is second
        assert service.cache_stats()['hits'] == 1

    def test_unknown_not_cached(self, snapshot):
        service = ProjectService()
        assert service.get_project(snapshot, 'NOWHERE') is None
        assert service.cache_stats()['size'] == 0

    def test_no_snapshot(self):
        assert ProjectService().get_project(None, 'ALPHA') is None

    def test_clear(self, snapshot):
        service = ProjectService()
        first = service.get_project(snapshot, 'ALPHA')
        service.clear()
        assert service.get_project(snapshot, 'ALPHA') is not first
