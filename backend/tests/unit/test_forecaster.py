import pytest
from datetime import timedelta

from homegrid.models.domain import TelemetrySample, WeatherSample
from homegrid.services.forecaster import (
    build_slot_baseline,
    comfort_band_weather_adjustment,
    forecast_confidence,
    forecast_demand,
    forecast_solar,
    hourly_household_load,
    solar_point_estimate,
)


@pytest.fixture
def four_weeks(make_samples, now):
    """Hourly readings for 28 days; evening hours draw 150 W, the rest 100 W."""
    def evening(i):
        ts = now - timedelta(hours=28 * 24) + timedelta(hours=i)
        return 150.0 if 17 <= ts.hour < 21 else 100.0
    return make_samples(1, 28 * 24, power=evening)


def test_household_load_sums_devices_per_hour(now):
    hour = now.replace(minute=0)
    samples = [
        TelemetrySample(device_id=1, timestamp=hour, power_consumption=100.0),
        TelemetrySample(device_id=1, timestamp=hour + timedelta(minutes=30), power_consumption=200.0),
        TelemetrySample(device_id=2, timestamp=hour + timedelta(minutes=10), power_consumption=50.0),
    ]
    assert hourly_household_load(samples) == {hour: pytest.approx(200.0)}


def test_slot_baseline_counts_weeks(four_weeks, now):
    baseline = build_slot_baseline(four_weeks)
    assert len(baseline) == 7 * 24
    monday_evening = baseline[(0, 18)]
    assert monday_evening.mean_w == pytest.approx(150.0)
    assert monday_evening.count == 4


def test_bounds_and_confidence_hold_for_every_point(four_weeks, now):
    fc = forecast_demand(four_weeks, now, 3, now)

    assert len(fc.points) == 72
    for p in fc.points:
        assert p.lower_bound <= p.point_estimate <= p.upper_bound
        assert 0.0 <= p.confidence <= 1.0


def test_confidence_non_increasing_with_distance(four_weeks, now):
    fc = forecast_demand(four_weeks, now, 7, now)
    conf = [p.confidence for p in fc.points]
    assert all(a >= b for a, b in zip(conf, conf[1:]))
    assert conf[0] > conf[-1]


def test_forecast_is_idempotent(four_weeks, now):
    first = forecast_demand(four_weeks, now, 2, now)
    second = forecast_demand(four_weeks, now, 2, now)
    assert first.model_dump() == second.model_dump()


def test_baseline_drives_estimate_and_peaks(four_weeks, now):
    fc = forecast_demand(four_weeks, now, 1, now)
    by_hour = {p.timestamp.hour: p for p in fc.points}

    assert by_hour[18].point_estimate == pytest.approx(150.0)
    assert by_hour[3].point_estimate == pytest.approx(100.0)
    assert by_hour[18].lower_bound == pytest.approx(120.0)
    assert by_hour[18].upper_bound == pytest.approx(180.0)
    assert fc.total_predicted == pytest.approx(20 * 100.0 + 4 * 150.0)
    assert {ts.hour for ts in fc.peak_periods} <= {17, 18, 19, 20}


def test_empty_history_gives_zero_confidence(now):
    fc = forecast_demand([], now, 1, now)
    assert all(p.point_estimate == 0.0 and p.confidence == 0.0 for p in fc.points)
    assert fc.peak_periods == [] and fc.low_periods == []


@pytest.mark.parametrize("case", [
    {"id": "near_dense", "hours": 0, "count": 4, "expect": 0.95},
    {"id": "two_days_dense", "hours": 48, "count": 4, "expect": 0.95 * 0.9},
    {"id": "sparse_slot", "hours": 0, "count": 1, "expect": 0.95 * 0.25},
    {"id": "past_is_not_boosted", "hours": -10, "count": 8, "expect": 0.95},
    {"id": "far_future", "hours": 24 * 30, "count": 4, "expect": 0.0},
])
def test_forecast_confidence(case):
    assert forecast_confidence(case["hours"], case["count"]) == pytest.approx(case["expect"])


def test_weather_adjustment_is_identity_without_weather(now):
    adjust = comfort_band_weather_adjustment(20.0, 24.0)
    assert adjust(now, []) == 1.0


def test_weather_adjustment_raises_load_outside_comfort(now):
    adjust = comfort_band_weather_adjustment(20.0, 24.0, per_degree=0.025, cloud_lighting=0.0)
    hot = [WeatherSample(timestamp=now, temperature_c=34.0)]
    assert adjust(now, hot) == pytest.approx(1.25)


@pytest.mark.parametrize("case", [
    {"id": "reference", "irr": 1000.0, "temp": 25.0, "cloud": 0.0, "expect": 150.0},
    {"id": "hot_panel", "irr": 1000.0, "temp": 35.0, "cloud": 0.0, "expect": 144.0},
    {"id": "half_cloud", "irr": 1000.0, "temp": 20.0, "cloud": 50.0, "expect": 90.0},
    {"id": "night", "irr": 0.0, "temp": 10.0, "cloud": 0.0, "expect": 0.0},
    {"id": "negative_irradiance", "irr": -5.0, "temp": 10.0, "cloud": 0.0, "expect": 0.0},
])
def test_solar_point_estimate(case, now):
    w = WeatherSample(timestamp=now, temperature_c=case["temp"], cloud_cover_pct=case["cloud"], solar_irradiance=case["irr"])
    assert solar_point_estimate(w) == pytest.approx(case["expect"])


def test_solar_confidence_decays_and_floors(now):
    weather = [
        WeatherSample(timestamp=now + timedelta(days=d), temperature_c=20.0, solar_irradiance=800.0, is_forecast=True)
        for d in (0, 2, 20)
    ]
    fc = forecast_solar(weather, now)
    assert [p.confidence for p in fc.points] == pytest.approx([0.75, 0.65, 0.0])
    assert all(p.lower_bound <= p.point_estimate <= p.upper_bound for p in fc.points)
    assert fc.total_generation == pytest.approx(3 * 120.0)
