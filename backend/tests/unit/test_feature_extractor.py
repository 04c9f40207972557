import pytest
from datetime import timedelta

from homegrid.services.feature_extractor import (
    anomaly_score,
    days_since_last_maintenance,
    extract_features,
    trend_slope,
)

# ============================================================
# TABLE-DRIVEN TESTS FOR FEATURE EXTRACTION
# ============================================================

@pytest.mark.parametrize("case", [
    {"id": "empty", "values": [], "expect": 0.0},
    {"id": "single_point", "values": [42.0], "expect": 0.0},
    {"id": "flat", "values": [5.0] * 10, "expect": 0.0},
    {"id": "rising_by_two", "values": [1.0, 3.0, 5.0, 7.0], "expect": 2.0},
    {"id": "falling", "values": [10.0, 9.0, 8.0], "expect": -1.0},
])
def test_trend_slope(case):
    assert trend_slope(case["values"]) == pytest.approx(case["expect"], abs=1e-9)


@pytest.mark.parametrize("case", [
    {"id": "no_older_window", "recent": [1.0, 2.0], "older": [], "expect": 0.0},
    {"id": "zero_variance_older", "recent": [50.0], "older": [10.0, 10.0], "expect": 0.0},
    {"id": "one_sigma_shift", "recent": [11.0, 11.0], "older": [9.0, 11.0], "expect": 1.0 / 3.0},
    {"id": "clipped_at_three", "recent": [1000.0], "older": [9.0, 11.0], "expect": 1.0},
])
def test_anomaly_score(case):
    score = anomaly_score(case["recent"], case["older"])
    assert score == pytest.approx(case["expect"])
    assert 0.0 <= score <= 1.0


def test_constant_series_has_no_anomaly_and_no_trend(make_device, make_samples, now):
    device = make_device(1)
    samples = make_samples(1, 120, power=lambda i: 100.0, temperature=lambda i: 40.0)

    fv = extract_features(samples, device.created_at, [], now)

    assert fv.anomaly_score == 0.0
    assert fv.power_trend_slope == 0.0
    assert fv.temperature_trend_slope == 0.0
    assert fv.avg_power == pytest.approx(100.0)
    assert fv.std_dev_power == pytest.approx(0.0)
    assert fv.avg_temperature == pytest.approx(40.0)


def test_recent_window_is_last_thirty_samples(make_device, make_samples, now):
    device = make_device(1)
    # 70 older samples alternate 90/110, the last 30 sit at 130
    samples = make_samples(1, 100, power=lambda i: 130.0 if i >= 70 else (90.0 if i % 2 else 110.0))

    fv = extract_features(samples, device.created_at, [], now)

    assert fv.avg_power == pytest.approx(130.0)
    # |130 - 100| / 10 = 3 sigma -> saturated
    assert fv.anomaly_score == pytest.approx(1.0)


def test_operating_hours_from_creation(make_device, make_samples, now):
    device = make_device(1, created_at=now - timedelta(days=2))
    fv = extract_features(make_samples(1, 5), device.created_at, [], now)
    assert fv.operating_hours == pytest.approx(48.0)


def test_days_since_maintenance_defaults_to_365(make_samples, now):
    assert days_since_last_maintenance(make_samples(1, 10), [], now) == 365.0
    # maintenance long before any sample -> nothing qualifies
    assert days_since_last_maintenance(make_samples(1, 10), [now - timedelta(days=200)], now) == 365.0


def test_days_since_maintenance_uses_latest_nearby_sample(make_samples, now):
    samples = make_samples(1, 24 * 40, step=timedelta(hours=1))   # 40 days of hourly readings
    maintenance = [now - timedelta(days=30)]

    days = days_since_last_maintenance(samples, maintenance, now)

    # latest sample within 7 days of the event is 23 days before now
    assert days == pytest.approx(23.0, abs=1e-6)
