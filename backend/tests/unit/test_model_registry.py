import pytest

from homegrid.models.domain import DeviceType, FeatureVector
from homegrid.services.model_registry import (
    LogisticFailureClassifier,
    ModelRegistry,
    SeasonalNaiveForecaster,
)


def test_prior_scores_healthy_device_low():
    clf = LogisticFailureClassifier()
    p, confidence = clf.predict(FeatureVector())

    assert p < 0.2
    assert confidence == pytest.approx((1.0 - p) * LogisticFailureClassifier.PRIOR_QUALITY)


def test_prior_rises_with_anomaly_score():
    clf = LogisticFailureClassifier()
    healthy, _ = clf.predict(FeatureVector())
    anomalous, _ = clf.predict(FeatureVector(anomaly_score=1.0))
    assert anomalous > healthy


def test_fit_separates_high_draw_devices():
    rows, labels = [], []
    for i in range(20):
        failing = i % 2 == 0
        rows.append(FeatureVector(avg_power=200.0 if failing else 100.0).as_list())
        labels.append(failing)

    clf = LogisticFailureClassifier()
    clf.fit(rows, labels)

    assert clf.is_fitted
    assert clf.quality_ == pytest.approx(1.0)
    assert clf.n_samples_ == 20
    p_fail, _ = clf.predict(FeatureVector(avg_power=200.0))
    p_ok, _ = clf.predict(FeatureVector(avg_power=100.0))
    assert p_fail > 0.5 > p_ok


def test_fit_rejects_wrong_shape():
    with pytest.raises(ValueError):
        LogisticFailureClassifier().fit([[1.0, 2.0]], [True])


def test_seasonal_naive_repeats_clean_weekly_pattern():
    series = [1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0] * 4
    out = SeasonalNaiveForecaster().forecast(series, 7)

    assert [p.estimate for p in out] == pytest.approx([1.0, 2.0, 3.0, 4.0, 5.0, 6.0, 7.0])
    assert all(p.lower == pytest.approx(p.estimate) and p.upper == pytest.approx(p.estimate) for p in out)


def test_seasonal_naive_short_series_uses_mean_and_wide_band():
    out = SeasonalNaiveForecaster().forecast([2.0, 4.0, 6.0], 1)
    assert out[0].estimate == pytest.approx(4.0)
    assert out[0].lower == pytest.approx(3.2)
    assert out[0].upper == pytest.approx(4.8)


def test_seasonal_naive_empty_input():
    assert SeasonalNaiveForecaster().forecast([], 3) == []


def test_registry_lookup_and_replace():
    registry = ModelRegistry()
    assert registry.get(DeviceType.HEAT_PUMP) is None

    model = LogisticFailureClassifier()
    registry.register(DeviceType.HEAT_PUMP, model)
    assert registry.get(DeviceType.HEAT_PUMP) is model
    assert registry.categories() == [DeviceType.HEAT_PUMP]


def test_baseline_registry_covers_every_category():
    registry = ModelRegistry.with_baselines()
    assert set(registry.categories()) == set(DeviceType)
