from __future__ import annotations

import pytest

from ffprog.ui.series import ChartSeries, SparkSeries


def test_spark_series_is_bounded_and_tracks_max() -> None:
    spark = SparkSeries(capacity=3)
    for value in (1.0, None, 5.0, 2.0, 3.0):
        spark.push(value)
    assert spark.values == [5.0, 2.0, 3.0]
    assert spark.maximum == 5.0
    assert spark.current == 3.0
    assert len(spark) == 3
    spark.push(1.0)
    assert spark.maximum == 5.0


def test_spark_series_ignores_missing_values() -> None:
    spark = SparkSeries()
    spark.push(None)
    assert len(spark) == 0
    assert spark.current is None


def test_chart_bounds_include_baseline_margin() -> None:
    chart = ChartSeries(baseline=100.0)
    assert chart.y_bounds() == pytest.approx((0.0, 110.0))
    chart.push(50.0)
    chart.push(200.0)
    assert chart.y_bounds() == (50.0, 200.0)


def test_chart_bounds_widen_for_baseline() -> None:
    chart = ChartSeries(baseline=1000.0)
    chart.push(950.0)
    low, high = chart.y_bounds()
    assert low == 900.0
    assert high == pytest.approx(1100.0)


def test_chart_bounds_never_collapse() -> None:
    chart = ChartSeries(baseline=0.0)
    assert chart.y_bounds() == (0.0, 1.0)
    chart.push(7.0)
    assert chart.y_bounds() == (0.0, 7.0)


def test_chart_series_capacity() -> None:
    chart = ChartSeries(baseline=0.0, capacity=2)
    for value in (1.0, 2.0, None, 3.0):
        chart.push(value)
    assert chart.values == [2.0, 3.0]
    assert chart.current == 3.0
