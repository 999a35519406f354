from decimal import Decimal

import pytest

from app.analytics.forecasting import (
    asks_for_breakdown,
    build_forecast,
    find_entity_ambiguity,
    forecast_horizon,
    format_number,
    is_forecast_question,
    metric_columns,
    rows_frame,
    summarize_metrics,
)


def monthly_rows(store="Trend Arabia"):
    return [
        {"Month": f"2024-0{i + 1}", "Store_Name": store, "TotalSales": 1000 + 100 * i, "OrderCount": 10 + 2 * i}
        for i in range(6)
    ]


@pytest.mark.parametrize(
    "question",
    [
        "Predict next 12 months sales for Trend Arabia",
        "forecast orders for Sunset",
        "What will sales be next quarter?",
        "projected revenue for Sunset",
        "Estimate next month's COD amount",
    ],
)
def test_detects_forecast_questions(question):
    assert is_forecast_question(question)


@pytest.mark.parametrize("question", ["total sales last month", "show orders by store for January", "hi"])
def test_ignores_plain_questions(question):
    assert not is_forecast_question(question)


@pytest.mark.parametrize(
    "question, expected",
    [
        ("predict the next 12 months", 12),
        ("forecast the next twelve months", 12),
        ("next 100 months please", 24),
        ("forecast sales", 3),
    ],
)
def test_forecast_horizon(question, expected):
    assert forecast_horizon(question) == expected


def test_linear_trend_projection():
    forecast = build_forecast("predict the next 3 months", monthly_rows())
    assert forecast is not None
    assert forecast.horizon == 3
    assert forecast.method == "linear trend over the last 6 periods"
    by_metric = {p.metric: p.values for p in forecast.projections}
    assert by_metric["TotalSales"] == (1600.0, 1700.0, 1800.0)
    assert by_metric["OrderCount"] == (22.0, 24.0, 26.0)
    assert "estimate" in forecast.summary()


def test_short_history_uses_average():
    rows = [
        {"Month": "2024-01", "TotalSales": Decimal("100.50")},
        {"Month": "2024-02", "TotalSales": Decimal("200.50")},
    ]
    forecast = build_forecast("forecast next 2 months", rows)
    assert forecast.method == "average of the last 2 periods"
    assert forecast.projections[0].values == (150.5, 150.5)


def test_projection_is_floored_at_zero():
    rows = [{"Month": f"2024-0{i + 1}", "TotalSales": v} for i, v in enumerate([300, 200, 100])]
    forecast = build_forecast("forecast next 2 months", rows)
    assert forecast.projections[0].values == (0.0, 0.0)


def test_rows_sharing_a_period_are_summed():
    rows = [
        {"Month": "2024-01", "TotalSales": 100},
        {"Month": "2024-02", "TotalSales": 50},
        {"Month": "2024-02", "TotalSales": 150},
    ]
    summary = summarize_metrics(rows)
    assert summary["TotalSales"]["total"] == 300.0
    assert summary["TotalSales"]["growth_pct"] == 100.0


def test_no_numeric_metric_means_no_forecast():
    assert build_forecast("forecast", [{"Store_Name": "Sunset"}]) is None
    assert build_forecast("forecast", []) is None


def test_metric_columns_skip_ids_periods_and_text():
    df = rows_frame(
        [{"Id": 1, "Store_Id": 9, "Month": "2024-01", "Store_Name": "x", "COD_Amount": Decimal("5"), "Flag": True}]
    )
    assert metric_columns(df) == ["COD_Amount"]


def test_ambiguity_between_similar_names():
    rows = monthly_rows("Sunset") + monthly_rows("Sunset Arrive")
    ambiguity = find_entity_ambiguity("Forecast next 3 months for Sunset", rows)
    assert ambiguity is not None
    assert ambiguity.candidates == ("Sunset", "Sunset Arrive")
    assert ambiguity.totals["Sunset"] == 7500.0
    answer = ambiguity.answer()
    assert '"Sunset"' in answer and '"Sunset Arrive"' in answer
    assert "Which one" in answer


def test_ambiguity_lists_at_most_five_candidates():
    rows = [{"Store_Name": f"Store {i}", "TotalSales": i} for i in range(8)]
    ambiguity = find_entity_ambiguity("forecast sales for store", rows)
    assert len(ambiguity.candidates) == 5
    assert ambiguity.hidden == 3
    assert "and 3 more" in ambiguity.answer()


def test_breakdown_questions_are_not_ambiguous():
    rows = monthly_rows("Sunset") + monthly_rows("Sunset Arrive")
    assert asks_for_breakdown("forecast sales by store")
    assert not asks_for_breakdown("forecast sales by month for Sunset")
    assert find_entity_ambiguity("forecast next 3 months per store", rows) is None


def test_single_entity_is_not_ambiguous():
    assert find_entity_ambiguity("forecast Trend Arabia", monthly_rows()) is None


def test_format_number():
    assert format_number(10000.0) == "10,000"
    assert format_number(1234.5) == "1,234.50"


def test_unpadded_month_labels_keep_store_order():
    rows = [{"Month": f"2024-{i + 1}", "TotalSales": 1000 + 100 * i} for i in range(12)]
    forecast = build_forecast("forecast the next 3 months", rows)
    assert forecast.method == "linear trend over the last 12 periods"
    assert forecast.projections[0].values == (2200.0, 2300.0, 2400.0)


def test_month_names_keep_store_order():
    months = ["January", "February", "March", "April", "May", "June"]
    rows = [{"Year": 2024, "MonthName": m, "TotalSales": 1000 + 100 * i} for i, m in enumerate(months)]
    forecast = build_forecast("forecast the next 3 months", rows)
    assert forecast.projections[0].values == (1600.0, 1700.0, 1800.0)


def test_breakdown_forecast_is_projected_per_entity():
    rows = [
        {"Month": f"2024-0{i + 1}", "Store_Name": store, "TotalSales": base + 100 * i}
        for store, base in (("Sunset", 1000), ("Trend Arabia", 5000))
        for i in range(6)
    ]
    forecast = build_forecast("forecast next 3 months per store", rows)
    by_label = {p.label: p.values for p in forecast.projections}
    assert by_label == {
        "TotalSales (Sunset)": (1600.0, 1700.0, 1800.0),
        "TotalSales (Trend Arabia)": (5600.0, 5700.0, 5800.0),
    }
    assert "TotalSales (Trend Arabia): 5,600, 5,700, 5,800" in forecast.summary()


def test_two_named_entities_are_forecast_separately():
    rows = monthly_rows("Sunset") + monthly_rows("Trend Arabia")
    question = "forecast next 3 months for Sunset and Trend Arabia"
    assert find_entity_ambiguity(question, rows) is None
    forecast = build_forecast(question, rows)
    entities = {p.entity for p in forecast.projections}
    assert entities == {"Sunset", "Trend Arabia"}


def test_spelling_out_every_match_is_not_ambiguous():
    rows = monthly_rows("Sunset") + monthly_rows("Sunset Arrive")
    assert find_entity_ambiguity("forecast Sunset and Sunset Arrive", rows) is None


def test_unreferenced_entities_are_not_ambiguous():
    rows = monthly_rows("Sunset") + monthly_rows("Trend Arabia")
    assert find_entity_ambiguity("forecast next 3 months", rows) is None
