"""
Dashboard aggregation tests
"""
from datetime import datetime, timedelta

import pytest

import aggregation
import config
import models
from aggregation import ReportWindow, VisitorFilters
from conftest import NOW, days_ago


@pytest.fixture
def window():
    return aggregation.resolve_period("30d", now=NOW)


def add_enquiry(db, status, value, created_at):
    db.add(models.Enquiry(name="Customer", status=status, estimated_value=value, created_at=created_at))
    db.commit()


class TestResolvePeriod:

    @pytest.mark.parametrize("period,days", [("7d", 7), ("30d", 30), ("90d", 90), ("1y", 365)])
    def test_known_periods(self, period, days):
        window = aggregation.resolve_period(period, now=NOW)
        assert window.period == period
        assert window.end == NOW
        assert window.start == NOW - timedelta(days=days)

    @pytest.mark.parametrize("period", [None, "", "bogus", "14d"])
    def test_unknown_period_defaults_to_30_days(self, period):
        window = aggregation.resolve_period(period, now=NOW)
        assert window.period == "30d"
        assert window.length == timedelta(days=30)

    def test_explicit_range(self):
        window = aggregation.resolve_period("7d", "2026-06-01T00:00:00Z", "2026-06-15T00:00:00Z", now=NOW)
        assert window.period == "custom"
        assert window.start == datetime(2026, 6, 1)
        assert window.end == datetime(2026, 6, 15)

    def test_inverted_range_is_ignored(self):
        window = aggregation.resolve_period("7d", "2026-06-15", "2026-06-01", now=NOW)
        assert window.period == "7d"

    def test_previous_window_is_adjacent(self):
        window = ReportWindow(start=datetime(2026, 6, 1), end=datetime(2026, 6, 11), period="custom")
        previous = window.previous()
        assert previous.end == window.start
        assert previous.start == datetime(2026, 5, 22)


def test_revenue_compares_adjacent_windows(db, window):
    add_enquiry(db, "completed", 5000, days_ago(5))
    add_enquiry(db, "completed", 3000, days_ago(40))
    add_enquiry(db, "pending", 9999, days_ago(3))
    add_enquiry(db, "completed", 1000, days_ago(70))
    add_enquiry(db, "completed", 0, days_ago(2))

    revenue = aggregation.revenue_comparison(db, window)
    assert revenue == {"current": 5000.0, "previous": 3000.0, "change_percent": 66.7}


def test_revenue_change_without_previous_is_none(db, window):
    add_enquiry(db, "completed", 1200, days_ago(1))

    revenue = aggregation.revenue_comparison(db, window)
    assert revenue["previous"] == 0
    assert revenue["change_percent"] is None


def test_visitor_metrics_exclude_bots(db, window, make_visit):
    make_visit(ip_address="203.0.113.5", page_views=3, created_at=days_ago(1))
    make_visit(ip_address="203.0.113.5", page_views=2, is_new_visitor=False, visit_count=2, created_at=days_ago(2))
    make_visit(ip_address="198.51.100.1", page_views=1, created_at=days_ago(3))
    make_visit(ip_address="66.249.66.1", page_views=50, is_bot=True, created_at=days_ago(1))
    make_visit(ip_address="198.51.100.2", page_views=4, created_at=days_ago(45))

    metrics = aggregation.visitor_metrics(db, window)
    assert metrics == {
        "total_visits": 3,
        "unique_visitors": 2,
        "total_page_views": 6,
        "new_visitors": 2,
        "returning_visitors": 1,
    }


def test_breakdowns_are_zero_filled(db, window, make_visit):
    make_visit(device_type="mobile", traffic_source="organic", created_at=days_ago(1))
    make_visit(device_type="mobile", traffic_source="organic", created_at=days_ago(2))
    make_visit(device_type="desktop", traffic_source="direct", created_at=days_ago(2))

    devices = aggregation.category_breakdown(db, models.Visit.device_type, models.DEVICE_TYPES, window, "unknown")
    sources = aggregation.category_breakdown(
        db, models.Visit.traffic_source, models.TRAFFIC_SOURCES, window, "other"
    )

    assert devices == {"desktop": 1, "mobile": 2, "tablet": 0, "unknown": 0}
    assert set(sources) == set(models.TRAFFIC_SOURCES)
    assert sources["organic"] == 2
    assert sources["paid"] == 0


def test_unlisted_categories_use_the_fallback(db, window, make_visit):
    make_visit(device_type="smart-tv", traffic_source="newsletter", created_at=days_ago(1))
    make_visit(traffic_source="direct", created_at=days_ago(1))

    devices = aggregation.category_breakdown(db, models.Visit.device_type, models.DEVICE_TYPES, window, "unknown")
    sources = aggregation.category_breakdown(
        db, models.Visit.traffic_source, models.TRAFFIC_SOURCES, window, "other"
    )

    assert set(devices) == set(models.DEVICE_TYPES)
    assert devices["unknown"] == 1
    assert set(sources) == set(models.TRAFFIC_SOURCES)
    assert "unknown" not in sources
    assert sources["other"] == 1
    assert sources["direct"] == 1


def test_empty_window(db, window):
    snapshot = aggregation.build_dashboard(db, window)
    assert snapshot["visitors"]["total_visits"] == 0
    assert snapshot["revenue"]["change_percent"] is None
    assert snapshot["geography"] == {"countries": [], "cities": []}
    assert all(count == 0 for count in snapshot["devices"].values())
    assert snapshot["enquiries"]["converted"] == 0


def test_geography_sorted_by_distinct_visitors(db, window, make_visit):
    for n in range(3):
        make_visit(ip_address=f"203.0.113.{n}", country="India", city="Bengaluru", created_at=days_ago(1))
    for _ in range(4):
        make_visit(ip_address="198.51.100.1", country="United States", city="Austin", created_at=days_ago(1))
    make_visit(ip_address="198.51.100.2", country="United States", city="Austin",
               phone_number="+15125550100", consent_given=True, created_at=days_ago(1))

    countries = aggregation.country_stats(db, window, limit=10)
    assert [c["country"] for c in countries] == ["India", "United States"]
    assert countries[0]["visitors"] == 3
    assert countries[1] == {
        "country": "United States", "visitors": 2, "visits": 5, "page_views": 5, "with_contact": 1
    }

    cities = aggregation.city_stats(db, window, limit=1)
    assert cities == [{
        "city": "Bengaluru", "country": "India", "visitors": 3, "visits": 3, "page_views": 3, "with_contact": 0
    }]


def test_status_breakdown_is_zero_filled(db, window):
    db.add(models.IssueRequest(ticket_number="ISS-1", status="new", created_at=days_ago(1)))
    db.add(models.IssueRequest(ticket_number="ISS-2", status="resolved", created_at=days_ago(1)))
    db.add(models.IssueRequest(ticket_number="ISS-3", status="new", created_at=days_ago(60)))
    db.commit()

    issues = aggregation.status_breakdown(db, models.IssueRequest, models.ISSUE_STATUSES, window)
    assert issues["total"] == 2
    assert issues["by_status"]["new"] == 1
    assert issues["by_status"]["resolved"] == 1
    assert issues["by_status"]["cancelled"] == 0


def test_daily_series(db, window, make_visit):
    make_visit(ip_address="203.0.113.1", page_views=2, created_at=datetime(2026, 6, 20, 9, 0))
    make_visit(ip_address="203.0.113.2", page_views=1, created_at=datetime(2026, 6, 20, 18, 0))
    make_visit(ip_address="203.0.113.1", page_views=4, created_at=datetime(2026, 6, 21, 9, 0))
    add_enquiry(db, "completed", 800, datetime(2026, 6, 21, 10, 0))

    visits = aggregation.visitor_series(db, window)
    assert visits == [
        {"date": "2026-06-20", "visits": 2, "unique_visitors": 2, "page_views": 3},
        {"date": "2026-06-21", "visits": 1, "unique_visitors": 1, "page_views": 4},
    ]
    assert aggregation.revenue_series(db, window) == [{"date": "2026-06-21", "revenue": 800.0}]


class TestVisitorListing:

    @pytest.fixture
    def visits(self, make_visit):
        return [
            make_visit(ip_address="203.0.113.1", city="Pune", country="India", page_views=5,
                       created_at=days_ago(1)),
            make_visit(ip_address="203.0.113.2", phone_number="+919876543210", consent_given=True,
                       device_type="mobile", created_at=days_ago(2)),
            make_visit(ip_address="203.0.113.3", latitude=18.5, longitude=73.8, country="India",
                       created_at=days_ago(3)),
            make_visit(ip_address="66.249.66.1", is_bot=True, created_at=days_ago(1)),
        ]

    def test_pagination_and_stats(self, db, visits):
        listing = aggregation.visitor_listing(db, VisitorFilters(), page=1, limit=2, now=NOW)

        assert [v.ip_address for v in listing["visitors"]] == ["203.0.113.1", "203.0.113.2"]
        assert listing["pagination"] == {"current": 1, "pages": 2, "total": 3, "limit": 2}
        assert listing["stats"]["total_page_views"] == 7
        assert listing["stats"]["visitors_with_contact"] == 1
        assert listing["stats"]["visitors_with_location"] == 1
        assert listing["stats"]["unique_countries"] == 1

    def test_filters(self, db, visits):
        def ips(filters):
            return [v.ip_address for v in aggregation.visitor_listing(db, filters, now=NOW)["visitors"]]

        assert ips(VisitorFilters(has_contact=True)) == ["203.0.113.2"]
        assert ips(VisitorFilters(device="mobile")) == ["203.0.113.2"]
        assert ips(VisitorFilters(search="pune")) == ["203.0.113.1"]
        assert ips(VisitorFilters(has_location=True)) == ["203.0.113.1", "203.0.113.3"]

    def test_date_range_excludes_window_end(self, db, make_visit):
        make_visit(ip_address="203.0.113.8", created_at=days_ago(2))
        make_visit(ip_address="203.0.113.9", created_at=NOW)

        listing = aggregation.visitor_listing(db, VisitorFilters(date_range="7d"), now=NOW)
        assert [v.ip_address for v in listing["visitors"]] == ["203.0.113.8"]

    def test_sorting(self, db, visits):
        listing = aggregation.visitor_listing(db, VisitorFilters(), sort_by="page_views", sort_order="desc", now=NOW)
        assert listing["visitors"][0].ip_address == "203.0.113.1"

        listing = aggregation.visitor_listing(db, VisitorFilters(), sort_by="created_at", sort_order="asc", now=NOW)
        assert listing["visitors"][0].ip_address == "203.0.113.3"

    def test_export_is_capped(self, db, visits, monkeypatch):
        monkeypatch.setattr(config, "EXPORT_ROW_LIMIT", 2)

        rows = aggregation.export_rows(db, VisitorFilters(), now=NOW)
        assert [v.ip_address for v in rows] == ["203.0.113.1", "203.0.113.2"]
        assert len(aggregation.export_rows(db, VisitorFilters(), limit=500, now=NOW)) == 2
