"""Tests for status summaries and endpoint lookup."""

from endpoint_monitor.models import EndpointStatus, HealthState
from endpoint_monitor.summary import (
    check_all_summary,
    endpoint_summary,
    match_endpoint,
    normalize_query,
    summarize_counts,
)


def status(name, url=None, state=HealthState.UNKNOWN, message=None):
    return EndpointStatus(id=f"id-{name}", name=name, endpoint=url, state=state, message=message)


def test_summarize_counts():
    statuses = [
        status("a", state=HealthState.HEALTHY),
        status("b", state=HealthState.HEALTHY),
        status("c", state=HealthState.DOWN),
        status("d", state=HealthState.ERROR),
        status("e", state=HealthState.DEGRADING),
        status("f"),
    ]

    summary = summarize_counts(statuses)

    assert summary.total == 6
    assert summary.healthy == 2
    assert summary.down == 1
    assert summary.error == 1
    assert summary.degrading == 1
    assert summary.unknown == 1
    assert summary.checking == 0


def test_normalize_query():
    assert normalize_query("  Billing-API!! ") == "billing api"


def test_exact_name_beats_partial_name():
    statuses = [
        status("Payments Gateway", url="https://pay.example.com"),
        status("Payments", url="https://other.example.com"),
    ]

    assert match_endpoint("payments", statuses).name == "Payments"


def test_exact_host_beats_partial_name():
    statuses = [
        status("api example com legacy", url="https://legacy.example.com"),
        status("Main", url="https://api.example.com/health"),
    ]

    assert match_endpoint("api.example.com", statuses).name == "Main"


def test_partial_host_match():
    statuses = [status("Main", url="https://billing.internal.example.com/health")]

    assert match_endpoint("internal", statuses).name == "Main"


def test_no_match():
    statuses = [status("Main", url="https://api.example.com")]

    assert match_endpoint("search", statuses) is None
    assert match_endpoint("   ", statuses) is None


def test_endpoint_summary():
    assert endpoint_summary(status("api", state=HealthState.DOWN, message="HTTP 503")) == "api: down (HTTP 503)"
    assert endpoint_summary(status("api")) == "api: unknown"


def test_check_all_summary_all_healthy():
    statuses = [status("a", state=HealthState.HEALTHY), status("b", state=HealthState.HEALTHY)]

    assert check_all_summary(statuses) == "2 services checked. 2 healthy, 0 down."


def test_check_all_summary_degrading_only():
    statuses = [
        status("a", state=HealthState.HEALTHY),
        status("b", state=HealthState.HEALTHY),
        status("c", state=HealthState.DEGRADING),
    ]

    assert check_all_summary(statuses) == "3 services checked. 2 healthy, 1 degrading."


def test_check_all_summary_lists_issues_by_host():
    statuses = [
        status("a", url="https://a.example.com", state=HealthState.HEALTHY),
        status("Billing", url="https://billing.example.com", state=HealthState.DOWN),
        status("No URL", state=HealthState.ERROR),
    ]

    assert check_all_summary(statuses) == (
        "3 services checked. 1 healthy, 0 degrading, 2 down: billing.example.com, No URL"
    )
