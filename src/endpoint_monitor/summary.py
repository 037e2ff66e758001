"""Short text summaries of endpoint status."""

import re
from typing import Optional, Sequence
from urllib.parse import urlsplit

from .models import EndpointStatus, HealthState, HealthSummary


def summarize_counts(statuses: Sequence[EndpointStatus]) -> HealthSummary:
    counts = {state.value: 0 for state in HealthState}
    for status in statuses:
        counts[status.state.value] += 1
    return HealthSummary(total=len(statuses), **counts)


def normalize_query(raw: str) -> str:
    return re.sub(r"[^a-z0-9]+", " ", raw.strip().lower()).strip()


def endpoint_host(status: EndpointStatus) -> str:
    if not status.endpoint:
        return ""
    return urlsplit(status.endpoint).hostname or ""


def display_name(status: EndpointStatus) -> str:
    return endpoint_host(status) or status.name


def match_endpoint(query: str, statuses: Sequence[EndpointStatus]) -> Optional[EndpointStatus]:
    """Find the endpoint best matching a spoken or typed name.

    Exact name wins over exact host, which wins over partial name, then partial host.
    """
    needle = normalize_query(query)
    if not needle:
        return None

    matchers = (
        lambda s: normalize_query(s.name) == needle,
        lambda s: normalize_query(endpoint_host(s)) == needle,
        lambda s: needle in normalize_query(s.name),
        lambda s: needle in normalize_query(endpoint_host(s)),
    )
    for matches in matchers:
        for status in statuses:
            if matches(status):
                return status
    return None


def endpoint_summary(status: EndpointStatus) -> str:
    suffix = f" ({status.message})" if status.message else ""
    return f"{status.name}: {status.state.value}{suffix}"


def check_all_summary(statuses: Sequence[EndpointStatus]) -> str:
    counts = summarize_counts(statuses)
    issues = [status for status in statuses if status.state.is_failure]

    if not issues and counts.degrading == 0:
        return f"{counts.total} services checked. {counts.healthy} healthy, 0 down."
    if not issues:
        return f"{counts.total} services checked. {counts.healthy} healthy, {counts.degrading} degrading."

    names = ", ".join(display_name(status) for status in issues)
    return (
        f"{counts.total} services checked. {counts.healthy} healthy, {counts.degrading} degrading, "
        f"{len(issues)} down: {names}"
    )
