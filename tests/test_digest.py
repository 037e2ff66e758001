"""Tests for the daily digest."""

import json
from datetime import timedelta

import httpx
import pytest

from conftest import START, FakeClock, make_sample
from endpoint_monitor.digest import (
    DigestBuilder,
    DigestCache,
    DigestGenerator,
    HttpSummarizer,
    correlated_buckets,
    latency_trend,
    outage_count,
)
from endpoint_monitor.models import EndpointStatus, HealthState

H = HealthState.HEALTHY
D = HealthState.DOWN
E = HealthState.ERROR


def status(name, samples=(), state=HealthState.HEALTHY):
    return EndpointStatus(
        id=f"id-{name}",
        name=name,
        endpoint=f"https://{name}.example.com/health",
        state=state,
        samples=list(samples),
    )


def latencies(values):
    return [make_sample(at=START - timedelta(minutes=len(values) - i), latency=v) for i, v in enumerate(values)]


def failing_at(at):
    """A healthy sample followed by an outage onset at the given time."""
    return [make_sample(at=at - timedelta(minutes=10)), make_sample(at=at, state=D, status_code=503)]


class FakeSummarizer:
    def __init__(self, text="All services healthy.", error=None):
        self.text = text
        self.error = error
        self.prompts = []

    async def summarize(self, prompt):
        self.prompts.append(prompt)
        if self.error:
            raise self.error
        return self.text


@pytest.mark.parametrize(
    "values, expected",
    [
        ([100] * 5, "insufficient data"),
        ([100] * 6, "stable (0%)"),
        ([100, 100, 100, 110, 110, 110], "stable (10%)"),
        ([100, 100, 100, 115, 115, 115], "increasing (+15%)"),
        ([100, 100, 100, 120, 120, 120], "increasing (+20%)"),
        ([100, 100, 100, 80, 80, 80], "decreasing (-20%)"),
        ([500, 500, 100, 100, 100, 130, 130, 130], "increasing (+30%)"),
        ([0, 0, 0, 50, 50, 50], "stable"),
    ],
)
def test_latency_trend(values, expected):
    assert latency_trend(latencies(values)) == expected


def test_latency_trend_skips_missing_latency():
    samples = latencies([100] * 5) + [make_sample(state=E, latency=None, status_code=None)]

    assert latency_trend(samples) == "insufficient data"


def test_outage_count_counts_rising_edges():
    samples = [
        make_sample(at=START + timedelta(minutes=i), state=state)
        for i, state in enumerate([H, D, D, E, H, E, E, H])
    ]

    assert outage_count(samples) == 2


def test_outage_at_start_of_window_counts():
    assert outage_count([make_sample(state=D), make_sample(state=H)]) == 1


def test_correlated_buckets_group_onsets_in_same_window():
    onset = START - timedelta(hours=1)
    statuses = [
        status("alpha", failing_at(onset)),
        status("beta", failing_at(onset + timedelta(seconds=60))),
        status("gamma", failing_at(onset + timedelta(seconds=400))),
    ]

    buckets = correlated_buckets(statuses, START - timedelta(hours=24))

    assert len(buckets) == 1
    assert buckets[0].start == onset
    assert buckets[0].names == ["alpha", "beta"]


def test_correlated_buckets_ignore_onsets_outside_window():
    onset = START - timedelta(hours=25)
    statuses = [status("alpha", failing_at(onset)), status("beta", failing_at(onset))]

    assert correlated_buckets(statuses, START - timedelta(hours=24)) == []


def test_endpoint_line_format(clock):
    builder = DigestBuilder(now=clock)

    lines = builder.endpoint_lines([status("api", latencies([100, 200]))])

    assert lines == [
        "- api | status: healthy | avg latency (24h): 150ms | latest latency: 200ms | "
        "trend: insufficient data | outages (24h): 0"
    ]


def test_endpoint_line_without_latency(clock):
    builder = DigestBuilder(now=clock)
    samples = [make_sample(state=E, latency=None, status_code=None)]

    line = builder.endpoint_lines([status("api", samples, state=E)])[0]

    assert "avg latency (24h): n/a" in line
    assert "latest latency: n/a" in line
    assert "outages (24h): 1" in line


def test_endpoint_line_ignores_old_samples(clock):
    builder = DigestBuilder(now=clock)
    samples = [make_sample(at=START - timedelta(hours=30), latency=5000)] + latencies([100])

    line = builder.endpoint_lines([status("api", samples)])[0]

    assert "avg latency (24h): 100ms" in line


def test_build_prompt_with_no_statuses_is_empty(clock):
    assert DigestBuilder(now=clock).build_prompt([]) == ""


def test_build_prompt_sections(clock):
    onset = START - timedelta(hours=2)
    statuses = [status("alpha", failing_at(onset), state=D), status("beta", failing_at(onset), state=D)]

    prompt = DigestBuilder(now=clock).build_prompt(statuses)

    assert prompt.startswith("Daily infrastructure health summary input:\n- alpha | status: down")
    assert "No additional hidden services." in prompt
    assert "Correlated failures (within 5-minute windows):" in prompt
    assert "- 2 services down around 10:00 UTC: alpha, beta" in prompt
    assert prompt.rstrip().endswith("Keep it concise and actionable.")


def test_build_prompt_without_correlation(clock):
    prompt = DigestBuilder(now=clock).build_prompt([status("alpha", latencies([100]))])

    assert "No correlated multi-service outages detected in the last 24h." in prompt


def test_build_prompt_caps_endpoint_lines_but_correlates_all(clock):
    onset = START - timedelta(hours=3)
    statuses = [status(f"svc{i:02d}", latencies([100])) for i in range(20)]
    statuses += [status(f"hidden{i}", failing_at(onset), state=D) for i in range(5)]

    prompt = DigestBuilder(now=clock).build_prompt(statuses)

    endpoint_lines = [line for line in prompt.splitlines() if " | status: " in line]
    assert len(endpoint_lines) == 20
    assert "hidden0 | status" not in prompt
    assert "(showing 20 of 25 services; 5 summarized separately)" in prompt
    assert "Additional services not listed individually: +5 more" in prompt
    assert "- 5 services down around 09:00 UTC: hidden0, hidden1, hidden2, hidden3, hidden4" in prompt


def test_cache_is_fresh_for_same_calendar_day(tmp_path, clock):
    cache = DigestCache(tmp_path / "digest.json", now=clock)
    assert not cache.is_fresh()

    cache.store("Summary")
    clock.advance(11 * 3600)
    assert cache.is_fresh()

    clock.advance(3600)
    assert not cache.is_fresh()


def test_cache_persists_and_clears(tmp_path, clock):
    path = tmp_path / "digest.json"
    DigestCache(path, now=clock).store("Summary")

    reloaded = DigestCache(path, now=clock)
    assert reloaded.get().text == "Summary"
    assert reloaded.is_fresh()

    reloaded.clear()
    assert reloaded.get() is None
    assert not path.exists()


def test_cache_ignores_malformed_file(tmp_path, clock):
    path = tmp_path / "digest.json"
    path.write_text(json.dumps({"text": "missing timestamp"}))

    assert DigestCache(path, now=clock).get() is None


@pytest.fixture
def generator_parts(tmp_path):
    clock = FakeClock()
    return clock, DigestBuilder(now=clock), DigestCache(tmp_path / "digest.json", now=clock)


@pytest.mark.asyncio
async def test_generator_caches_for_the_day(generator_parts):
    clock, builder, cache = generator_parts
    summarizer = FakeSummarizer()
    generator = DigestGenerator(builder, cache, summarizer)
    statuses = [status("api", latencies([100]))]

    first = await generator.generate_daily_digest(statuses)
    clock.advance(3600)
    second = await generator.generate_daily_digest(statuses)

    assert first == second == "All services healthy."
    assert len(summarizer.prompts) == 1
    assert summarizer.prompts[0].startswith("Daily infrastructure health summary input:")


@pytest.mark.asyncio
async def test_generator_force_regenerates(generator_parts):
    _, builder, cache = generator_parts
    summarizer = FakeSummarizer()
    generator = DigestGenerator(builder, cache, summarizer)
    statuses = [status("api", latencies([100]))]

    await generator.generate_daily_digest(statuses)
    summarizer.text = "  Updated.  "
    text = await generator.generate_daily_digest(statuses, force=True)

    assert text == "Updated."
    assert cache.get().text == "Updated."
    assert len(summarizer.prompts) == 2


@pytest.mark.asyncio
async def test_generator_unavailable_without_summarizer(generator_parts):
    _, builder, cache = generator_parts
    generator = DigestGenerator(builder, cache)

    assert not generator.is_available
    assert await generator.generate_daily_digest([status("api")]) is None


@pytest.mark.asyncio
async def test_generator_failure_returns_none(generator_parts):
    _, builder, cache = generator_parts
    generator = DigestGenerator(builder, cache, FakeSummarizer(error=RuntimeError("model offline")))

    assert await generator.generate_daily_digest([status("api")]) is None
    assert cache.get() is None


@pytest.mark.asyncio
async def test_generator_skips_empty_input_and_output(generator_parts):
    _, builder, cache = generator_parts
    summarizer = FakeSummarizer(text="   ")
    generator = DigestGenerator(builder, cache, summarizer)

    assert await generator.generate_daily_digest([]) is None
    assert summarizer.prompts == []
    assert await generator.generate_daily_digest([status("api")]) is None
    assert cache.get() is None


@pytest.mark.asyncio
async def test_http_summarizer():
    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content) == {"prompt": "input"}
        return httpx.Response(200, json={"summary": "All good."})

    summarizer = HttpSummarizer(
        "https://summarizer.example.com/v1", client=httpx.AsyncClient(transport=httpx.MockTransport(handler))
    )

    assert await summarizer.summarize("input") == "All good."
    await summarizer.close()


@pytest.mark.asyncio
async def test_http_summarizer_raises_on_error_status():
    summarizer = HttpSummarizer(
        "https://summarizer.example.com/v1",
        client=httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500))),
    )

    with pytest.raises(httpx.HTTPStatusError):
        await summarizer.summarize("input")
    await summarizer.close()
