"""
Tests for the signal aggregator: degradation, caching, breakers and retries.
"""

from unittest.mock import MagicMock

from trader.aggregator import SignalAggregator
from trader.circuit_breaker import CircuitBreaker
from trader.errors import SourceUnavailableError
from trader.models import SignalFragment, SOURCE_NAMES, SOURCE_NEWS, SOURCE_SOCIAL
from trader.signal_cache import SignalCache
from trader.sources import IntelligenceSource


def make_source(name, result=None, error=None):
    source = MagicMock(spec=IntelligenceSource)
    source.name = name
    if error is not None:
        source.query.side_effect = error
    else:
        source.query.return_value = result or SignalFragment(name, 0.4, 0.6, {"trending_topics": [name]})
    return source


def healthy_sources():
    return [make_source(name) for name in SOURCE_NAMES]


class TestAggregate:
    def test_bundle_contains_every_source(self, make_snapshot):
        aggregator = SignalAggregator(sources=healthy_sources(), max_retries=0, sleep=MagicMock())

        bundle = aggregator.aggregate(make_snapshot())

        assert set(bundle.fragments) == set(SOURCE_NAMES)
        assert bundle.degraded_sources == []
        assert bundle.get(SOURCE_NEWS).sentiment == 0.4

    def test_failing_source_is_replaced_by_neutral_reading(self, make_snapshot):
        sources = healthy_sources()
        sources[1] = make_source(SOURCE_SOCIAL, error=SourceUnavailableError(SOURCE_SOCIAL, "rate limited"))
        aggregator = SignalAggregator(sources=sources, max_retries=0, sleep=MagicMock())

        bundle = aggregator.aggregate(make_snapshot())

        social = bundle.get(SOURCE_SOCIAL)
        assert social.degraded
        assert social.sentiment == 0.0
        assert social.confidence == 0.0
        assert bundle.degraded_sources == [SOURCE_SOCIAL]
        assert not bundle.get(SOURCE_NEWS).degraded

    def test_unexpected_exceptions_never_escape(self, make_snapshot):
        sources = [make_source(name, error=RuntimeError("boom")) for name in SOURCE_NAMES]
        aggregator = SignalAggregator(sources=sources, max_retries=0, sleep=MagicMock())

        bundle = aggregator.aggregate(make_snapshot())

        assert bundle.degraded_sources == list(SOURCE_NAMES)

    def test_unconfigured_source_is_skipped_without_retries(self, make_snapshot):
        sources = healthy_sources()
        sources[0].available = False
        sleep = MagicMock()
        aggregator = SignalAggregator(sources=sources, max_retries=3, sleep=sleep)

        bundle = aggregator.aggregate(make_snapshot())

        sources[0].query.assert_not_called()
        sleep.assert_not_called()
        assert bundle.get(SOURCE_NEWS).degraded
        assert not aggregator.breakers[SOURCE_NEWS].is_open

    def test_missing_source_is_neutral(self, make_snapshot):
        aggregator = SignalAggregator(sources=[make_source(SOURCE_NEWS)], max_retries=0, sleep=MagicMock())

        bundle = aggregator.aggregate(make_snapshot())

        assert not bundle.get(SOURCE_NEWS).degraded
        assert bundle.get(SOURCE_SOCIAL).metadata["reason"] == "source not configured"

    def test_source_values_are_clamped(self, make_snapshot):
        wild = make_source(SOURCE_NEWS)
        wild.query.return_value = {"sentiment": 3.5, "confidence": -2}
        aggregator = SignalAggregator(sources=[wild], max_retries=0, sleep=MagicMock())

        fragment = aggregator.aggregate(make_snapshot()).get(SOURCE_NEWS)

        assert fragment.sentiment == 1.0
        assert fragment.confidence == 0.0
        assert not fragment.degraded


class TestCaching:
    def test_second_request_is_served_from_cache(self, make_snapshot):
        sources = healthy_sources()
        aggregator = SignalAggregator(sources=sources, max_retries=0, sleep=MagicMock())
        snapshot = make_snapshot()

        aggregator.aggregate(snapshot)
        aggregator.aggregate(snapshot)

        for source in sources:
            assert source.query.call_count == 1

    def test_degraded_results_are_retried_next_time(self, make_snapshot):
        failing = make_source(SOURCE_NEWS, error=SourceUnavailableError(SOURCE_NEWS, "down"))
        aggregator = SignalAggregator(sources=[failing], max_retries=0, sleep=MagicMock())
        snapshot = make_snapshot()

        aggregator.aggregate(snapshot)
        aggregator.aggregate(snapshot)

        assert failing.query.call_count == 2

    def test_expired_entries_trigger_new_query(self, make_snapshot, clock):
        source = make_source(SOURCE_NEWS)
        cache = SignalCache(ttl_seconds=300, max_entries=10, clock=clock)
        aggregator = SignalAggregator(sources=[source], cache=cache, max_retries=0, sleep=MagicMock())
        snapshot = make_snapshot()

        aggregator.aggregate(snapshot)
        clock.advance(301)
        aggregator.aggregate(snapshot)

        assert source.query.call_count == 2

    def test_injected_empty_cache_is_used(self):
        cache = SignalCache(ttl_seconds=5, max_entries=3)
        breakers = {}

        aggregator = SignalAggregator(sources=[], cache=cache, breakers=breakers)

        assert aggregator.cache is cache
        assert aggregator.cache.ttl_seconds == 5


class TestBreakers:
    def test_open_breaker_skips_the_source(self, make_snapshot, clock):
        failing = make_source(SOURCE_NEWS, error=SourceUnavailableError(SOURCE_NEWS, "down"))
        breaker = CircuitBreaker(SOURCE_NEWS, failure_threshold=5, recovery_timeout=300, clock=clock)
        aggregator = SignalAggregator(
            sources=[failing],
            breakers={SOURCE_NEWS: breaker},
            max_retries=0,
            sleep=MagicMock(),
        )
        snapshot = make_snapshot()

        for _ in range(5):
            aggregator.aggregate(snapshot)
        assert breaker.is_open

        bundle = aggregator.aggregate(snapshot)

        assert failing.query.call_count == 5
        assert bundle.get(SOURCE_NEWS).metadata["reason"] == "circuit open"

    def test_source_is_tried_again_after_recovery(self, make_snapshot, clock):
        source = make_source(SOURCE_NEWS, error=SourceUnavailableError(SOURCE_NEWS, "down"))
        breaker = CircuitBreaker(SOURCE_NEWS, failure_threshold=5, recovery_timeout=300, clock=clock)
        aggregator = SignalAggregator(
            sources=[source],
            breakers={SOURCE_NEWS: breaker},
            max_retries=0,
            sleep=MagicMock(),
        )
        snapshot = make_snapshot()
        for _ in range(5):
            aggregator.aggregate(snapshot)

        clock.advance(300)
        source.query.side_effect = None
        source.query.return_value = SignalFragment(SOURCE_NEWS, 0.2, 0.5)

        bundle = aggregator.aggregate(snapshot)

        assert source.query.call_count == 6
        assert bundle.get(SOURCE_NEWS).sentiment == 0.2
        assert not breaker.is_open

    def test_each_source_gets_its_own_breaker(self):
        aggregator = SignalAggregator(sources=healthy_sources(), max_retries=0, sleep=MagicMock())

        assert set(aggregator.breakers) == set(SOURCE_NAMES)
        assert len({id(b) for b in aggregator.breakers.values()}) == len(SOURCE_NAMES)


class TestRetries:
    def test_transient_failures_are_retried_with_backoff(self, make_snapshot):
        source = make_source(SOURCE_NEWS)
        source.query.side_effect = [
            SourceUnavailableError(SOURCE_NEWS, "timeout"),
            SourceUnavailableError(SOURCE_NEWS, "timeout"),
            SignalFragment(SOURCE_NEWS, 0.3, 0.5),
        ]
        sleep = MagicMock()
        aggregator = SignalAggregator(sources=[source], max_retries=2, retry_delay=1.0, sleep=sleep)

        fragment = aggregator.aggregate(make_snapshot()).get(SOURCE_NEWS)

        assert fragment.sentiment == 0.3
        assert source.query.call_count == 3
        assert sleep.call_count == 2
        first_delay, second_delay = (c.args[0] for c in sleep.call_args_list)
        assert 0.9 <= first_delay <= 1.1
        assert 1.8 <= second_delay <= 2.2

    def test_exhausted_retries_count_as_one_breaker_failure(self, make_snapshot):
        source = make_source(SOURCE_NEWS, error=SourceUnavailableError(SOURCE_NEWS, "down"))
        aggregator = SignalAggregator(sources=[source], max_retries=2, sleep=MagicMock())

        aggregator.aggregate(make_snapshot())

        assert source.query.call_count == 3
        assert aggregator.breakers[SOURCE_NEWS].failures == 1
