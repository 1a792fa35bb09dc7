"""
Tests for the intelligence source adapters.
"""

from unittest.mock import MagicMock, patch

import pytest
from requests.exceptions import ConnectionError

from trader.errors import SourceUnavailableError
from trader.sources import (
    CommunitySource,
    MarketTechnicalsSource,
    NewsSource,
    SocialSource,
    compute_technicals,
)


def json_response(payload, status_code: int = 200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    return response


class TestNewsSource:
    def test_requires_api_key(self):
        assert not NewsSource(api_key="").available
        assert NewsSource(api_key="key").available
        with pytest.raises(SourceUnavailableError):
            NewsSource(api_key="").query("Will X happen?", ["x"])

    @patch("trader.sources.requests.get")
    def test_scores_articles_and_flags_breaking_news(self, mock_get):
        mock_get.return_value = json_response({"web": {"results": [
            {"title": "BREAKING: Senate support surges for the bill", "description": "strong momentum",
             "url": "https://www.reuters.com/a"},
            {"title": "Analysts see likely approval", "description": "growth ahead",
             "url": "https://example.com/b"},
        ]}})

        fragment = NewsSource(api_key="brave-key").query("Will the bill pass?", ["bill", "senate"])

        assert fragment.sentiment > 0
        assert 0 < fragment.confidence <= 0.8
        assert fragment.metadata["news_count"] == 2
        assert fragment.metadata["breaking_news"] is True
        assert fragment.metadata["source_credibility"] == pytest.approx(0.8)
        assert mock_get.call_args.kwargs["headers"]["X-Subscription-Token"] == "brave-key"
        assert mock_get.call_args.kwargs["params"]["q"] == "bill senate"

    @patch("trader.sources.requests.get")
    def test_no_articles_is_a_zero_reading(self, mock_get):
        mock_get.return_value = json_response({"web": {"results": []}})

        fragment = NewsSource(api_key="brave-key").query("Q?", ["q"])

        assert fragment.confidence == 0.0
        assert fragment.metadata["news_count"] == 0
        assert not fragment.degraded

    @patch("trader.sources.requests.get")
    def test_rate_limit_raises_unavailable(self, mock_get):
        mock_get.return_value = json_response({}, status_code=429)

        with pytest.raises(SourceUnavailableError, match="rate limited"):
            NewsSource(api_key="brave-key").query("Q?", ["q"])

    @patch("trader.sources.requests.get", side_effect=ConnectionError("dns failure"))
    def test_connection_error_raises_unavailable(self, mock_get):
        with pytest.raises(SourceUnavailableError):
            NewsSource(api_key="brave-key").query("Q?", ["q"])


class TestSocialSource:
    def test_requires_bearer_token(self):
        assert not SocialSource(bearer_token="").available
        with pytest.raises(SourceUnavailableError):
            SocialSource(bearer_token="").query("Q?", ["q"])

    @patch("trader.sources.requests.get")
    def test_collects_hashtags_and_engagement(self, mock_get):
        mock_get.return_value = json_response({"data": [
            {"text": "Bearish outlook, support will collapse", "public_metrics": {"like_count": 10, "retweet_count": 2},
             "entities": {"hashtags": [{"tag": "Election"}]}},
            {"text": "Polls falling fast", "public_metrics": {"like_count": 4, "retweet_count": 0},
             "entities": {"hashtags": [{"tag": "election"}]}},
        ]})

        fragment = SocialSource(bearer_token="token").query("Q?", ["q"])

        assert fragment.sentiment < 0
        assert fragment.metadata["post_count"] == 2
        assert fragment.metadata["engagement"] == 18.0
        assert fragment.metadata["trending_topics"][0] == "#election"


class TestCommunitySource:
    @patch("trader.sources.requests.get")
    def test_reads_reddit_listing(self, mock_get):
        mock_get.return_value = json_response({"data": {"children": [
            {"data": {"title": "Strong rally likely", "selftext": "", "score": 250, "num_comments": 40,
                      "subreddit": "politics"}},
            {"data": {"title": "Good odds here", "selftext": "", "score": 50, "num_comments": 5,
                      "subreddit": "politics"}},
        ]}})

        fragment = CommunitySource(user_agent="test-agent").query("Q?", ["q"])

        assert fragment.sentiment > 0
        assert fragment.metadata["comment_count"] == 45
        assert fragment.metadata["credibility_score"] == pytest.approx(0.75)
        assert fragment.metadata["subreddits"] == ["politics"]
        assert mock_get.call_args.kwargs["headers"]["User-Agent"] == "test-agent"


class TestMarketTechnicals:
    def test_compute_technicals(self, make_snapshot):
        technicals = compute_technicals(make_snapshot(price=0.8, spread=0.02, liquidity=5000.0))

        assert technicals["price_momentum"] == pytest.approx(0.6)
        assert technicals["market_efficiency"] == pytest.approx(0.98)
        assert technicals["volume_trend"] == 1.0
        assert technicals["order_book_health"] == pytest.approx(0.49)

    def test_source_uses_fresh_market_read(self, make_snapshot):
        fetch = MagicMock(return_value=make_snapshot(price=0.75))

        fragment = MarketTechnicalsSource(fetch_market=fetch).query("Q?", [], {"market_id": "m1"})

        fetch.assert_called_once_with("m1")
        assert fragment.sentiment == pytest.approx(0.5)
        assert "technicals" in fragment.metadata

    def test_source_requires_market_id(self):
        with pytest.raises(SourceUnavailableError):
            MarketTechnicalsSource(fetch_market=MagicMock()).query("Q?", [], {})

    def test_unfetchable_market_raises(self):
        with pytest.raises(SourceUnavailableError):
            MarketTechnicalsSource(fetch_market=MagicMock(return_value=None)).query("Q?", [], {"market_id": "m1"})
