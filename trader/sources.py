"""
Intelligence source adapters.

Each source turns a market question and keywords into a SignalFragment.
Sources report missing credentials through `available` and raise
SourceUnavailableError when the upstream API fails; the aggregator skips
unavailable sources, wraps the rest in circuit breakers, caching and
retries, and substitutes neutral readings on failure.
"""

import logging
from collections import Counter
from typing import Any, Callable, Optional

import requests
from requests.exceptions import RequestException, Timeout, ConnectionError

from trader import scanner
from trader.config import Config
from trader.errors import SourceUnavailableError
from trader.models import (
    MarketSnapshot,
    SignalFragment,
    SOURCE_COMMUNITY,
    SOURCE_MARKET,
    SOURCE_NEWS,
    SOURCE_SOCIAL,
)
from trader.sentiment import aggregate_scores, score_text, top_terms
from trader.utils import clamp, safe_float

# Configure module logger
logger = logging.getLogger(__name__)

RELIABLE_NEWS_DOMAINS = (
    "reuters.com", "bloomberg.com", "wsj.com", "apnews.com", "ap.org",
    "bbc.com", "bbc.co.uk", "cnn.com", "npr.org", "ft.com",
)


class IntelligenceSource:
    """
    Base class for intelligence sources.

    Subclasses set `name` and implement `query`.
    """

    name: str = ""

    @property
    def available(self) -> bool:
        """False when the source lacks the credentials it needs."""
        return True

    def query(
        self,
        market_title: str,
        keywords: list[str],
        params: Optional[dict[str, Any]] = None
    ) -> SignalFragment:
        raise NotImplementedError

    def _get(self, url: str, params: dict, headers: dict, timeout: Optional[float] = None) -> Any:
        """GET a JSON document, translating transport errors to SourceUnavailableError."""
        timeout = timeout or Config.SOURCE_TIMEOUT
        try:
            response = requests.get(url, params=params, headers=headers, timeout=timeout)
            if response.status_code == 429:
                raise SourceUnavailableError(self.name, "rate limited (HTTP 429)")
            response.raise_for_status()
            return response.json()

        except Timeout:
            raise SourceUnavailableError(self.name, f"request timed out after {timeout}s")

        except ConnectionError as e:
            raise SourceUnavailableError(self.name, f"connection error: {e}")

        except RequestException as e:
            status = e.response.status_code if getattr(e, "response", None) is not None else "n/a"
            raise SourceUnavailableError(self.name, f"request failed (status {status}): {e}")

        except ValueError as e:
            raise SourceUnavailableError(self.name, f"invalid JSON: {e}")


def _search_text(market_title: str, keywords: list[str]) -> str:
    return " ".join(keywords) if keywords else market_title


class NewsSource(IntelligenceSource):
    """News search through the Brave Search web API."""

    name = SOURCE_NEWS

    def __init__(self, api_key: Optional[str] = None, url: Optional[str] = None):
        self.api_key = api_key if api_key is not None else Config.BRAVE_API_KEY
        self.url = url or Config.BRAVE_SEARCH_URL

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    def query(self, market_title, keywords, params=None) -> SignalFragment:
        if not self.api_key:
            raise SourceUnavailableError(self.name, "BRAVE_API_KEY not configured")

        data = self._get(
            self.url,
            params={"q": _search_text(market_title, keywords), "count": 10, "freshness": "pw"},
            headers={"Accept": "application/json", "X-Subscription-Token": self.api_key},
        )

        results = (data.get("web") or {}).get("results") or [] if isinstance(data, dict) else []
        articles = [
            {
                "title": item.get("title") or "",
                "description": item.get("description") or "",
                "url": item.get("url") or "",
            }
            for item in results
            if isinstance(item, dict)
        ]

        if not articles:
            logger.info(f"No news articles found for '{market_title[:50]}'")
            return SignalFragment(
                source=self.name,
                sentiment=0.0,
                confidence=0.0,
                metadata={"news_count": 0, "breaking_news": False, "source_credibility": 0.0, "trending_topics": []},
            )

        scores = [score_text(f"{a['title']} {a['description']}") for a in articles]
        combined = aggregate_scores(scores)

        reliable = [any(domain in a["url"] for domain in RELIABLE_NEWS_DOMAINS) for a in articles]
        credibility = sum(1.0 if r else 0.6 for r in reliable) / len(articles)
        breaking = any(r and "breaking" in a["title"].lower() for r, a in zip(reliable, articles))

        logger.info(f"News sentiment {combined.score:+.2f} from {len(articles)} articles")
        return SignalFragment(
            source=self.name,
            sentiment=combined.score,
            confidence=combined.confidence,
            metadata={
                "news_count": len(articles),
                "breaking_news": breaking,
                "source_credibility": round(credibility, 4),
                "trending_topics": top_terms(f"{a['title']} {a['description']}" for a in articles),
                "headlines": [a["title"] for a in articles[:5]],
            },
        )


class SocialSource(IntelligenceSource):
    """Recent posts from the X (Twitter) v2 search API."""

    name = SOURCE_SOCIAL

    def __init__(self, bearer_token: Optional[str] = None, url: Optional[str] = None):
        self.bearer_token = bearer_token if bearer_token is not None else Config.TWITTER_BEARER_TOKEN
        self.url = url or Config.TWITTER_SEARCH_URL

    @property
    def available(self) -> bool:
        return bool(self.bearer_token)

    def query(self, market_title, keywords, params=None) -> SignalFragment:
        if not self.bearer_token:
            raise SourceUnavailableError(self.name, "TWITTER_BEARER_TOKEN not configured")

        data = self._get(
            self.url,
            params={
                "query": f"{_search_text(market_title, keywords)} -is:retweet lang:en",
                "max_results": 50,
                "tweet.fields": "public_metrics,entities,created_at",
            },
            headers={"Authorization": f"Bearer {self.bearer_token}"},
        )

        posts = data.get("data") or [] if isinstance(data, dict) else []
        if not posts:
            return SignalFragment(
                source=self.name,
                sentiment=0.0,
                confidence=0.0,
                metadata={"post_count": 0, "trending_topics": []},
            )

        scores = []
        hashtags: Counter = Counter()
        engagement = 0.0
        for post in posts:
            scores.append(score_text(post.get("text", "")))
            metrics = post.get("public_metrics") or {}
            engagement += safe_float(metrics.get("like_count")) + 2 * safe_float(metrics.get("retweet_count"))
            for tag in (post.get("entities") or {}).get("hashtags") or []:
                if tag.get("tag"):
                    hashtags[tag["tag"].lower()] += 1

        combined = aggregate_scores(scores)
        trending = [f"#{tag}" for tag, _ in hashtags.most_common(3)]
        trending += top_terms(post.get("text", "") for post in posts)[: 5 - len(trending)]

        logger.info(f"Social sentiment {combined.score:+.2f} from {len(posts)} posts")
        return SignalFragment(
            source=self.name,
            sentiment=combined.score,
            confidence=combined.confidence,
            metadata={
                "post_count": len(posts),
                "engagement": engagement,
                "trending_topics": trending,
            },
        )


class CommunitySource(IntelligenceSource):
    """Community discussion from Reddit search."""

    name = SOURCE_COMMUNITY

    def __init__(self, url: Optional[str] = None, user_agent: Optional[str] = None):
        self.url = url or Config.REDDIT_SEARCH_URL
        self.user_agent = user_agent or Config.REDDIT_USER_AGENT

    def query(self, market_title, keywords, params=None) -> SignalFragment:
        data = self._get(
            self.url,
            params={"q": _search_text(market_title, keywords), "sort": "relevance", "t": "week", "limit": 25},
            headers={"User-Agent": self.user_agent, "Accept": "application/json"},
        )

        children = ((data.get("data") or {}).get("children") or []) if isinstance(data, dict) else []
        posts = [child.get("data") or {} for child in children if isinstance(child, dict)]
        if not posts:
            return SignalFragment(
                source=self.name,
                sentiment=0.0,
                confidence=0.0,
                metadata={"post_count": 0, "credibility_score": 0.0, "trending_topics": []},
            )

        scores = [score_text(f"{p.get('title', '')} {p.get('selftext', '')}") for p in posts]
        combined = aggregate_scores(scores)
        credibility = sum(min(1.0, safe_float(p.get("score")) / 100.0) for p in posts) / len(posts)
        subreddits = Counter(p.get("subreddit") for p in posts if p.get("subreddit"))

        logger.info(f"Community sentiment {combined.score:+.2f} from {len(posts)} posts")
        return SignalFragment(
            source=self.name,
            sentiment=combined.score,
            confidence=combined.confidence,
            metadata={
                "post_count": len(posts),
                "comment_count": int(sum(safe_float(p.get("num_comments")) for p in posts)),
                "credibility_score": round(credibility, 4),
                "subreddits": [name for name, _ in subreddits.most_common(3)],
                "trending_topics": top_terms(p.get("title", "") for p in posts),
            },
        )


def compute_technicals(snapshot: MarketSnapshot) -> dict[str, float]:
    """
    Derive normalized technical indicators from a market snapshot.

    Returns:
        Dictionary with price_momentum, volume_trend, market_efficiency,
        order_book_health and volume_ratio, each in [0, 1]
    """
    efficiency = clamp(1.0 - snapshot.spread)
    if snapshot.total_volume > 0:
        volume_trend = 1.0 if snapshot.volume_24h > snapshot.total_volume / 30.0 else 0.0
        volume_ratio = clamp(snapshot.volume_24h / snapshot.total_volume)
    else:
        volume_trend = 1.0 if snapshot.volume_24h > 0 else 0.0
        volume_ratio = 0.0

    return {
        "price_momentum": clamp(abs(snapshot.price - 0.5) * 2.0),
        "volume_trend": volume_trend,
        "market_efficiency": efficiency,
        "order_book_health": clamp(snapshot.liquidity / 10000.0 * efficiency),
        "volume_ratio": volume_ratio,
    }


class MarketTechnicalsSource(IntelligenceSource):
    """
    Technical indicators computed from a fresh Gamma API read of the market.
    """

    name = SOURCE_MARKET

    def __init__(self, fetch_market: Optional[Callable[[str], Optional[MarketSnapshot]]] = None):
        self._fetch_market = fetch_market or scanner.fetch_market

    def query(self, market_title, keywords, params=None) -> SignalFragment:
        market_id = (params or {}).get("market_id")
        if not market_id:
            raise SourceUnavailableError(self.name, "market_id parameter is required")

        snapshot = self._fetch_market(market_id)
        if snapshot is None:
            raise SourceUnavailableError(self.name, f"market {market_id} could not be fetched")

        technicals = compute_technicals(snapshot)
        return SignalFragment(
            source=self.name,
            sentiment=clamp((snapshot.price - 0.5) * 2.0, -1.0, 1.0),
            confidence=technicals["order_book_health"],
            metadata={"technicals": technicals, "price": snapshot.price},
        )


def default_sources() -> list[IntelligenceSource]:
    """The four production sources in their usual order."""
    return [NewsSource(), SocialSource(), CommunitySource(), MarketTechnicalsSource()]
