"""
Article source adapters for Impact News.
"""
from impact_news.sources.base import CandidateArticle, FetchParams, SourceAdapter
from impact_news.sources.coindesk import CoinDeskAdapter
from impact_news.sources.cryptopanic import CryptoPanicAdapter
from impact_news.sources.firecrawl import FireCrawlAdapter
from impact_news.sources.newsapi import NewsAPIAdapter
from impact_news.sources.rss import RSSCrawlerAdapter

__all__ = [
    "CandidateArticle",
    "FetchParams",
    "SourceAdapter",
    "NewsAPIAdapter",
    "CoinDeskAdapter",
    "CryptoPanicAdapter",
    "RSSCrawlerAdapter",
    "FireCrawlAdapter",
]
