"""
URL extraction and crawling.

从 query 中提取链接并并发抓取，结果作为优先级最低的上下文来源。
"""

import asyncio
import re
from collections.abc import Sequence
from typing import Protocol

import structlog

from ..models import Source

logger = structlog.get_logger()

_URL_RE = re.compile(r"https?://[^\s<>\"'()\[\]{}]+", re.IGNORECASE)
_TRAILING_PUNCT = ".,;:!?，。；：！？）)"


class UrlCrawler(Protocol):
    async def crawl(self, url: str) -> Source | None: ...


def extract_urls(query: str, max_urls: int = 8) -> list[str]:
    """Unique http(s) URLs in order of appearance."""
    urls: list[str] = []
    for match in _URL_RE.finditer(query or ""):
        url = match.group(0).rstrip(_TRAILING_PUNCT)
        if url and url not in urls:
            urls.append(url)
        if len(urls) >= max_urls:
            break
    return urls


async def crawl_urls(
    crawler: UrlCrawler | None,
    urls: Sequence[str],
    concurrency: int = 5,
    timeout: float | None = None,
) -> list[Source]:
    """
    并发抓取，单个失败只记录日志。

    返回顺序与 urls 一致；抓取失败或无内容的链接被跳过。
    """
    if crawler is None or not urls:
        return []

    semaphore = asyncio.Semaphore(max(1, concurrency))

    async def _crawl(url: str) -> Source | None:
        async with semaphore:
            try:
                source = await asyncio.wait_for(crawler.crawl(url), timeout=timeout)
            except Exception as e:
                logger.warning("url_crawl.failed", url=url, error=str(e))
                return None
        if source is None or not source.content:
            return None
        return source.model_copy(update={"entity_type": "url", "url": source.url or url})

    results = await asyncio.gather(*(_crawl(url) for url in urls))
    sources = [s for s in results if s is not None]
    logger.info("url_crawl.complete", requested=len(urls), crawled=len(sources))
    return sources
