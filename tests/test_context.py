"""
上下文准备测试
"""

import pytest

from skill_scheduler.models import Canvas, ContentItem, ContextItemMetadata, Resource, RunConfig, Source
from skill_scheduler.preprocess.context import (
    assemble_context,
    collect_context_sources,
    prepare_context,
    split_mentioned,
)
from skill_scheduler.preprocess.tokens import ApproxTokenCounter
from skill_scheduler.preprocess.urls import crawl_urls, extract_urls


def _source(entity_id: str, content: str, entity_type: str = "resource", score: float | None = None) -> Source:
    return Source(entity_id=entity_id, entity_type=entity_type, title=entity_id, content=content, score=score)


class FakeRetriever:
    def __init__(self, kb: list[Source] | None = None, web: list[Source] | None = None, fail: bool = False):
        self.kb = kb or []
        self.web = web or []
        self.fail = fail
        self.queries: list[tuple[str, str]] = []

    async def search_knowledge_base(self, query, limit):
        self.queries.append(("kb", query))
        if self.fail:
            raise RuntimeError("kb down")
        return self.kb[:limit]

    async def search_web(self, query, limit, locale):
        self.queries.append(("web", query))
        return self.web[:limit]


class FakeCrawler:
    def __init__(self, pages: dict[str, str]):
        self.pages = pages

    async def crawl(self, url):
        if url not in self.pages:
            raise RuntimeError(f"404 {url}")
        return Source(title=url, content=self.pages[url])


class TestAssembleContext:
    """贪心装填"""

    def test_never_exceeds_budget(self):
        counter = ApproxTokenCounter()
        tiers = [
            [_source("m1", "mentioned " * 200)],
            [_source("r1", "retrieved " * 200)],
        ]
        for budget in (20, 64, 150, 500, 2000):
            prepared = assemble_context(counter, tiers, budget)
            assert counter.count(prepared.context_str) <= budget

    def test_priority_order(self):
        counter = ApproxTokenCounter()
        prepared = assemble_context(
            counter,
            [[_source("mentioned", "A" * 200)], [_source("retrieved", "B" * 200)], [_source("crawled", "C" * 200)]],
            1000,
        )
        ids = [s.entity_id for s in prepared.sources]
        assert ids == ["mentioned", "retrieved", "crawled"]
        assert prepared.context_str.index("A") < prepared.context_str.index("B") < prepared.context_str.index("C")
        assert not prepared.truncated

    def test_lowest_priority_truncated_first(self):
        counter = ApproxTokenCounter()
        prepared = assemble_context(
            counter,
            [[_source("mentioned", "A" * 200)], [_source("crawled", "C" * 2000)]],
            200,
        )
        assert prepared.truncated
        assert prepared.sources[0].content == "A" * 200
        assert prepared.sources[-1].entity_id == "crawled"
        assert prepared.sources[-1].metadata.get("truncated") is True

    def test_zero_budget_is_empty(self):
        prepared = assemble_context(ApproxTokenCounter(), [[_source("m", "text")]], 0)
        assert prepared.is_empty
        assert prepared.sources == []

    def test_duplicates_dropped(self):
        prepared = assemble_context(
            ApproxTokenCounter(),
            [[_source("same", "content")], [_source("same", "content")]],
            1000,
        )
        assert len(prepared.sources) == 1


class TestMentionedContext:
    """提及识别"""

    @pytest.fixture
    def run_config(self):
        return RunConfig(
            canvases=[
                Canvas(canvas_id="canvas-1", title="Draft", content="draft body",
                       metadata=ContextItemMetadata(is_current_context=True)),
            ],
            resources=[
                Resource(resource_id="res-1", title="Paper", content="paper body"),
                Resource(resource_id="res-2", title="Notes", content="notes body"),
            ],
            content_list=[ContentItem(content="selected snippet")],
        )

    def test_collect_sources(self, run_config):
        sources = collect_context_sources(run_config)
        assert [s.entity_id for s in sources] == ["canvas-1", "res-1", "res-2", "content-0"]
        assert sources[0].metadata["is_current_context"] is True

    def test_split_with_ids(self, run_config):
        mentioned, attached = split_mentioned(collect_context_sources(run_config), ["res-2"])
        # 当前画布总是视为提及
        assert [s.entity_id for s in mentioned] == ["canvas-1", "res-2"]
        assert [s.entity_id for s in attached] == ["res-1", "content-0"]

    def test_split_without_analysis(self, run_config):
        mentioned, attached = split_mentioned(collect_context_sources(run_config), None)
        assert len(mentioned) == 4
        assert attached == []


class TestPrepareContext:
    """完整上下文准备"""

    @pytest.mark.asyncio
    async def test_mentioned_before_retrieved(self):
        counter = ApproxTokenCounter()
        retriever = FakeRetriever(kb=[_source("kb-1", "knowledge " * 20, entity_type="")])
        run_config = RunConfig(
            resources=[Resource(resource_id="res-1", title="Paper", content="paper body")],
            enable_knowledge_base_search=True,
        )
        prepared = await prepare_context(
            "what does the paper say",
            counter=counter,
            max_tokens=1000,
            run_config=run_config,
            mentioned_ids=["res-1"],
            retriever=retriever,
        )
        assert [s.entity_id for s in prepared.sources] == ["res-1", "kb-1"]
        assert prepared.sources[1].entity_type == "knowledge_base"
        assert retriever.queries == [("kb", "what does the paper say")]

    @pytest.mark.asyncio
    async def test_retrieval_failure_is_absorbed(self):
        prepared = await prepare_context(
            "query",
            counter=ApproxTokenCounter(),
            max_tokens=1000,
            run_config=RunConfig(enable_knowledge_base_search=True),
            retriever=FakeRetriever(fail=True),
        )
        assert prepared.is_empty

    @pytest.mark.asyncio
    async def test_web_results_sorted_by_score(self):
        retriever = FakeRetriever(web=[
            _source("low", "low " * 10, entity_type="", score=0.1),
            _source("high", "high " * 10, entity_type="", score=0.9),
        ])
        prepared = await prepare_context(
            "query",
            counter=ApproxTokenCounter(),
            max_tokens=1000,
            run_config=RunConfig(enable_web_search=True),
            retriever=retriever,
        )
        assert [s.entity_id for s in prepared.sources] == ["high", "low"]
        assert all(s.entity_type == "web" for s in prepared.sources)


class TestUrls:
    """链接提取与抓取"""

    def test_extract_urls(self):
        query = "Compare https://a.example.com/x, and http://b.example.org. Also https://a.example.com/x"
        assert extract_urls(query) == ["https://a.example.com/x", "http://b.example.org"]

    def test_extract_urls_limit(self):
        query = " ".join(f"https://site{i}.com" for i in range(5))
        assert len(extract_urls(query, max_urls=2)) == 2

    @pytest.mark.asyncio
    async def test_crawl_skips_failures(self):
        crawler = FakeCrawler({"https://ok.com": "page body"})
        sources = await crawl_urls(crawler, ["https://ok.com", "https://missing.com"])
        assert len(sources) == 1
        assert sources[0].entity_type == "url"
        assert sources[0].url == "https://ok.com"

    @pytest.mark.asyncio
    async def test_no_crawler(self):
        assert await crawl_urls(None, ["https://ok.com"]) == []
