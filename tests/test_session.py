"""End-to-end tests for session orchestration against a scripted browser."""

import asyncio
import gzip

import httpx
import pytest

from conftest import FakeRenderer
from scrapture.config import SessionConfig
from scrapture.database import StoreError
from scrapture.infrastructure import DomainRateLimiter
from scrapture.models import EntryStatus, JobStatus, SessionStatus
from scrapture.session import CANCELLED_MESSAGE, SessionOrchestrator, create_session

SEED = "https://example.com/"


def make_config(**overrides) -> SessionConfig:
    options = dict(
        seed_url=SEED,
        request_delay_ms=0,
        auto_scroll=False,
        capture_screenshot=False,
        follow_sitemap=False,
        respect_robots=False,
    )
    options.update(overrides)
    return SessionConfig(**options)


def mock_client(documents: dict, head_ok: tuple = ()) -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if request.method == "HEAD":
            return httpx.Response(200 if url in head_ok else 404)
        body = documents.get(url)
        if isinstance(body, bytes):
            return httpx.Response(200, content=body)
        if body is not None:
            return httpx.Response(200, text=body)
        return httpx.Response(404)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def entries_by_url(store, session_id):
    return {entry.url: entry for entry in store.list_frontier_entries(session_id)}


def orchestrator_for(store, renderer, config=None, **kwargs) -> SessionOrchestrator:
    session = create_session(store, config or make_config())
    return SessionOrchestrator(store, session.id, renderer=renderer, **kwargs)


class TestSessionRun:
    """Tests for SessionOrchestrator.run()."""

    @pytest.mark.asyncio
    async def test_breadth_first_with_depth_limit(self, store, site, renderer):
        site.add(SEED, links=["/a", "/b"])
        site.add("https://example.com/a", links=["/c"])
        site.add("https://example.com/b")
        orchestrator = orchestrator_for(store, renderer, make_config(max_depth=1))

        session = await orchestrator.run()

        assert session.status is SessionStatus.COMPLETED
        assert session.started_at is not None
        assert session.completed_at is not None
        assert site.visited == [SEED, "https://example.com/a", "https://example.com/b"]

        entries = entries_by_url(store, session.id)
        assert entries["https://example.com/c"].status is EntryStatus.SKIPPED
        assert entries["https://example.com/c"].error == "max depth exceeded"
        assert entries["https://example.com/c"].depth == 2
        assert entries["https://example.com/a"].parent_url == SEED

        jobs = store.list_jobs(session.id)
        assert [job.status for job in jobs] == [JobStatus.COMPLETED] * 3
        assert all(store.get_result(job.id) is not None for job in jobs)
        assert renderer.launched and renderer.closed

    @pytest.mark.asyncio
    async def test_off_domain_links_not_recorded(self, store, site, renderer):
        site.add(SEED, links=["https://other.com/", "/guide.pdf"])
        session = await orchestrator_for(store, renderer).run()

        assert list(entries_by_url(store, session.id)) == [SEED]

    @pytest.mark.asyncio
    async def test_robots_disallow(self, store, site, renderer):
        site.add(SEED, links=["/admin/panel", "/about"])
        site.add("https://example.com/about")
        client = mock_client({
            "https://example.com/robots.txt": "User-agent: *\nDisallow: /admin\n",
        })

        async with client:
            orchestrator = orchestrator_for(
                store, renderer, make_config(respect_robots=True), client=client,
            )
            session = await orchestrator.run()

        entries = entries_by_url(store, session.id)
        assert session.status is SessionStatus.COMPLETED
        assert entries["https://example.com/admin/panel"].status is EntryStatus.SKIPPED
        assert entries["https://example.com/admin/panel"].error == "blocked by policy"
        assert entries["https://example.com/about"].status is EntryStatus.COMPLETED
        assert "https://example.com/admin/panel" not in site.visited

    @pytest.mark.asyncio
    async def test_duplicate_content_recorded_without_result(self, store, site, renderer):
        same = "<html><body><p>Same page</p></body></html>"
        site.add(SEED, links=["/a", "/b"])
        site.add("https://example.com/a", html=same, links=["/from-a"])
        site.add("https://example.com/b", html=same, links=["/from-b"])

        session = await orchestrator_for(store, renderer).run()

        jobs = store.list_jobs(session.id)
        assert len(jobs) == 3
        assert [job.status for job in jobs] == [JobStatus.COMPLETED] * 3
        assert store.get_result(jobs[1].id) is not None
        assert store.get_result(jobs[2].id) is None

        entries = entries_by_url(store, session.id)
        assert entries["https://example.com/b"].status is EntryStatus.COMPLETED
        assert entries["https://example.com/b"].content_hash == entries["https://example.com/a"].content_hash
        assert "https://example.com/from-a" in entries
        assert "https://example.com/from-b" not in entries

    @pytest.mark.asyncio
    async def test_page_budget(self, store, site, renderer):
        site.add(SEED, links=["/a", "/b", "/c"])
        for path in ("a", "b", "c"):
            site.add(f"https://example.com/{path}")

        session = await orchestrator_for(store, renderer, make_config(max_pages=2)).run()

        assert session.status is SessionStatus.COMPLETED
        assert len(store.list_jobs(session.id)) == 2
        assert store.count_entries_by_status(session.id)["queued"] == 2
        messages = [log.message for log in store.list_logs(session.id)]
        assert "Page budget reached (2 pages)" in messages

    @pytest.mark.asyncio
    async def test_page_failure_does_not_end_session(self, store, site, renderer):
        site.add(SEED, links=["/missing", "/ok"])
        site.add("https://example.com/ok")

        session = await orchestrator_for(store, renderer).run()

        entries = entries_by_url(store, session.id)
        assert session.status is SessionStatus.COMPLETED
        assert entries["https://example.com/missing"].status is EntryStatus.FAILED
        assert "ERR_NAME_NOT_RESOLVED" in entries["https://example.com/missing"].error
        assert entries["https://example.com/ok"].status is EntryStatus.COMPLETED

        failed_jobs = [job for job in store.list_jobs(session.id) if job.status is JobStatus.FAILED]
        assert len(failed_jobs) == 1
        assert store.list_logs(session.id, job_id=failed_jobs[0].id)

    @pytest.mark.asyncio
    async def test_visit_timeout(self, store, site, renderer):
        site.add(SEED, delay=1.0)
        config = make_config(visit_timeout_seconds=0.05)

        session = await orchestrator_for(store, renderer, config).run()

        entry = entries_by_url(store, session.id)[SEED]
        assert session.status is SessionStatus.COMPLETED
        assert entry.status is EntryStatus.FAILED
        assert entry.error == "visit timed out after 0.05s"
        assert renderer.open_contexts == 0

    @pytest.mark.asyncio
    async def test_canonical_enqueued_at_same_depth(self, store, site, renderer):
        site.add(SEED, html='<html><head><link rel="canonical" href="/home"></head><body>x</body></html>')
        site.add("https://example.com/home")

        session = await orchestrator_for(store, renderer).run()

        entries = entries_by_url(store, session.id)
        assert entries[SEED].canonical_url == "https://example.com/home"
        assert entries["https://example.com/home"].depth == 0
        assert entries["https://example.com/home"].status is EntryStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_sitemap_urls_seeded_at_depth_one(self, store, site, renderer):
        site.add(SEED)
        site.add("https://example.com/s1")
        site.add("https://example.com/s2")
        client = mock_client(
            {
                "https://example.com/sitemap.xml": (
                    '<urlset xmlns="http://www.sitemaps.org/schemas/sitemap/0.9">'
                    "<url><loc>https://example.com/s1</loc></url>"
                    "<url><loc>https://example.com/s2</loc></url>"
                    "</urlset>"
                ),
            },
            head_ok=("https://example.com/sitemap.xml",),
        )

        async with client:
            orchestrator = orchestrator_for(
                store, renderer, make_config(follow_sitemap=True), client=client,
            )
            session = await orchestrator.run()

        entries = entries_by_url(store, session.id)
        assert entries["https://example.com/s1"].depth == 1
        assert entries["https://example.com/s1"].parent_url == SEED
        assert entries["https://example.com/s2"].status is EntryStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_browser_launch_failure(self, store, site):
        renderer = FakeRenderer(site, launch_error=RuntimeError("Executable doesn't exist"))

        session = await orchestrator_for(store, renderer).run()

        assert session.status is SessionStatus.FAILED
        assert session.error == "Executable doesn't exist"
        assert store.list_jobs(session.id) == []

    @pytest.mark.asyncio
    async def test_terminal_session_not_rerun(self, store, site, renderer):
        site.add(SEED)
        orchestrator = orchestrator_for(store, renderer)
        store.update_session(orchestrator.session_id, status=SessionStatus.COMPLETED)

        session = await orchestrator.run()

        assert session.status is SessionStatus.COMPLETED
        assert not renderer.launched
        assert site.visited == []

    @pytest.mark.asyncio
    async def test_session_logs_have_no_job(self, store, site, renderer):
        site.add(SEED)
        session = await orchestrator_for(store, renderer).run()

        logs = store.list_logs(session.id)
        assert logs[0].message == f"Session started: {SEED}"
        assert logs[0].job_id is None
        assert logs[-1].message == "Session completed"


    @pytest.mark.asyncio
    async def test_broken_sitemap_does_not_fail_session(self, store, site, renderer):
        site.add(SEED)
        truncated = gzip.compress(b"<urlset><url><loc>https://example.com/x</loc></url></urlset>")[:20]
        client = mock_client(
            {"https://example.com/sitemap.xml": truncated},
            head_ok=("https://example.com/sitemap.xml",),
        )

        async with client:
            orchestrator = orchestrator_for(
                store, renderer, make_config(follow_sitemap=True), client=client,
            )
            session = await orchestrator.run()

        assert session.status is SessionStatus.COMPLETED
        assert site.visited == [SEED]

    @pytest.mark.asyncio
    async def test_failed_page_does_not_hide_same_content_elsewhere(self, store, site, renderer):
        same = "<html><body><p>Same page</p></body></html>"
        site.add(SEED, links=["/a", "/b"])
        site.add("https://example.com/a", html=same, harvest_error=RuntimeError("context destroyed"))
        site.add("https://example.com/b", html=same, links=["/from-b"])

        session = await orchestrator_for(store, renderer).run()

        entries = entries_by_url(store, session.id)
        assert entries["https://example.com/a"].status is EntryStatus.FAILED
        assert entries["https://example.com/b"].status is EntryStatus.COMPLETED
        assert "https://example.com/from-b" in entries

        job_b = [job for job in store.list_jobs(session.id) if job.url == "https://example.com/b"][0]
        assert store.get_result(job_b.id) is not None

    @pytest.mark.asyncio
    async def test_rejected_seed_fails_session(self, store, site, renderer):
        config = make_config(seed_url="https://example.com/brochure.pdf")

        session = await orchestrator_for(store, renderer, config).run()

        assert session.status is SessionStatus.FAILED
        assert session.error == "Seed URL rejected by frontier: skipped_non_html"
        assert site.visited == []


class RecordingRateLimiter(DomainRateLimiter):
    """Records each wait along with how many pages had been visited."""

    def __init__(self, site):
        super().__init__(default_delay_ms=0)
        self.site = site
        self.calls = []

    async def wait(self, origin, delay_ms=None):
        self.calls.append((origin, delay_ms, len(self.site.visited)))
        return 0.0


class TestThrottling:
    """The orchestrator waits on the rate limiter before every visit."""

    @pytest.mark.asyncio
    async def test_robots_crawl_delay_used(self, store, site, renderer):
        site.add(SEED, links=["/a"])
        site.add("https://example.com/a")
        client = mock_client({"https://example.com/robots.txt": "User-agent: *\nCrawl-delay: 2\n"})

        async with client:
            orchestrator = orchestrator_for(
                store, renderer, make_config(respect_robots=True), client=client,
            )
            limiter = RecordingRateLimiter(site)
            orchestrator.state.rate_limiter = limiter
            await orchestrator.run()

        assert limiter.calls == [
            ("https://example.com", 2000, 0),
            ("https://example.com", 2000, 1),
        ]

    @pytest.mark.asyncio
    async def test_configured_delay_without_robots(self, store, site, renderer):
        site.add(SEED, links=["/a"])
        site.add("https://example.com/a")
        orchestrator = orchestrator_for(store, renderer, make_config(request_delay_ms=1500))
        limiter = RecordingRateLimiter(site)
        orchestrator.state.rate_limiter = limiter

        await orchestrator.run()

        assert limiter.calls == [
            ("https://example.com", 1500, 0),
            ("https://example.com", 1500, 1),
        ]

    @pytest.mark.asyncio
    async def test_rate_limit_summary_logged(self, store, site, renderer):
        site.add(SEED)
        session = await orchestrator_for(store, renderer).run()

        messages = [log.message for log in store.list_logs(session.id)]
        assert "Rate limiting https://example.com: 1 requests, 0.0s waited" in messages


class TestCancellation:
    """Stopping a session mid-visit."""

    @pytest.mark.asyncio
    async def test_stop_event(self, store, site, renderer):
        site.add(SEED, delay=5.0)
        stop_event = asyncio.Event()
        orchestrator = orchestrator_for(store, renderer, stop_event=stop_event)

        task = asyncio.create_task(orchestrator.run())
        await asyncio.wait_for(site.navigation_started.wait(), timeout=2)
        stop_event.set()
        session = await asyncio.wait_for(task, timeout=2)

        assert session.status is SessionStatus.FAILED
        assert session.error == CANCELLED_MESSAGE

        entry = entries_by_url(store, session.id)[SEED]
        assert entry.status is EntryStatus.FAILED
        assert entry.error == CANCELLED_MESSAGE

        [job] = store.list_jobs(session.id)
        assert job.status is JobStatus.FAILED
        assert job.error == CANCELLED_MESSAGE
        assert renderer.closed
        assert renderer.open_contexts == 0

    @pytest.mark.asyncio
    async def test_stop_before_start(self, store, site, renderer):
        site.add(SEED)
        stop_event = asyncio.Event()
        stop_event.set()

        session = await orchestrator_for(store, renderer, stop_event=stop_event).run()

        assert session.status is SessionStatus.FAILED
        assert site.visited == []
        assert store.list_jobs(session.id) == []

    @pytest.mark.asyncio
    async def test_task_cancellation_persists_state(self, store, site, renderer):
        site.add(SEED, delay=5.0)
        orchestrator = orchestrator_for(store, renderer)

        task = asyncio.create_task(orchestrator.run())
        await asyncio.wait_for(site.navigation_started.wait(), timeout=2)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        session = store.get_session(orchestrator.session_id)
        assert session.status is SessionStatus.FAILED
        assert session.error == CANCELLED_MESSAGE
        assert entries_by_url(store, session.id)[SEED].status is EntryStatus.FAILED
        assert renderer.closed


def test_unknown_session_rejected(store, renderer):
    with pytest.raises(StoreError):
        SessionOrchestrator(store, 404, renderer=renderer)


def test_create_session_from_dict(store):
    session = create_session(store, {"seed_url": SEED, "max_pages": 5})

    assert session.status is SessionStatus.QUEUED
    assert session.max_pages == 5
