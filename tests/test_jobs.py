"""Tests for browser-bound jobs."""

from __future__ import annotations

import asyncio

import pytest

from conftest import FakeBrowser
from tabwright.config import BrowserConfig, RunnerConfig
from tabwright.jobs import BrowserJobs
from tabwright.options import GoOptions, PageJobOptions
from tabwright.runner import JobState
from tabwright.session import JobInfo
from tabwright.status import StatusSink


@pytest.fixture
def jobs(
    browser_config: BrowserConfig,
    runner_config: RunnerConfig,
    fake_browser: FakeBrowser,
) -> BrowserJobs:
    """Browser jobs over the fake launcher."""
    return BrowserJobs(browser_config, runner_config, launcher=fake_browser)


class TestPageJobs:
    """Tests for page jobs."""

    @pytest.mark.asyncio
    async def test_navigates_then_runs_in_foreground(self, jobs: BrowserJobs) -> None:
        """Test the tab is loaded before the body and the body owns the window."""
        seen: dict[str, object] = {}

        async def body(info: JobInfo) -> None:
            seen["foreground"] = info.page.in_foreground
            seen["navigated"] = info.page.tab.goto.await_count
            seen["title"] = info.options.title

        options = PageJobOptions(
            title="home",
            url="https://example.com",
            go_options=GoOptions(timeout_ms=5000),
        )
        job = jobs.add_page_job(options, body)
        result = await jobs.run()

        assert job.state == JobState.SUCCEEDED
        assert result.is_success
        assert seen == {"foreground": True, "navigated": 1, "title": "home"}
        assert jobs.pool.foreground_lock.locked() is False

    @pytest.mark.asyncio
    async def test_tab_returned_after_job(self, jobs: BrowserJobs) -> None:
        async def body(info: JobInfo) -> None:
            pass

        jobs.add_page_job(PageJobOptions(title="no-url"), body)
        await jobs.run()

        assert jobs.pool.available_count == 1
        assert jobs.pool.statistics["releases"] == 1

    @pytest.mark.asyncio
    async def test_failure_returns_tab_and_marks_failed(self, jobs: BrowserJobs) -> None:
        """Test a failing body still gives back its tab and the window."""

        async def body(info: JobInfo) -> None:
            await info.page.wait_for_selector_or_fail("#missing")

        job = jobs.add_page_job(PageJobOptions(title="broken"), body)
        result = await jobs.run()

        assert job.state == JobState.FAILED
        assert "Couldn't find required selector: #missing" in job.error
        assert result.failed == 1
        assert jobs.pool.available_count == 1
        assert jobs.pool.foreground_lock.locked() is False

    @pytest.mark.asyncio
    async def test_page_jobs_take_turns(self, jobs: BrowserJobs, fake_browser: FakeBrowser) -> None:
        """Test concurrent page jobs never overlap in the foreground."""
        active = 0
        peak = 0

        async def body(info: JobInfo) -> None:
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        for i in range(4):
            jobs.add_page_job(PageJobOptions(title=f"page-{i}"), body)
        result = await jobs.run()

        assert result.succeeded == 4
        assert peak == 1
        assert fake_browser.launches == 1

    @pytest.mark.asyncio
    async def test_status_reaches_runner(self, jobs: BrowserJobs) -> None:
        async def body(info: JobInfo) -> None:
            info.status("Reading results")

        job = jobs.add_page_job(PageJobOptions(title="status"), body)
        await jobs.run()

        assert job.status == "Reading results"

    @pytest.mark.asyncio
    async def test_side_job_from_page_job(self, jobs: BrowserJobs) -> None:
        """Test a page job can hand work to a job that needs no tab."""
        ran: list[str] = []

        async def crunch(status: StatusSink) -> None:
            await asyncio.sleep(0.01)
            ran.append("side")

        async def body(info: JobInfo) -> None:
            info.page.run_side_job("crunch", crunch)
            ran.append("page")

        jobs.add_page_job(PageJobOptions(title="page"), body)
        result = await jobs.run()

        assert ran == ["page", "side"]
        assert result.total_jobs == 2
        assert result.jobs[1].tags == ("side",)

    @pytest.mark.asyncio
    async def test_context_manager_closes_browser(
        self,
        browser_config: BrowserConfig,
        runner_config: RunnerConfig,
        fake_browser: FakeBrowser,
    ) -> None:
        async def body(info: JobInfo) -> None:
            pass

        async with BrowserJobs(browser_config, runner_config, launcher=fake_browser) as jobs:
            jobs.add_page_job(PageJobOptions(title="page"), body)
            await jobs.run()

        assert jobs.pool.is_running is False
        fake_browser.contexts[0].close.assert_awaited_once()
