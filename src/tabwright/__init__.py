"""
Tabwright: many concurrent jobs sharing one visible browser.

Jobs run in parallel for navigation, polling and computation, and take turns
owning the visible window for on-screen interaction.
"""

__version__ = "1.0.0"

from tabwright.config import (
    BrowserConfig,
    RunnerConfig,
    load_browser_config,
    load_runner_config,
    resolve_path,
)
from tabwright.jobs import BrowserJobs
from tabwright.log_config import configure_logging
from tabwright.options import (
    ClickOptions,
    GoOptions,
    JobOptions,
    PageJobOptions,
    SelectorOptions,
    TypeOptions,
    WaitIn,
)
from tabwright.pool import (
    BrowserHandle,
    BrowserLaunchError,
    BrowserPool,
    BrowserPoolError,
    launch_playwright,
)
from tabwright.runner import Job, JobRunner, JobRunnerError, JobState, RunResult
from tabwright.session import (
    JobInfo,
    NavigationError,
    PageSession,
    SelectorNotFoundError,
    SessionError,
)
from tabwright.status import StatusStack
from tabwright.visibility import ElementRect, Point

__all__ = [
    # Configuration
    "BrowserConfig",
    "RunnerConfig",
    "configure_logging",
    "load_browser_config",
    "load_runner_config",
    "resolve_path",
    # Options
    "ClickOptions",
    "GoOptions",
    "JobOptions",
    "PageJobOptions",
    "SelectorOptions",
    "TypeOptions",
    "WaitIn",
    # Pool
    "BrowserHandle",
    "BrowserLaunchError",
    "BrowserPool",
    "BrowserPoolError",
    "launch_playwright",
    # Session
    "ElementRect",
    "JobInfo",
    "NavigationError",
    "PageSession",
    "Point",
    "SelectorNotFoundError",
    "SessionError",
    "StatusStack",
    # Jobs
    "BrowserJobs",
    "Job",
    "JobRunner",
    "JobRunnerError",
    "JobState",
    "RunResult",
]
