"""
Shared test configuration for Prospect.

Provides fast configuration, an initialised HTTP client, the fake browser
environment and sample documents used across unit and integration tests.
"""

import asyncio
import os
from pathlib import Path
from typing import AsyncGenerator

import fakeredis
import pytest
import pytest_asyncio

from prospect.config import BrowserConfig, CacheConfig, Config, DebugConfig, FetcherConfig, SchedulerConfig
from prospect.fetcher import BrowserPool, HttpClient

from tests.helpers.fake_browser import FakeBrowserEnvironment

os.environ["PROSPECT_DEBUG__TEST_MODE"] = "1"

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests across modules")


@pytest_asyncio.fixture(autouse=True)
async def cleanup_tasks() -> AsyncGenerator[None, None]:
    """Cancel any task a test leaves behind so one test cannot hang the next."""
    tasks_before = asyncio.all_tasks()
    yield
    new_tasks = asyncio.all_tasks() - tasks_before

    for task in new_tasks:
        if not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                print(f"Unexpected error during task cleanup: {e}")


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def test_config(tmp_path: Path) -> Config:
    """Configuration tuned for fast, deterministic tests."""
    return Config(
        fetcher=FetcherConfig(
            timeout=5.0,
            retries=1,
            retry_base_delay=0.0,
            retry_jitter=False,
            probe_timeout=1.0,
        ),
        browser=BrowserConfig(pool_size=2, recycle_after=100, screenshot_dir=tmp_path / "screenshots"),
        cache=CacheConfig(enabled=True, ttl_seconds=300.0),
        scheduler=SchedulerConfig(max_concurrency=3, politeness_delay=0.0, interval_seconds=1.0, interval_cap=1000),
        debug=DebugConfig(test_mode=True),
    )


# ============================================================================
# Component Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def http_client(test_config: Config) -> AsyncGenerator[HttpClient, None]:
    client = HttpClient(test_config.fetcher)
    await client.initialize()
    yield client
    await client.close()


@pytest_asyncio.fixture
async def fake_redis() -> AsyncGenerator[fakeredis.FakeAsyncRedis, None]:
    client = fakeredis.FakeAsyncRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


@pytest.fixture
def fake_browser() -> FakeBrowserEnvironment:
    return FakeBrowserEnvironment()


@pytest_asyncio.fixture
async def browser_pool(test_config: Config, fake_browser: FakeBrowserEnvironment) -> AsyncGenerator[BrowserPool, None]:
    pool = BrowserPool(test_config.browser, "ProspectTest/1.0", playwright_factory=fake_browser.start)
    async with pool:
        yield pool


# ============================================================================
# Sample Content
# ============================================================================


@pytest.fixture
def sample_html() -> str:
    return """
    <!DOCTYPE html>
    <html lang="en">
    <head>
        <title>Test Article</title>
        <meta name="description" content="Sample article for testing">
        <meta name="author" content="Jane Doe">
        <meta name="keywords" content="testing, parsing , html">
        <meta property="article:published_time" content="2024-03-01T10:00:00Z">
        <style>body { color: red; }</style>
        <script>window.secret = "do not index";</script>
    </head>
    <body>
        <article>
            <h1>Test Article Title</h1>
            <p class="lead">This is a sample paragraph with <strong>bold text</strong> and
               <a href="/about">an internal link</a>.</p>
            <ul>
                <li>First item</li>
                <li>Second item</li>
            </ul>
            <ol>
                <li>Step one</li>
                <li>Step two</li>
            </ol>
            <blockquote>Quoted wisdom</blockquote>
            <pre><code>print("hello")</code></pre>
            <a href="https://other.example.org/page#section">external</a>
            <a href="/about">duplicate</a>
            <a href="mailto:someone@example.com">mail</a>
            <a href="javascript:void(0)">script</a>
            <img src="/img/logo.png" alt="logo">
            <img src="data:image/png;base64,AAAA" alt="inline">
            <span class="price" data-currency="EUR">42.50</span>
            <noscript>Enable JavaScript</noscript>
        </article>
    </body>
    </html>
    """
