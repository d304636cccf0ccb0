"""Tests for the Eyes session lifecycle."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, Mock

import pytest

from eyes_playwright import errors
from eyes_playwright.driver.driver import Driver
from eyes_playwright.eyes import AGENT_ID, Eyes
from eyes_playwright.models.config import EyesConfig
from eyes_playwright.models.geometry import RectangleSize
from eyes_playwright.models.session import SessionState

from conftest import USER_AGENT, RecordingEngine


class TestConstruction:
    """Tests for Eyes initialization."""

    def test_starts_closed(self, eyes):
        assert eyes.state is SessionState.CLOSED
        assert eyes.is_open is False
        assert eyes.is_disabled is False

    def test_disabled_does_not_build_engine(self):
        eyes = Eyes(is_disabled=True)
        assert eyes.engine is None
        assert eyes.state is SessionState.DISABLED

    def test_disabled_from_config(self):
        eyes = Eyes(config=EyesConfig(is_disabled=True))
        assert eyes.is_disabled is True

    def test_builds_local_engine_by_default(self, tmp_path):
        from eyes_playwright.engine.local import LocalComparisonEngine

        eyes = Eyes(config=EyesConfig(baselines_dir=str(tmp_path)))
        assert isinstance(eyes.engine, LocalComparisonEngine)
        assert eyes.engine.baselines_dir == tmp_path

    def test_server_url_and_agent_id(self):
        eyes = Eyes(engine=RecordingEngine(), config=EyesConfig(server_url="https://eyes.example.com"))
        assert eyes.server_url == "https://eyes.example.com"
        assert eyes.agent_id == AGENT_ID
        assert AGENT_ID.startswith("eyes-playwright/")


@pytest.mark.asyncio
class TestDisabled:
    """A disabled Eyes completes every call without touching anything."""

    async def test_all_calls_complete_trivially(self, mock_page):
        engine = RecordingEngine()
        eyes = Eyes(engine=engine, is_disabled=True)
        driver = Driver(mock_page)

        assert await eyes.open(driver, "App", "Home") is None
        assert await eyes.check_window("home") is None
        assert await eyes.check_region({"top": 0, "left": 0, "width": 5, "height": 5}) is None
        assert await eyes.check_region_by("#missing") is None
        assert await eyes.check_region_by_element(Mock()) is None
        assert await eyes.close() is None
        assert await eyes.abort_if_not_closed() is None

        assert engine.events == []
        mock_page.screenshot.assert_not_called()
        mock_page.query_selector.assert_not_called()
        mock_page.evaluate.assert_not_called()
        mock_page.set_viewport_size.assert_not_called()
        assert eyes.state is SessionState.DISABLED

    async def test_calls_before_open_complete(self):
        eyes = Eyes(is_disabled=True)
        assert await eyes.check_window() is None
        assert await eyes.close(throw_ex=True) is None


@pytest.mark.asyncio
class TestOpen:
    """Tests for opening a session."""

    async def test_open_starts_session(self, eyes, engine, driver):
        await eyes.open(driver, "My App", "Home page")

        assert eyes.is_open
        assert eyes.state is SessionState.OPEN
        assert eyes.driver is driver
        info = engine.start_info
        assert info.app_id_or_name == "My App"
        assert info.scenario_id_or_name == "Home page"
        assert info.agent_id == AGENT_ID
        assert info.viewport_size == RectangleSize(width=1280, height=720)
        assert info.environment == f"useragent:{USER_AGENT}"
        assert info.started_at

    async def test_started_at_is_utc(self, eyes, engine, driver):
        before = datetime.now(timezone.utc).replace(microsecond=0)
        await eyes.open(driver, "App", "Home")
        started = datetime.strptime(engine.start_info.started_at, "%Y-%m-%dT%H:%M:%SZ")
        assert before <= started.replace(tzinfo=timezone.utc) <= datetime.now(timezone.utc)

    async def test_open_with_viewport_sets_it(self, eyes, engine, driver, mock_page):
        await eyes.open(driver, "App", "Home", {"width": 800, "height": 600})

        mock_page.set_viewport_size.assert_awaited_once_with({"width": 800, "height": 600})
        assert engine.start_info.viewport_size == RectangleSize(width=800, height=600)

    async def test_open_uses_configured_viewport(self, engine, driver, mock_page):
        config = EyesConfig(viewport=RectangleSize(width=375, height=812))
        eyes = Eyes(engine=engine, config=config)
        await eyes.open(driver, "App", "Mobile")
        mock_page.set_viewport_size.assert_awaited_once_with({"width": 375, "height": 812})

    async def test_open_with_invalid_viewport_raises(self, eyes, driver):
        with pytest.raises(errors.UsageError):
            eyes.open(driver, "App", "Home", {"width": -1, "height": 600})

    async def test_reopen_while_open_raises(self, eyes, driver):
        await eyes.open(driver, "App", "First")
        with pytest.raises(errors.UsageError, match="already open"):
            await eyes.open(driver, "App", "Second")
        assert eyes.is_open

    async def test_engine_failure_leaves_eyes_closed(self, eyes, engine, driver):
        engine.open_session = AsyncMock(side_effect=ConnectionError("server unreachable"))
        with pytest.raises(ConnectionError):
            await eyes.open(driver, "App", "Home")
        assert eyes.state is SessionState.CLOSED


@pytest.mark.asyncio
class TestClose:
    """Tests for closing a session and the on-close failure report."""

    async def test_all_matching_checkpoints_pass(self, eyes, driver):
        await eyes.open(driver, "App", "Home")
        await eyes.check_window("home")
        results = await eyes.close()

        assert results.is_passed is True
        assert results.steps == 1
        assert eyes.state is SessionState.CLOSED

    async def test_mismatch_raises_test_failure_on_close(self, eyes, engine, driver):
        engine.as_expected = False
        await eyes.open(driver, "App", "Home")
        result = await eyes.check_window("home")

        # On-close reporting hands the mismatch back to the caller
        assert result.as_expected is False

        with pytest.raises(errors.TestFailure) as exc_info:
            await eyes.close()
        error = exc_info.value
        assert isinstance(error, errors.DiffsFoundError)
        assert error.test_results.is_passed is False
        assert error.scenario_id_or_name == "Home"
        assert error.app_id_or_name == "App"
        assert eyes.state is SessionState.CLOSED

    async def test_throw_ex_false_returns_failed_results(self, eyes, engine, driver):
        engine.as_expected = False
        await eyes.open(driver, "App", "Home")
        await eyes.check_window("home")
        results = await eyes.close(throw_ex=False)

        assert results.is_passed is False
        assert results.mismatches == 1

    async def test_engine_failure_still_closes(self, eyes, engine, driver):
        engine.close_session = AsyncMock(side_effect=ConnectionError("network down"))
        await eyes.open(driver, "App", "Home")
        with pytest.raises(ConnectionError):
            await eyes.close()
        assert eyes.state is SessionState.CLOSED

    async def test_close_before_open_raises(self, eyes):
        with pytest.raises(errors.UsageError, match="not open"):
            eyes.close()

    async def test_close_twice_fails_second_time(self, eyes, driver):
        await eyes.open(driver, "App", "Home")
        await eyes.close()
        with pytest.raises(errors.UsageError, match="not open"):
            await eyes.close()

    async def test_check_after_close_fails(self, eyes, engine, driver):
        await eyes.open(driver, "App", "Home")
        await eyes.close()
        with pytest.raises(errors.UsageError):
            await eyes.check_window("late")
        assert engine.matches == []

    async def test_session_can_be_reopened_after_close(self, eyes, engine, driver):
        await eyes.open(driver, "App", "First")
        await eyes.close()
        await eyes.open(driver, "App", "Second")
        assert eyes.is_open
        assert engine.start_info.scenario_id_or_name == "Second"


@pytest.mark.asyncio
class TestAbort:
    """Tests for abort_if_not_closed."""

    async def test_aborts_open_session(self, eyes, engine, driver):
        await eyes.open(driver, "App", "Home")
        await eyes.abort_if_not_closed()
        assert engine.aborted is True
        assert eyes.state is SessionState.CLOSED

    async def test_noop_after_close(self, eyes, engine, driver):
        await eyes.open(driver, "App", "Home")
        await eyes.close()
        await eyes.abort_if_not_closed()
        assert engine.aborted is False

    async def test_noop_before_open(self, eyes, engine):
        assert await eyes.abort_if_not_closed() is None
        assert engine.events == []
