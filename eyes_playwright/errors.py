"""Error taxonomy for visual test sessions."""

from __future__ import annotations

from typing import Optional

from eyes_playwright.models.session import MatchResult, TestResults


class EyesError(Exception):
    """Base class for errors raised by eyes-playwright."""


class UsageError(EyesError):
    """Invalid configuration input or an operation called out of order."""


class ElementResolutionError(EyesError):
    """A locator matched no (rendered) element."""

    def __init__(self, selector: str, reason: str = "no element matches the selector"):
        self.selector = selector
        self.reason = reason
        super().__init__(f"Element '{selector}' could not be resolved: {reason}")


NoSuchElementError = ElementResolutionError


class MatchFailure(EyesError):
    """A single checkpoint did not match its baseline."""

    def __init__(self, match_result: MatchResult, scenario_id_or_name: str, app_id_or_name: str):
        self.match_result = match_result
        self.scenario_id_or_name = scenario_id_or_name
        self.app_id_or_name = app_id_or_name
        tag = f" '{match_result.tag}'" if match_result.tag else ""
        super().__init__(
            f"Checkpoint{tag} (window #{match_result.window_id}) of test "
            f"'{scenario_id_or_name}' of '{app_id_or_name}' does not match the baseline"
        )


class TestFailure(EyesError):
    """A closed session whose aggregated result is not passed."""

    __test__ = False

    def __init__(
        self,
        test_results: TestResults,
        scenario_id_or_name: str,
        app_id_or_name: str,
        message: Optional[str] = None,
    ):
        self.test_results = test_results
        self.scenario_id_or_name = scenario_id_or_name
        self.app_id_or_name = app_id_or_name
        super().__init__(message or f"Test '{scenario_id_or_name}' of '{app_id_or_name}' failed")


class DiffsFoundError(TestFailure):
    """The session finished with mismatching or missing checkpoints."""


class NewTestError(TestFailure):
    """The session created a new baseline but did not pass."""


def build_test_error(results: TestResults, scenario_id_or_name: str, app_id_or_name: str) -> TestFailure:
    """Pick the failure type that best describes a non-passed session."""
    details = f" See details at: {results.url}" if results.url else ""
    if results.is_new:
        return NewTestError(
            results, scenario_id_or_name, app_id_or_name,
            f"'{scenario_id_or_name}' of '{app_id_or_name}' is a new test.{details}",
        )
    if results.mismatches or results.missing:
        return DiffsFoundError(
            results, scenario_id_or_name, app_id_or_name,
            f"Test '{scenario_id_or_name}' of '{app_id_or_name}' detected differences! "
            f"({results.mismatches} mismatches, {results.missing} missing){details}",
        )
    return TestFailure(
        results, scenario_id_or_name, app_id_or_name,
        f"Test '{scenario_id_or_name}' of '{app_id_or_name}' failed.{details}",
    )
