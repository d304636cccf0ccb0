"""Comparison engine boundary — the session-level service checkpoints are matched by."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

from eyes_playwright.models.geometry import Region
from eyes_playwright.models.session import MatchResult, SessionStartInfo, TestResults

logger = logging.getLogger(__name__)

CaptureFn = Callable[[], Awaitable[bytes]]


class ComparisonEngine(ABC):
    """Stores baselines, matches checkpoints and aggregates session results.

    Retrying a mismatching checkpoint until ``match_timeout`` elapses is the
    engine's responsibility; callers never retry.
    """

    @abstractmethod
    async def open_session(self, start_info: SessionStartInfo) -> None:
        """Start a session for one named test."""

    @abstractmethod
    async def match_window(
        self,
        capture: CaptureFn,
        *,
        tag: Optional[str],
        ignore_mismatch: bool,
        match_timeout: Optional[int],
        region: Optional[Region],
    ) -> MatchResult:
        """Capture through ``capture`` and compare against the baseline.

        ``region`` of None compares the whole screenshot. ``match_timeout``
        is in milliseconds.
        """

    @abstractmethod
    async def close_session(self) -> TestResults:
        """Finish the session and return its aggregated result."""

    async def abort_session(self) -> None:
        """Discard the session without producing a result."""
        logger.debug("%s does not support aborting; ignoring", type(self).__name__)
