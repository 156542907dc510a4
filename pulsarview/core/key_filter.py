"""Message key filtering for consumer sessions."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from loguru import logger


class KeyFilterMode(Enum):
    EXACT = "exact"
    REGEX = "regex"


@dataclass(frozen=True, slots=True)
class KeyFilterSpec:
    """A configured filter. Swapped as a whole so readers never see half an update."""

    pattern: str
    mode: KeyFilterMode = KeyFilterMode.EXACT
    auto_stop: bool = False
    compiled: re.Pattern[str] | None = None


class KeyFilter:
    """Decides whether a message key matches and whether it should be hidden.

    Filtering hides non-matching messages rather than dropping them, so the
    full history is kept and only de-emphasized.
    """

    def __init__(self) -> None:
        self._spec: KeyFilterSpec | None = None
        self.last_error: str | None = None

    def configure(
        self,
        pattern: str,
        mode: KeyFilterMode = KeyFilterMode.EXACT,
        auto_stop: bool = False,
    ) -> bool:
        """Install a filter. Returns whether a filter is active afterwards.

        Regex patterns are compiled once here. An invalid pattern clears the
        filter and is reported through ``last_error`` instead of failing on
        every message.
        """
        self.last_error = None

        if not pattern:
            self._spec = None
            logger.info("Key filter cleared")
            return False

        compiled = None
        if mode is KeyFilterMode.REGEX:
            try:
                compiled = re.compile(pattern)
            except re.error as e:
                logger.warning("Invalid regex pattern {!r}: {}", pattern, e)
                self.last_error = f"Invalid regex pattern: {e}"
                self._spec = None
                return False

        self._spec = KeyFilterSpec(pattern, mode, auto_stop, compiled)
        logger.info(
            "Key filter updated: {} (mode: {}, autoStop: {})",
            pattern,
            mode.value,
            auto_stop,
        )
        return True

    def clear(self) -> None:
        self._spec = None
        self.last_error = None

    @property
    def spec(self) -> KeyFilterSpec | None:
        return self._spec

    @property
    def active(self) -> bool:
        return self._spec is not None

    @property
    def auto_stop(self) -> bool:
        spec = self._spec
        return spec is not None and spec.auto_stop

    def matches(self, key: str | None) -> bool:
        spec = self._spec
        if spec is None or not key:
            return False
        if spec.mode is KeyFilterMode.EXACT:
            return key == spec.pattern
        if spec.compiled is None:
            return False
        return spec.compiled.search(key) is not None

    def should_hide(self, key: str | None) -> bool:
        return self.active and not self.matches(key)

    def should_stop(self, key: str | None) -> bool:
        """True when the key matches and auto-stop is enabled."""
        return self.auto_stop and self.matches(key)
