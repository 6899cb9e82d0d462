"""
Exception taxonomy for crawl tasks, extraction and checkout analysis.

Every failure raised inside a task body is either one of these types or an
untyped exception that the error classifier maps by message.
"""

from __future__ import annotations


class CrawlError(Exception):
    """
    Base class for recoverable and non-recoverable crawl failures.
    """

    error_type = "crawl"

    def __init__(self, message: str, *, url: str | None = None) -> None:
        self.url = url
        super().__init__(message)


class TransientNetworkError(CrawlError):
    """Connection resets, DNS hiccups, navigation timeouts."""

    error_type = "transient_network"


class AccessBlockedError(CrawlError):
    """403 responses, bot walls and CAPTCHA pages."""

    error_type = "access_blocked"

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        captcha: bool = False,
    ) -> None:
        self.captcha = captcha
        super().__init__(message, url=url)


class StructuralMismatchError(CrawlError):
    """An expected selector or page shape was not found."""

    error_type = "structural_mismatch"

    def __init__(
        self,
        message: str,
        *,
        url: str | None = None,
        selector: str | None = None,
    ) -> None:
        self.selector = selector
        super().__init__(message, url=url)


class BrowserCrashError(CrawlError):
    """The automation session died (target closed, protocol error)."""

    error_type = "browser_crash"


class ParseFailureError(CrawlError):
    """Completion-service output could not be turned into structured data."""

    error_type = "parse_failure"

    def __init__(self, message: str, *, raw_response: str = "") -> None:
        self.raw_response = raw_response
        super().__init__(message)


class ValidationError(CrawlError):
    """Malformed task or input. Never retried."""

    error_type = "validation"


class TaskValidationError(ValidationError):
    """A submitted task is missing its kind or carries an unknown one."""


class ExtractionInputError(ValidationError):
    """Extraction was requested with empty markup or without a goal."""
