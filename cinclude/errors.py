"""
Exception hierarchy for cinclude.

Each error is contained where it happens: a failed declaration is dropped,
a failed probe yields no constants, a failed registration is skipped. None of
them escapes :func:`cinclude.wrap_headers`, except
:class:`FilterPatternError`, which is raised before any header is read.
"""

from typing import (
    Optional,
)


class CIncludeError(Exception):
    """Base exception for all cinclude errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details or {}


class HeaderParseError(CIncludeError):
    """libclang could not produce a translation unit for a header."""

    def __init__(self, header: str, reason: str):
        super().__init__(
            f"Can't parse {header}: {reason}",
            details={"header": header, "reason": reason},
        )


class SynthesisError(CIncludeError):
    """A single cursor could not be turned into a declaration."""


class ProbeError(CIncludeError):
    """The macro probe program failed to build or run."""

    def __init__(self, stage: str, reason: str, output: str = ""):
        message = f"Macro probe {stage} failed: {reason}"
        if output:
            message = f"{message}\n{output.strip()}"
        super().__init__(message, details={"stage": stage, "reason": reason})
        self.stage = stage


class ProbeFormatError(CIncludeError):
    """One segment of the probe output is not a ``const NAME = VALUE`` line."""


class RegistrationError(CIncludeError):
    """A declaration could not be materialised with ctypes."""


class FilterPatternError(CIncludeError):
    """An ``include``/``exclude`` filter is not a valid regular expression."""

    def __init__(self, option: str, pattern: str, reason: str):
        super().__init__(
            f"Invalid {option} pattern {pattern!r}: {reason}",
            details={"option": option, "pattern": pattern, "reason": reason},
        )
        self.option = option
