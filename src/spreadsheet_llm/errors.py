"""Exception types raised by the compression and QA layers."""
from __future__ import annotations


class SpreadsheetLLMError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(SpreadsheetLLMError):
    """Invalid configuration detected before any work is attempted."""


class WorkbookLoadError(SpreadsheetLLMError):
    """The workbook file could not be read."""


class PipelineStepError(SpreadsheetLLMError):
    """A pipeline step could not run with the context it was given."""
