"""Error taxonomy for the chat pipeline.

Only ``InputError``, ``DecodeError`` and ``PolicyRejection`` are handled close to
where they happen. Everything else travels up to ``ChatPipeline.run`` and is
turned into a generic apology by the fallback responder.
"""
from __future__ import annotations


class AnalyticsError(Exception):
    """Base class for every error raised by the analytics package."""


class InputError(AnalyticsError):
    """The question is missing or is not text."""


class ConfigError(AnalyticsError):
    """Required configuration is missing or invalid."""


class CredentialError(AnalyticsError):
    """No access credential is configured for the reasoning oracle."""


class UpstreamError(AnalyticsError):
    """The oracle (or another remote dependency) failed to answer."""


class DecodeError(AnalyticsError):
    """Oracle output could not be decoded into a plan."""


class PolicyRejection(AnalyticsError):
    """Generated SQL did not pass the safety policy."""


class ExecutionError(AnalyticsError):
    """The store could not run an admitted query."""
