"""Exception types raised across module boundaries.

Per-URL problems are never raised; they travel as error strings on
render and crawl results. These exceptions cover job-level failures only.
"""


class ChatKBError(Exception):
    """Base class for chatkb errors."""


class CrawlConfigError(ChatKBError, ValueError):
    """Crawl requested with no seeds or invalid options."""


class BrowserLaunchError(ChatKBError):
    """The headless browser process could not be started."""


class JobNotFoundError(ChatKBError, KeyError):
    """Unknown or expired ingestion job id."""
