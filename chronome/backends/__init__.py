"""Bundled calendar backends."""

from .ics_backend import FeedClient, IcsFeedBackend

__all__ = ["FeedClient", "IcsFeedBackend"]
