"""Outbound HTTP: a single retrying JSON fetcher shared by all upstream adapters."""

from nexo.http.fetcher import HttpFetcher

__all__ = ["HttpFetcher"]
