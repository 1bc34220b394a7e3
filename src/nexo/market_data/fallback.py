"""Ordered provider fallback: try the primary, then each fallback in turn."""

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from nexo.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class NamedAdapter(Generic[T]):
    """One provider in a chain: a name for logs and an async fetch returning T or None."""

    name: str
    fetch: Callable[..., Awaitable[T | None]]


class FallbackChain(Generic[T]):
    """Short-circuiting fold over an ordered list of adapters.

    The first adapter returning a non-None value wins. An adapter that raises
    is logged and treated as a None result, so no exception crosses the
    chain (caller cancellation excepted).
    """

    def __init__(self, label: str, adapters: Sequence[NamedAdapter[T]]) -> None:
        self._label = label
        self._adapters = list(adapters)

    @property
    def names(self) -> list[str]:
        return [adapter.name for adapter in self._adapters]

    async def first(self, *args: Any) -> T | None:
        for adapter in self._adapters:
            try:
                value = await adapter.fetch(*args)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "fallback_adapter_error",
                    chain=self._label,
                    adapter=adapter.name,
                    error=str(e),
                    exc_info=True,
                )
                continue
            if value is not None:
                return value
            logger.debug("fallback_adapter_empty", chain=self._label, adapter=adapter.name)

        logger.warning("fallback_chain_exhausted", chain=self._label, args=[str(a) for a in args])
        return None
