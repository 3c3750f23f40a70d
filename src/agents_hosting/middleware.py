"""Middleware pipeline run for every turn.

Middleware components run in registration order before the turn handler.
Each receives the turn context and a ``next`` callable; not awaiting ``next``
ends the turn early.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, Protocol, runtime_checkable

NextDelegate = Callable[[], Awaitable[None]]
TurnHandler = Callable[[Any], Awaitable[None]]
MiddlewareHandler = Callable[[Any, NextDelegate], Awaitable[None]]


@runtime_checkable
class Middleware(Protocol):
    """Object-style middleware."""

    async def on_turn(self, context: Any, next: NextDelegate) -> None: ...


class MiddlewareSet:
    """Ordered collection of middleware that is itself usable as middleware."""

    def __init__(self, *middleware: Middleware | MiddlewareHandler) -> None:
        self._middleware: list[MiddlewareHandler] = []
        self.use(*middleware)

    def __len__(self) -> int:
        return len(self._middleware)

    def use(self, *middleware: Middleware | MiddlewareHandler) -> MiddlewareSet:
        for item in middleware:
            if isinstance(item, Middleware):
                self._middleware.append(item.on_turn)
            elif callable(item):
                self._middleware.append(item)
            else:
                raise TypeError("MiddlewareSet.use(): invalid plugin type being added.")
        return self

    async def on_turn(self, context: Any, next: NextDelegate) -> None:
        async def call_next(_context: Any) -> None:
            await next()

        await self.run(context, call_next)

    async def run(self, context: Any, handler: TurnHandler | None = None) -> None:
        """Run every middleware in order, then ``handler``."""

        async def run_next(index: int) -> None:
            if index < len(self._middleware):
                await self._middleware[index](context, lambda: run_next(index + 1))
            elif handler is not None:
                await handler(context)

        await run_next(0)
