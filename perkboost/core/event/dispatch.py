"""
Tiered listener execution for one published event.

CRITICAL and HIGH listeners run one after another, each bounded by its
tier's timeout. NORMAL listeners run concurrently and are awaited. LOW
listeners start as background tasks; `TieredDispatcher.drain` waits for them.

A listener failure or timeout is logged, reported to ``on_failure`` and
turned into a ``None`` result. It never reaches the publisher.
"""

from __future__ import annotations

import asyncio
import inspect
from itertools import groupby
from logging import Logger
from typing import Any, Callable, Mapping, Optional

from perkboost.core.event.types import EventListener, EventPayload, ListenerPriority

FailureHook = Callable[[str, EventListener, BaseException], None]


class TieredDispatcher:
    def __init__(
        self,
        logger: Logger,
        *,
        timeouts: Mapping[ListenerPriority, Optional[float]],
        on_failure: Optional[FailureHook] = None,
    ) -> None:
        self._logger = logger
        self._timeouts = dict(timeouts)
        self._on_failure = on_failure
        # Held here so LOW tasks are not garbage collected mid-flight.
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def pending_background(self) -> int:
        return len(self._background)

    async def dispatch(
        self, event_name: str, payload: EventPayload, listeners: list[EventListener]
    ) -> list[Any]:
        """
        Run ``listeners`` (sorted by priority) and return the results of the
        awaited tiers in execution order.
        """
        results: list[Any] = []

        for priority, group in groupby(listeners, key=lambda listener: listener.priority):
            tier = list(group)

            if priority is ListenerPriority.LOW:
                for listener in tier:
                    self._spawn(event_name, payload, listener)
            elif priority is ListenerPriority.NORMAL:
                results.extend(
                    await asyncio.gather(
                        *(self._invoke(event_name, payload, listener) for listener in tier)
                    )
                )
            else:
                for listener in tier:
                    results.append(
                        await self._invoke(
                            event_name, payload, listener, timeout=self._timeouts.get(priority)
                        )
                    )

        return results

    def _spawn(self, event_name: str, payload: EventPayload, listener: EventListener) -> None:
        task = asyncio.get_running_loop().create_task(
            self._invoke(event_name, payload, listener),
            name=f"event-{event_name}-{listener.identifier}",
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _invoke(
        self,
        event_name: str,
        payload: EventPayload,
        listener: EventListener,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        try:
            if timeout is not None and timeout > 0:
                return await asyncio.wait_for(self._call(listener, payload), timeout=timeout)
            return await self._call(listener, payload)
        except asyncio.TimeoutError as exc:
            self._fail(event_name, listener, exc, timeout_seconds=timeout)
        except Exception as exc:
            self._fail(event_name, listener, exc)
        return None

    @staticmethod
    async def _call(listener: EventListener, payload: EventPayload) -> Any:
        # Plain callables go to the default executor so they cannot block the loop.
        if inspect.iscoroutinefunction(listener.callback):
            return await listener.callback(payload)

        result = await asyncio.get_running_loop().run_in_executor(
            None, listener.callback, payload
        )
        if inspect.isawaitable(result):
            return await result
        return result

    def _fail(
        self,
        event_name: str,
        listener: EventListener,
        exc: BaseException,
        *,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        extra: dict[str, Any] = {
            "event_name": event_name,
            "listener_id": listener.identifier,
            "priority": listener.priority.name,
            "error_type": type(exc).__name__,
        }
        if timeout_seconds is not None:
            extra["timeout_seconds"] = timeout_seconds
            self._logger.error("Event listener timed out", extra=extra)
        else:
            extra["error"] = str(exc)
            self._logger.error(
                "Event listener failed",
                extra=extra,
                exc_info=(type(exc), exc, exc.__traceback__),
            )

        if self._on_failure is not None:
            self._on_failure(event_name, listener, exc)

    async def drain(self) -> None:
        while self._background:
            await asyncio.gather(*list(self._background))
