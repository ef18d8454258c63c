"""Interfaces of the collaborators that live outside the sync engine.

The planner decides what a day should look like; the notifier delivers push
notifications. The worker only hands them work from the planning and
notification queues.
"""

from __future__ import annotations

from typing import Any, Protocol


class Planner(Protocol):
    async def replan(self, date: str, reason: str) -> None: ...

    async def morning_briefing(self) -> None: ...

    async def evening_review(self) -> None: ...

    async def weekly_plan(self) -> None: ...


class Notifier(Protocol):
    async def send(self, title: str, body: str, data: dict[str, Any] | None = None) -> None: ...
