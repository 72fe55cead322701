"""Cron-driven recurring tasks on the asyncio loop.

Cron evaluation is APScheduler's ``CronTrigger``; this module only owns the
run/reschedule loop so that a job never has more than one pending run.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import Any, Awaitable, Callable, List, Optional, Union

from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger


LOGGER = logging.getLogger(__name__)

TaskFactory = Callable[[], Awaitable[Any]]
Trigger = Union[CronTrigger, OrTrigger]


_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _crontab_weekdays(field: str) -> str:
    """Rewrite numeric crontab weekdays (0/7 = Sunday) as names.

    APScheduler 3 counts numeric weekdays from Monday, crontab from Sunday.
    """
    if not any(ch.isdigit() for ch in field):
        return field
    days: List[str] = []
    for item in field.split(","):
        base, _, step_raw = item.partition("/")
        step = int(step_raw) if step_raw else 1
        if base == "*":
            first, last = 0, 6
        elif "-" in base:
            lo, hi = base.split("-", 1)
            first, last = int(lo), int(hi)
        else:
            first = int(base)
            last = 7 if step_raw else first
        if not (0 <= first <= 7 and 0 <= last <= 7) or step < 1 or first > last:
            raise ValueError(f"invalid day of week {item!r}")
        for number in range(first, last + 1, step):
            name = _WEEKDAYS[number % 7]
            if name not in days:
                days.append(name)
    return ",".join(days)


def build_trigger(expression: str, timezone: Union[str, tzinfo, None] = None) -> Trigger:
    """Parse a 5-field crontab expression; raises ``ValueError`` when invalid.

    As in crontab, a day-of-month and a day-of-week that are both restricted
    (neither starts with ``*``) match when either one does, e.g. ``0 9 13 * 5``
    fires on the 13th and on every Friday. ``CronTrigger`` alone requires both,
    so that case becomes an ``OrTrigger`` over one trigger per day field.
    """
    fields = (expression or "").split()
    if len(fields) != 5:
        raise ValueError(f"Wrong number of fields in cron expression {expression!r}; got {len(fields)}, expected 5")
    try:
        fields[4] = _crontab_weekdays(fields[4])
    except ValueError as exc:
        raise ValueError(f"{exc} in cron expression {expression!r}") from exc
    minute, hour, day, month, day_of_week = fields
    if day.startswith("*") or day_of_week.startswith("*"):
        return CronTrigger.from_crontab(" ".join(fields), timezone=timezone)
    return OrTrigger(
        [
            CronTrigger.from_crontab(f"{minute} {hour} {day} {month} *", timezone=timezone),
            CronTrigger.from_crontab(f"{minute} {hour} * {month} {day_of_week}", timezone=timezone),
        ]
    )


def trigger_timezone(trigger: Trigger) -> tzinfo:
    if isinstance(trigger, OrTrigger):
        trigger = trigger.triggers[0]
    return trigger.timezone


def next_fire_time(trigger: Trigger, now: Optional[datetime] = None) -> Optional[datetime]:
    """First occurrence at or after ``now``, rounded up to the next whole second."""
    now = now or datetime.now(trigger_timezone(trigger))
    return trigger.get_next_fire_time(None, now)


@dataclass
class ScheduledJob:
    name: str
    expression: str
    trigger: Trigger
    task: TaskFactory
    last_fire: Optional[datetime] = None
    runs: int = 0
    runner: Optional["asyncio.Task[None]"] = None


class CronScheduler:
    def __init__(self, *, timezone: Union[str, tzinfo, None] = None) -> None:
        self._timezone = timezone
        self._jobs: List[ScheduledJob] = []
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def jobs(self) -> List[ScheduledJob]:
        return list(self._jobs)

    @property
    def running(self) -> bool:
        return self._stop_event is not None and not self._stop_event.is_set()

    def schedule(self, expression: str, task: TaskFactory, *, name: Optional[str] = None) -> ScheduledJob:
        job = ScheduledJob(
            name=name or getattr(task, "__name__", "job"),
            expression=expression,
            trigger=build_trigger(expression, self._timezone),
            task=task,
        )
        self._jobs.append(job)
        if self.running:
            self._spawn(job)
        return job

    def start(self) -> None:
        """Start every scheduled job; must be called from the running event loop."""
        if self.running:
            return
        self._stop_event = asyncio.Event()
        for job in self._jobs:
            self._spawn(job)

    async def stop(self) -> None:
        """Prevent further runs and wait for in-flight runs to finish."""
        if self._stop_event is None:
            return
        self._stop_event.set()
        runners = [job.runner for job in self._jobs if job.runner is not None]
        if runners:
            await asyncio.gather(*runners, return_exceptions=True)
        for job in self._jobs:
            job.runner = None

    def _spawn(self, job: ScheduledJob) -> None:
        job.runner = asyncio.get_running_loop().create_task(self._run_job(job), name=f"cron:{job.name}")

    def _next_fire(self, job: ScheduledJob) -> Optional[datetime]:
        now = datetime.now(trigger_timezone(job.trigger))
        if job.last_fire is not None and now <= job.last_fire:
            now = job.last_fire + timedelta(microseconds=1)
        return next_fire_time(job.trigger, now)

    async def _run_job(self, job: ScheduledJob) -> None:
        stop = self._stop_event
        assert stop is not None
        while not stop.is_set():
            fire_at = self._next_fire(job)
            if fire_at is None:
                LOGGER.warning("job %s has no further occurrences", job.name)
                return
            delay = max(0.0, fire_at.timestamp() - time.time())
            LOGGER.debug("job %s next run at %s", job.name, fire_at.isoformat())
            try:
                await asyncio.wait_for(stop.wait(), timeout=delay)
                return
            except asyncio.TimeoutError:
                pass
            job.last_fire = fire_at
            job.runs += 1
            try:
                await job.task()
            except Exception:
                LOGGER.exception("job %s failed", job.name)
