#!/usr/bin/env python3
"""
Timer trigger for the summarizer.

`run_poll` is one timer invocation: fetch up to 100 unread entries from
Miniflux and run them through the pipeline in best-effort mode. The
`PollScheduler` repeats it either at fixed times of day (SCHEDULE_TIMES, in
SCHEDULER_TIMEZONE) or every POLL_INTERVAL_MINUTES. Nothing carries over from
one run to the next.
"""

import asyncio
from datetime import datetime, time, timedelta, timezone
from time import monotonic
from zoneinfo import ZoneInfo
from typing import Any, Awaitable, Callable, Dict, List, Optional

from config import Config, get_logger, load_config
from errors import FeedSourceError, InvalidPayloadError
from miniflux_client import MinifluxClient, UNREAD_ENTRIES_LIMIT
from models import BatchMode, BatchReport
from summarizer import EntryProcessor, SummarizeFn, resolve_system_prompt
from telemetry import report_attributes, trace_span

logger = get_logger("scheduler")


async def _poll_with_client(config: Config, client: Any, summarize: Optional[SummarizeFn]) -> BatchReport:
    try:
        entries = await client.get_unread_entries(UNREAD_ENTRIES_LIMIT)
    except (FeedSourceError, InvalidPayloadError) as e:
        logger.error(f"Failed to fetch unread entries; ending this run: {e}")
        return BatchReport()
    # Prompt file read stays off the event loop
    system_prompt = await asyncio.to_thread(resolve_system_prompt, config.prompt_path)
    processor = EntryProcessor(config, client, summarize=summarize, system_prompt=system_prompt)
    return await processor.process(entries, mode=BatchMode.BEST_EFFORT)


@trace_span("poll.run", tracer_name="scheduler", attr_from_result=report_attributes)
async def run_poll(config: Config, feed_client: Any = None, summarize: Optional[SummarizeFn] = None) -> BatchReport:
    """Run one timer-triggered batch.

    Args:
        config: Snapshot for this run.
        feed_client: Optional Miniflux client; a fresh one is opened and closed otherwise.
        summarize: Optional replacement for the chat-completion call.
    """
    if feed_client is not None:
        return await _poll_with_client(config, feed_client, summarize)
    async with MinifluxClient(config.miniflux, timeout=config.http_timeout) as client:
        return await _poll_with_client(config, client, summarize)


class ScheduleEntry:
    """Represents a single scheduled time of day."""

    def __init__(self, time_str: str):
        """Initialize schedule entry from time string.

        Raises:
            ValueError: If time format is invalid
        """
        self.time_str = time_str
        self.time = self._parse_time(time_str)

    def _parse_time(self, time_str: str) -> time:
        """Parse "HH:MM" / "H:MM" into a time object."""
        clean_time = str(time_str).strip().strip('"\'')
        parts = clean_time.split(':')
        if len(parts) != 2:
            raise ValueError(f"Invalid time format '{time_str}': expected HH:MM")
        try:
            hour = int(parts[0])
            minute = int(parts[1])
        except ValueError as e:
            raise ValueError(f"Invalid time format '{time_str}': {e}") from e
        if not (0 <= hour <= 23):
            raise ValueError(f"Invalid time format '{time_str}': hour must be 0-23")
        if not (0 <= minute <= 59):
            raise ValueError(f"Invalid time format '{time_str}': minute must be 0-59")
        return time(hour=hour, minute=minute)

    def next_occurrence(self, from_time: Optional[datetime] = None, tz=None) -> datetime:
        """Get the next occurrence of this time (strictly after `from_time`) as a UTC datetime."""
        if tz is None:
            tz = timezone.utc
        if from_time is None:
            from_time = datetime.now(timezone.utc)
        ref_local = from_time.astimezone(tz)
        candidate_local = datetime.combine(ref_local.date(), self.time, tzinfo=tz)
        if candidate_local <= ref_local:
            candidate_local = candidate_local + timedelta(days=1)
        return candidate_local.astimezone(timezone.utc)

    def __repr__(self) -> str:
        return f"ScheduleEntry({self.time_str})"


class PollScheduler:
    """Runs the poll trigger repeatedly."""

    def __init__(self, config: Config, poll: Optional[Callable[[], Awaitable[Any]]] = None):
        self.config = config
        self.poll = poll or self._poll_with_fresh_config
        self.interval = timedelta(minutes=config.poll_interval_minutes)

        self.schedule_timezone_name = config.scheduler_timezone or "UTC"
        try:
            self.schedule_timezone = ZoneInfo(self.schedule_timezone_name)
        except (KeyError, ValueError):
            logger.warning(f"Invalid timezone '{self.schedule_timezone_name}', falling back to UTC")
            self.schedule_timezone_name = "UTC"
            self.schedule_timezone = timezone.utc

        self.schedule_entries: List[ScheduleEntry] = []
        for time_str in config.schedule_times:
            try:
                self.schedule_entries.append(ScheduleEntry(time_str))
            except ValueError as e:
                logger.error(f"Ignoring schedule entry: {e}")
        if self.schedule_entries:
            times_str = ", ".join(entry.time_str for entry in self.schedule_entries)
            logger.info(f"Scheduled times ({self.schedule_timezone_name}): {times_str}")
        else:
            logger.info(f"Polling every {config.poll_interval_minutes} minutes")

    async def _poll_with_fresh_config(self) -> BatchReport:
        # Each run gets its own snapshot so credential changes apply without a restart
        return await run_poll(load_config().validate())

    def get_next_run_time(self, from_time: Optional[datetime] = None) -> datetime:
        """Earliest configured time of day after `from_time`, or `from_time + interval`."""
        if from_time is None:
            from_time = datetime.now(timezone.utc)
        if self.schedule_entries:
            return min(entry.next_occurrence(from_time, self.schedule_timezone) for entry in self.schedule_entries)
        return from_time + self.interval

    def seconds_until_next_run(self, from_time: Optional[datetime] = None) -> float:
        if from_time is None:
            from_time = datetime.now(timezone.utc)
        return max(0.0, (self.get_next_run_time(from_time) - from_time).total_seconds())

    def get_schedule_status(self) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        next_run = self.get_next_run_time(now)
        return {
            'current_time': now.isoformat(),
            'schedule_times': [entry.time_str for entry in self.schedule_entries],
            'schedule_timezone': self.schedule_timezone_name,
            'interval_minutes': None if self.schedule_entries else self.config.poll_interval_minutes,
            'next_run_time': next_run.isoformat(),
            'minutes_until_next_run': round((next_run - now).total_seconds() / 60, 1),
        }

    @trace_span("scheduler.run", tracer_name="scheduler", attr_from_result=lambda ok: {"poll.succeeded": ok})
    async def run_once(self) -> bool:
        """Run one poll; errors are logged and reported as False so the loop keeps going."""
        start = monotonic()
        try:
            report = await self.poll()
        except Exception as e:
            logger.error(f"Scheduled poll run failed after {monotonic() - start:.1f}s: {e!r}")
            return False
        counts = report.counts() if isinstance(report, BatchReport) else {}
        logger.info(f"Scheduled poll run completed in {monotonic() - start:.1f}s: {counts}")
        return True

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Loop until cancelled or `stop_event` is set."""
        stop_event = stop_event or asyncio.Event()
        status = self.get_schedule_status()
        logger.info(
            f"Scheduler started ({status['schedule_timezone']}): next poll at {status['next_run_time']}, "
            f"in {status['minutes_until_next_run']} minutes"
        )
        if self.config.scheduler_run_immediately:
            logger.info("Running poll immediately on startup (SCHEDULER_RUN_IMMEDIATELY=true)")
            await self.run_once()

        while not stop_event.is_set():
            delay = self.seconds_until_next_run()
            logger.info(f"Sleeping {delay / 60:.1f} minutes until next poll")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
                break
            except asyncio.TimeoutError:
                pass
            except asyncio.CancelledError:
                logger.info("Scheduler cancelled - shutting down")
                raise
            await self.run_once()
        logger.info("Scheduler stopped")
