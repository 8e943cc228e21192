#!/usr/bin/env python3
"""
AI summarizer for Miniflux entries.

This module holds the entry processing pipeline shared by the poll and webhook
triggers: filter each entry, ask the chat-completion endpoint for a short
summary, and write the summary back in front of the original content. At most
MAX_CONCURRENT_TASKS entries are summarized or updated at the same time.
"""

from asyncio import Semaphore, create_task, gather
from functools import partial
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import yaml

from config import Config, get_logger
from errors import BatchUpdateError, FeedSourceError, SummarizationError
from llm_client import chat_completion
from models import BatchMode, BatchReport, Entry, EntryOutcome, EntryResult
from telemetry import report_attributes, trace_span

logger = get_logger("summarizer")

MAX_CONCURRENT_TASKS = 5

# Entries whose content starts with this were already summarized
SUMMARY_MARKER_PREFIX = "<pre"
SUMMARY_HEADER = '<pre style="white-space: pre-wrap;"><code>\n💡AI 摘要：\n'
SUMMARY_FOOTER = '</code></pre><hr><br />'

DEFAULT_SYSTEM_PROMPT = (
    "Please summarize the content of the article under 150 words in Chinese. "
    "Do not add any additional Character、markdown language to the result text. "
    "请用不超过150个汉字概括文章内容。结果文本中不要添加任何额外的字符、Markdown语言。"
)
USER_PROMPT_PREFIX = "The following is the input content:\n---\n "

SummarizeFn = Callable[[List[Dict[str, str]]], Awaitable[str]]


def is_summarized(content: str) -> bool:
    return content.startswith(SUMMARY_MARKER_PREFIX)


def wrap_summary(summary: str, content: str) -> str:
    """Prepend the marker block holding `summary`; `content` is kept verbatim."""
    return SUMMARY_HEADER + summary + SUMMARY_FOOTER + content


def build_messages(system_prompt: str, content: str) -> List[Dict[str, str]]:
    return [
        {"role": "system", "content": system_prompt},
        {"role": "user", "content": USER_PROMPT_PREFIX + content},
    ]


def load_prompts(prompt_path: str) -> Dict[str, str]:
    """Load prompts from a YAML file; a missing or broken file yields an empty mapping."""
    try:
        with open(prompt_path, 'r', encoding='utf-8') as f:
            prompts = yaml.safe_load(f)
    except FileNotFoundError:
        logger.warning(f"Prompt configuration file not found at {prompt_path}; using built-in prompt")
        return {}
    except PermissionError:
        logger.error(f"No permission to read prompt configuration file at {prompt_path}")
        return {}
    except yaml.YAMLError as e:
        logger.error(f"Invalid YAML in prompt configuration file: {e}")
        return {}
    if not isinstance(prompts, dict):
        return {}
    return {str(k): str(v) for k, v in prompts.items() if isinstance(v, str)}


def resolve_system_prompt(prompt_path: str) -> str:
    """The `summary` prompt from `prompt_path`, or the built-in prompt."""
    return load_prompts(prompt_path).get("summary") or DEFAULT_SYSTEM_PROMPT


class EntryProcessor:
    """Summarizes and updates batches of entries for one invocation."""

    def __init__(
        self,
        config: Config,
        feed_client: Any,
        summarize: Optional[SummarizeFn] = None,
        max_concurrency: int = MAX_CONCURRENT_TASKS,
        system_prompt: Optional[str] = None,
    ):
        self.config = config
        self.feed_client = feed_client
        self.summarize: SummarizeFn = summarize or partial(
            chat_completion, config.openai, timeout=config.summarizer_http_timeout
        )
        self.max_concurrency = max_concurrency
        self.system_prompt = system_prompt or resolve_system_prompt(config.prompt_path)

    def check_eligibility(self, entry: Entry) -> Optional[EntryOutcome]:
        """Return the skip outcome for an ineligible entry, or None if it should be summarized."""
        if is_summarized(entry.content):
            return EntryOutcome.SKIPPED_ALREADY_SUMMARIZED
        site_url = entry.site_url
        if not site_url or site_url not in self.config.whitelist:
            return EntryOutcome.SKIPPED_NOT_WHITELISTED
        return None

    async def process_entry(self, entry: Entry) -> EntryResult:
        """Summarize one eligible entry and write the result back."""
        messages = build_messages(self.system_prompt, entry.content)
        try:
            summary = await self.summarize(messages)
        except SummarizationError as e:
            logger.warning(f"Summarization failed for entry {entry.id}: {e}")
            return EntryResult(entry.id, EntryOutcome.SUMMARIZATION_FAILED, str(e))

        if not summary or not summary.strip():
            logger.info(f"Empty summary for entry {entry.id}; leaving it untouched")
            return EntryResult(entry.id, EntryOutcome.SKIPPED_EMPTY_SUMMARY)

        try:
            await self.feed_client.update_entry(entry.id, wrap_summary(summary, entry.content))
        except FeedSourceError as e:
            logger.error(f"Failed to update entry {entry.id}: {e}")
            return EntryResult(entry.id, EntryOutcome.UPDATE_FAILED, str(e))

        logger.info(f"Summarized entry {entry.id} ({entry.site_url})")
        return EntryResult(entry.id, EntryOutcome.UPDATED)

    @trace_span(
        "process_entries",
        tracer_name="summarizer",
        attr_from_args=lambda self, entries, mode=BatchMode.BEST_EFFORT: {
            "entries.count": len(entries),
            "batch.mode": BatchMode(mode).value,
        },
        attr_from_result=report_attributes,
    )
    async def process(self, entries: Sequence[Entry], mode: BatchMode = BatchMode.BEST_EFFORT) -> BatchReport:
        """Process a batch with at most `max_concurrency` entries in flight.

        Results are in batch order. In FAIL_FAST mode a BatchUpdateError is
        raised after every task has finished if any update failed.
        """
        report = BatchReport()
        if not entries:
            logger.info("No entries to process")
            return report

        semaphore = Semaphore(self.max_concurrency)
        in_flight = 0

        async def process_with_semaphore(entry: Entry) -> EntryResult:
            nonlocal in_flight
            skip = self.check_eligibility(entry)
            if skip is not None:
                logger.debug(f"Skipping entry {entry.id}: {skip.value}")
                return EntryResult(entry.id, skip)
            async with semaphore:
                in_flight += 1
                report.peak_concurrency = max(report.peak_concurrency, in_flight)
                try:
                    return await self.process_entry(entry)
                finally:
                    in_flight -= 1

        # Tasks queue on the semaphore in creation order
        tasks = [create_task(process_with_semaphore(entry)) for entry in entries]
        outcomes = await gather(*tasks, return_exceptions=True)

        unexpected: Optional[BaseException] = None
        for entry, outcome in zip(entries, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(f"Unexpected error processing entry {entry.id}: {outcome!r}")
                unexpected = unexpected or outcome
                continue
            report.results.append(outcome)

        logger.info(
            f"Processed {len(entries)} entries: {report.counts()} "
            f"(peak concurrency {report.peak_concurrency}/{self.max_concurrency})"
        )
        if unexpected is not None:
            raise unexpected
        if mode == BatchMode.FAIL_FAST and report.failed:
            raise BatchUpdateError(report)
        return report
