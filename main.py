#!/usr/bin/env python3
"""
Miniflux AI summarizer entry point.

Modes:
  poll          fetch unread entries once and summarize them (timer trigger)
  serve         receive Miniflux webhooks (push trigger); --with-scheduler also polls
  scheduled     poll on the configured schedule
  check-config  print the sanitized configuration and exit non-zero if incomplete
"""

import argparse
import asyncio
import json
import signal
import sys

from config import get_logger, load_config
from errors import ConfigurationError
from scheduler import PollScheduler, run_poll
from telemetry import init_telemetry
from webhook import serve

logger = get_logger("main")


def _install_stop_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass


async def run_poll_mode() -> bool:
    config = load_config().validate()
    report = await run_poll(config)
    logger.info(f"Poll finished: {report.counts()}")
    return True


async def run_serve_mode(host: str | None, port: int | None, with_scheduler: bool) -> bool:
    config = load_config().validate(require_webhook=True)
    stop_event = asyncio.Event()
    _install_stop_handlers(stop_event)

    tasks = [asyncio.create_task(serve(config, host or config.webhook_host, port or config.webhook_port, stop_event))]
    if with_scheduler:
        tasks.append(asyncio.create_task(PollScheduler(config).run_forever(stop_event)))
    await asyncio.gather(*tasks)
    return True


async def run_scheduled_mode() -> bool:
    config = load_config().validate()
    stop_event = asyncio.Event()
    _install_stop_handlers(stop_event)
    await PollScheduler(config).run_forever(stop_event)
    return True


def check_config(require_webhook: bool) -> bool:
    config = load_config()
    print(json.dumps(config.summary(), indent=2, ensure_ascii=False))
    missing = config.missing_values(require_webhook=require_webhook)
    if missing:
        print(f"Missing: {', '.join(missing)}", file=sys.stderr)
        return False
    return True


def main():
    """Main entry point."""

    parser = argparse.ArgumentParser(description='Summarize Miniflux entries with an OpenAI-compatible model')
    parser.add_argument('mode', choices=['poll', 'serve', 'scheduled', 'check-config'],
                        help='Operation mode')
    parser.add_argument('--host', type=str, help='Webhook bind address (serve mode)')
    parser.add_argument('--port', type=int, help='Webhook port (serve mode)')
    parser.add_argument('--with-scheduler', action='store_true',
                        help='Also run the poll scheduler while serving webhooks')
    parser.add_argument('--require-webhook', action='store_true',
                        help='check-config: also require MINIFLUX_WEBHOOK_SECRET')

    args = parser.parse_args()

    if args.mode == 'check-config':
        sys.exit(0 if check_config(args.require_webhook) else 1)

    init_telemetry("miniflux-summarizer")
    try:
        if args.mode == 'poll':
            success = asyncio.run(run_poll_mode())
        elif args.mode == 'serve':
            success = asyncio.run(run_serve_mode(args.host, args.port, args.with_scheduler))
        else:
            success = asyncio.run(run_scheduled_mode())
        sys.exit(0 if success else 1)
    except ConfigurationError as e:
        logger.error(f"{e}")
        sys.exit(2)
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
