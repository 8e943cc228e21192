#!/usr/bin/env python3
"""
Webhook trigger for the summarizer.

Miniflux POSTs a signed JSON body when new entries arrive. The handler checks
the method and the HMAC signature, ignores events other than new_entries and
feeds outside the whitelist, and runs the remaining entries through the
pipeline in fail-fast mode.
"""

import asyncio
from json import JSONDecodeError, loads
from typing import Any, List, Optional

from aiohttp import web

from config import Config, get_logger
from errors import BatchUpdateError, InvalidPayloadError
from miniflux_client import MinifluxClient
from models import BatchMode, Entry, WebhookPayload
from signature import SIGNATURE_HEADER, verify_signature
from summarizer import EntryProcessor, SummarizeFn, resolve_system_prompt
from telemetry import trace_span

logger = get_logger("webhook")

WEBHOOK_PATHS = ("/", "/webhook")


class WebhookHandler:
    """Request handler bound to one configuration snapshot."""

    def __init__(self, config: Config, feed_client: Any = None, summarize: Optional[SummarizeFn] = None):
        self.config = config
        self.feed_client = feed_client
        self.summarize = summarize
        self.system_prompt = resolve_system_prompt(config.prompt_path)

    def _cap_entries(self, entries: List[Entry]) -> List[Entry]:
        limit = self.config.webhook_max_entries
        if limit and len(entries) > limit:
            logger.warning(f"Webhook carried {len(entries)} entries; processing the first {limit}")
            return entries[:limit]
        return entries

    async def _process(self, entries: List[Entry]) -> None:
        if self.feed_client is not None:
            processor = EntryProcessor(
                self.config, self.feed_client, summarize=self.summarize, system_prompt=self.system_prompt
            )
            await processor.process(entries, mode=BatchMode.FAIL_FAST)
            return
        async with MinifluxClient(self.config.miniflux, timeout=self.config.http_timeout) as client:
            processor = EntryProcessor(self.config, client, summarize=self.summarize, system_prompt=self.system_prompt)
            await processor.process(entries, mode=BatchMode.FAIL_FAST)

    @trace_span(
        "webhook.handle",
        tracer_name="webhook",
        attr_from_args=lambda self, request: {"http.method": request.method, "http.path": request.path},
        attr_from_result=lambda response: {"http.status_code": response.status},
    )
    async def handle(self, request: web.Request) -> web.Response:
        if request.method != "POST":
            return web.Response(status=405, text="Method Not Allowed")

        payload = await request.read()
        signature = request.headers.get(SIGNATURE_HEADER)
        if not verify_signature(self.config.webhook_secret or "", payload, signature):
            logger.warning(f"Rejected webhook from {request.remote}: invalid signature")
            return web.Response(status=401, text="Invalid signature")

        try:
            webhook = WebhookPayload.from_dict(loads(payload))
        except (JSONDecodeError, UnicodeDecodeError, InvalidPayloadError) as e:
            logger.warning(f"Rejected webhook: invalid payload: {e}")
            return web.Response(status=400, text="Invalid payload")

        if webhook.event_type != "new_entries":
            logger.info(f"Ignoring webhook event {webhook.event_type!r}")
            return web.Response(text="Ignored non-new_entries event")

        site_url = webhook.feed.site_url if webhook.feed else None
        if not site_url or site_url not in self.config.whitelist:
            logger.info(f"Ignoring webhook for non-whitelisted feed {site_url!r}")
            return web.Response(text="Ignored non-whitelist feed")

        # Entries without their own feed belong to the payload's feed
        entries = self._cap_entries([entry.with_feed(webhook.feed) for entry in webhook.entries])
        logger.info(f"Webhook delivered {len(entries)} new entries from {site_url}")
        try:
            await self._process(entries)
        except BatchUpdateError as e:
            # Per-entry failures are not reported to Miniflux
            logger.error(f"Webhook batch from {site_url} finished with failures: {e}")
        return web.Response(text="Webhook handled")


def create_app(config: Config, feed_client: Any = None, summarize: Optional[SummarizeFn] = None) -> web.Application:
    """Build the aiohttp application serving the webhook endpoint."""
    handler = WebhookHandler(config, feed_client=feed_client, summarize=summarize)
    app = web.Application()
    for route_path in WEBHOOK_PATHS:
        app.router.add_route("*", route_path, handler.handle)
    return app


async def serve(config: Config, host: str, port: int, stop_event: asyncio.Event) -> None:
    """Serve the webhook endpoint until `stop_event` is set."""
    runner = web.AppRunner(create_app(config))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info(f"Listening for Miniflux webhooks on http://{host}:{port}")
    try:
        await stop_event.wait()
    finally:
        await runner.cleanup()
        logger.info("Webhook server stopped")
