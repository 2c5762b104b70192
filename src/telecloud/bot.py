"""Operator bot: inbound message dispatch and long-running actions.

:class:`BotApp` long-polls every bot identity in the :class:`ClientPool`,
drops messages from chats that are not authorised, routes the rest to the
:class:`ConversationStateMachine` and runs the upload and restore actions it
signals as background tasks. Attachments sent to the bot are forwarded to
every registered storage channel.

The app owns no signal handling; the process harness calls
:meth:`BotApp.shutdown` when it is time to stop.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Callable
from pathlib import Path
from typing import Any

from telecloud.constants import SHUTDOWN_DEADLINE_SECONDS
from telecloud.conversation import (
    BotResponse,
    ConversationAction,
    ConversationStateMachine,
)
from telecloud.models import InboundEvent, TelecloudConfig
from telecloud.scanner import scan_directory
from telecloud.upload.client import parse_update
from telecloud.upload.exceptions import TransferError
from telecloud.upload.pool import ChannelRegistry, ClientPool
from telecloud.upload.restore import RestoreEngine
from telecloud.upload.retry import RetryPolicy
from telecloud.upload.scheduler import UploadScheduler
from telecloud.upload.state import MetadataStore

logger = logging.getLogger(__name__)

# Seconds to wait before polling again after a failed getUpdates
POLL_ERROR_DELAY_SECONDS = 5.0

UPLOAD_COMPLETE_TEXT = "✅ Upload complete."
UPLOAD_FAILED_TEXT = "❌ Upload failed."
UPLOAD_INTERRUPTED_TEXT = "⚠️ Upload interrupted."
RESTORE_STARTING_TEXT = "⏳ Starting restore..."
RESTORE_COMPLETE_TEXT = "✅ Restore complete."
RESTORE_FAILED_TEXT = "❌ Restore failed."
ALREADY_RUNNING_TEXT = "⏳ {action} is already running."
NO_CHANNELS_TEXT = "⚠️ No storage channels registered yet."
FILE_FORWARDED_TEXT = "📤 File sent to cloud storage channel(s)."
FORWARD_FAILED_TEXT = "❌ Failed to forward file."


class BotApp:
    """Wires the conversation, upload scheduler and restore engine to chat.

    Usage::

        app = BotApp(config, pool, store)
        await app.start()
        ...
        await app.shutdown()

    Args:
        config: Validated configuration.
        pool: Bot identities; each one is polled for inbound messages.
        store: Loaded metadata store shared by upload and restore.
        scanner: Returns candidate paths under a root (injectable for tests).
    """

    def __init__(
        self,
        config: TelecloudConfig,
        pool: ClientPool[Any],
        store: MetadataStore,
        *,
        scanner: Callable[..., list[Path]] = scan_directory,
    ) -> None:
        self.config = config
        self.pool = pool
        self.store = store
        self.channels = ChannelRegistry(config.storage_channel_ids)
        self.conversation = ConversationStateMachine(self.channels)
        self._authorized = set(config.authorized_sessions)
        self._scanner = scanner

        self.scheduler: UploadScheduler | None = None
        self._upload_task: asyncio.Task[None] | None = None
        self._restore_task: asyncio.Task[None] | None = None
        self._poll_tasks: list[asyncio.Task[None]] = []
        self._stopping = asyncio.Event()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start one long-poll loop per bot identity."""
        self._stopping.clear()
        for index, client in enumerate(self.pool):
            task = asyncio.create_task(self._poll_loop(client), name=f"poll-{index}")
            self._poll_tasks.append(task)
        logger.info(
            "Bot started: %d identities, %d storage channel(s), %d authorised chat(s)",
            len(self.pool),
            len(self.channels),
            len(self._authorized),
        )

    async def wait_closed(self) -> None:
        await self._stopping.wait()

    async def shutdown(self, deadline: float = SHUTDOWN_DEADLINE_SECONDS) -> None:
        """Stop polling, drain running work up to *deadline*, flush, close clients."""
        if self._stopping.is_set():
            return
        self._stopping.set()
        logger.info("🛑 Gracefully shutting down...")

        for task in self._poll_tasks:
            task.cancel()
        await asyncio.gather(*self._poll_tasks, return_exceptions=True)
        self._poll_tasks = []

        if self.scheduler is not None and self.scheduler.is_running:
            await self.scheduler.shutdown(deadline)
        for task in (self._upload_task, self._restore_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        await self.store.flush()
        await self.pool.close()
        logger.info("Shutdown complete")

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def _poll_loop(self, client: Any) -> None:
        offset: int | None = None
        while not self._stopping.is_set():
            try:
                updates = await client.get_updates(offset=offset)
            except TransferError as exc:
                logger.warning("Polling failed for bot %s: %s", client.identifier, exc)
                await asyncio.sleep(POLL_ERROR_DELAY_SECONDS)
                continue

            for update in updates:
                offset = update["update_id"] + 1
                event = parse_update(update)
                if event is None:
                    continue
                try:
                    await self.dispatch(event, client)
                except Exception:
                    logger.exception("Error in message handler for chat %s", event.session_id)

    async def dispatch(self, event: InboundEvent, client: Any | None = None) -> None:
        """Route one inbound message; replies go out through *client*."""
        if event.session_id not in self._authorized:
            logger.debug("Ignoring unauthorized chat %s", event.session_id)
            return

        client = client if client is not None else self.pool.primary

        if event.forwarded_from_channel is not None:
            response = self.conversation.handle_forwarded_message(
                event.session_id, event.forwarded_from_channel
            )
            await self._reply(client, event.session_id, response)
            return

        if event.text is not None:
            response = self.conversation.handle_message(event.session_id, event.text)
            await self._reply(client, event.session_id, response)
            if response.action is ConversationAction.UPLOAD:
                await self.start_upload(event.session_id)
            elif response.action is ConversationAction.RESTORE:
                await self.start_restore(event.session_id)
            return

        if event.attachment is not None:
            await self.forward_attachment(event, client)

    async def _reply(self, client: Any, chat_id: int, response: BotResponse) -> None:
        await client.send_text(
            chat_id,
            response.text,
            parse_mode=response.parse_mode,
            reply_markup=response.reply_markup(),
        )

    async def notify(self, chat_id: int | None, text: str) -> None:
        """Send *text* through the primary identity; failures are logged."""
        if chat_id is None:
            return
        try:
            await self.pool.primary.send_text(chat_id, text)
        except Exception as exc:
            logger.error("Failed to send message to %s: %s", chat_id, exc)

    async def _notify_admin(self, text: str) -> None:
        await self.notify(self.config.report_chat_id, text)

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    async def forward_attachment(self, event: InboundEvent, client: Any) -> None:
        """Copy an attachment to every storage channel.

        The stored file id is only valid for the bot that received it, so
        the receiving identity does the sending.
        """
        attachment = event.attachment
        if attachment is None:
            return
        channels = self.channels.snapshot()
        if not channels:
            await self.notify(event.session_id, NO_CHANNELS_TEXT)
            return

        try:
            for channel_id in channels:
                await client.send_media(attachment.kind, channel_id, attachment.file_id)
        except Exception as exc:
            logger.error("Error forwarding file to channel: %s", exc)
            await self.notify(event.session_id, FORWARD_FAILED_TEXT)
            return
        await self.notify(event.session_id, FILE_FORWARDED_TEXT)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def start_upload(self, chat_id: int) -> None:
        if self._upload_task is not None and not self._upload_task.done():
            await self.notify(chat_id, ALREADY_RUNNING_TEXT.format(action="Upload"))
            return
        self._upload_task = asyncio.create_task(self.run_upload(chat_id), name="upload")

    async def start_restore(self, chat_id: int) -> None:
        if self._restore_task is not None and not self._restore_task.done():
            await self.notify(chat_id, ALREADY_RUNNING_TEXT.format(action="Restore"))
            return
        self._restore_task = asyncio.create_task(self.run_restore(chat_id), name="restore")

    async def run_upload(self, chat_id: int) -> dict[str, int] | None:
        """Scan the drive and upload every new file; always acknowledges."""
        channels = self.channels.snapshot()
        if not channels:
            await self.notify(chat_id, NO_CHANNELS_TEXT)
            return None

        try:
            root = self.config.scan_root
            paths = await asyncio.to_thread(
                self._scanner, root, self.config.scan_extensions
            )
            self.scheduler = UploadScheduler(
                self.pool,
                self.store,
                root=root,
                retry_policy=RetryPolicy(
                    max_attempts=self.config.max_attempts,
                    base_delay=self.config.retry_base_delay,
                    cap_delay=self.config.retry_cap_delay,
                ),
                notifier=self._notify_admin,
                report_interval=self.config.report_interval,
            )
            summary = await self.scheduler.run(
                paths, channels, self.config.effective_concurrency
            )
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Error during upload from drive")
            await self.notify(chat_id, UPLOAD_FAILED_TEXT)
            return None

        headline = UPLOAD_INTERRUPTED_TEXT if summary["skipped"] else UPLOAD_COMPLETE_TEXT
        await self.notify(
            chat_id,
            f"{headline}\n"
            f"Uploaded: {summary['uploaded']}, already uploaded: "
            f"{summary['already_uploaded']}, failed: {summary['failed']}, "
            f"not attempted: {summary['skipped']}",
        )
        return summary

    async def run_restore(self, chat_id: int) -> dict[str, int] | None:
        """Restore every recorded file; always acknowledges."""
        await self.notify(chat_id, RESTORE_STARTING_TEXT)
        try:
            engine = RestoreEngine(self.pool, self.store, self.config.restore_root)
            summary = await engine.restore_all()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Error during restore")
            await self.notify(chat_id, RESTORE_FAILED_TEXT)
            return None

        await self.notify(
            chat_id,
            f"{RESTORE_COMPLETE_TEXT}\n"
            f"Restored: {summary['restored']} of {summary['total']}, "
            f"failed: {summary['failed']}",
        )
        return summary
