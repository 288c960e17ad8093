"""Telegram chat commands for submitting posts and managing the queue."""

import asyncio
import logging
import re
from typing import Any, Dict, Optional, Set, Tuple

from publish_queue.errors import (
    InvalidPostUrlError,
    PublishQueueError,
    QueueClearedError,
    SchedulerStoppedError,
)
from publish_queue.integrations.telegram import TelegramBotApi, format_queue_status
from publish_queue.service import PublishService, Submission

COMMAND_RE = re.compile(r"^/(\w+)(?:@\w+)?\s*(.*)$", re.DOTALL)


def parse_command(text: str) -> Optional[Tuple[str, str]]:
    """Return ``(command, rest)`` for ``/command[@bot] rest`` text, else None."""
    match = COMMAND_RE.match((text or "").strip())
    if not match:
        return None
    return match.group(1).lower(), match.group(2).strip()


class PublishBot:
    """
    Long-polling chat front end.

    ``/post`` opens a request for the chat and user; the next text message
    with a Twitter/X link is submitted. ``/post <link> text`` submits at once.
    ``/clear_queue`` and ``/queue_status`` act on the whole queue.
    """

    def __init__(
        self,
        api: TelegramBotApi,
        service: PublishService,
        logger: Optional[logging.Logger] = None,
        poll_timeout: int = 25,
    ):
        self.api = api
        self.service = service
        self.logger = logger or logging.getLogger(__name__)
        self.poll_timeout = poll_timeout
        self._awaiting_post: Set[str] = set()
        self._background: Set[asyncio.Task] = set()
        self._offset: Optional[int] = None

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Poll for updates until ``shutdown_event`` is set."""
        me = await self.api.get_me()
        self.logger.info(f"Bot authorized as @{me.get('username')}")

        while not shutdown_event.is_set():
            try:
                updates = await self.api.get_updates(self._offset, self.poll_timeout)
                for update in updates:
                    self._offset = update["update_id"] + 1
                    await self.handle_update(update)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.logger.error(f"Error in bot polling loop: {str(e)}", exc_info=True)
                await asyncio.sleep(5)

        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    async def handle_update(self, update: Dict[str, Any]) -> None:
        message = update.get("message") or {}
        text = message.get("text")
        if not text:
            return

        chat_id = str((message.get("chat") or {}).get("id", ""))
        user_id = str((message.get("from") or {}).get("id", ""))
        message_id = message.get("message_id")
        key = f"{chat_id}:{user_id}"

        command = parse_command(text)
        if command is not None:
            name, rest = command
            if name == "post":
                if rest:
                    await self._submit(key, chat_id, user_id, message_id, rest)
                else:
                    self._awaiting_post.add(key)
                    await self._reply(
                        chat_id,
                        "Send the Twitter/X post link and the caption in one message",
                        message_id,
                    )
            elif name == "clear_queue":
                await self._clear_queue(chat_id, user_id, message_id)
            elif name == "queue_status":
                await self._queue_status(chat_id, user_id, message_id)
            return

        if key in self._awaiting_post:
            await self._submit(key, chat_id, user_id, message_id, text)

    async def _submit(self, key: str, chat_id: str, user_id: str, message_id: Optional[int], text: str) -> None:
        try:
            submission = await self.service.submit_text(requester_id=user_id, text=text)
        except InvalidPostUrlError:
            # Keep the request open so the user can resend a correct link
            self._awaiting_post.add(key)
            await self._reply(chat_id, "❌ That is not a valid Twitter/X post link", message_id)
            return
        except SchedulerStoppedError:
            self._awaiting_post.discard(key)
            await self._reply(chat_id, "❌ The publishing queue is unavailable", message_id)
            return
        except Exception as e:
            self.logger.error(f"Failed to submit post request: {e}", exc_info=True)
            self._awaiting_post.discard(key)
            await self._reply(chat_id, "❌ Unexpected error", message_id)
            return

        self._awaiting_post.discard(key)
        await self._reply(chat_id, f"⏳ Queued as job #{submission.job_id}", message_id)

        task = asyncio.create_task(self._report_result(chat_id, message_id, submission))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _report_result(self, chat_id: str, message_id: Optional[int], submission: Submission) -> None:
        try:
            await submission
        except QueueClearedError:
            await self._reply(chat_id, f"🗑️ Job #{submission.job_id} was removed from the queue", message_id)
        except PublishQueueError as e:
            await self._reply(chat_id, f"❌ Job #{submission.job_id} failed: {e}", message_id)
        else:
            await self._reply(chat_id, "✅ Posted to the channel", message_id)

    async def _clear_queue(self, chat_id: str, user_id: str, message_id: Optional[int]) -> None:
        try:
            count = await self.service.clear_queue(user_id)
        except Exception as e:
            self.logger.error(f"Failed to clear queue: {e}", exc_info=True)
            await self._reply(chat_id, "❌ Could not clear the queue", message_id)
            return
        if chat_id != user_id:
            await self._reply(chat_id, f"🗑️ Queue cleared. Jobs removed: {count}", message_id)

    async def _queue_status(self, chat_id: str, user_id: str, message_id: Optional[int]) -> None:
        try:
            summary = await self.service.queue_status(user_id)
        except Exception as e:
            self.logger.error(f"Failed to read queue status: {e}", exc_info=True)
            await self._reply(chat_id, "❌ Could not read the queue status", message_id)
            return
        if chat_id != user_id:
            await self._reply(chat_id, format_queue_status(summary, lambda value: value.isoformat()), message_id)

    async def _reply(self, chat_id: str, text: str, message_id: Optional[int] = None) -> None:
        try:
            await self.api.send_message(chat_id, text, reply_to_message_id=message_id)
        except Exception as e:
            self.logger.warning(f"Failed to reply in chat {chat_id}: {e}")
