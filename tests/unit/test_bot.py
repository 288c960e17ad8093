"""Unit tests for the chat command front end."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from publish_queue.bot import PublishBot, parse_command
from publish_queue.errors import InvalidPostUrlError, QueueClearedError, RetriesExhaustedError
from publish_queue.integrations.telegram import TelegramBotApi
from publish_queue.service import PublishService, Submission

LINK = "https://x.com/user/status/123"


def message(text, chat_id=100, user_id=7, message_id=1):
    return {
        "update_id": 1,
        "message": {
            "message_id": message_id,
            "text": text,
            "chat": {"id": chat_id},
            "from": {"id": user_id},
        },
    }


@pytest.fixture
def api():
    api = MagicMock(spec=TelegramBotApi)
    api.send_message = AsyncMock()
    return api


@pytest.fixture
def service():
    service = MagicMock(spec=PublishService)
    service.submit_text = AsyncMock()
    service.clear_queue = AsyncMock(return_value=3)
    service.queue_status = AsyncMock(return_value=[])
    return service


@pytest.fixture
def bot(api, service):
    return PublishBot(api, service)


def replies(api):
    return [call.args[1] for call in api.send_message.call_args_list]


def make_submission(job_id=1):
    return Submission(job_id, asyncio.get_running_loop().create_future())


@pytest.mark.parametrize(
    "text,expected",
    [
        ("/post", ("post", "")),
        ("/post@my_bot link text", ("post", "link text")),
        ("/QUEUE_STATUS", ("queue_status", "")),
        ("hello", None),
    ],
)
def test_parse_command(text, expected):
    assert parse_command(text) == expected


@pytest.mark.asyncio
async def test_post_then_link_submits(bot, api, service):
    submission = make_submission(5)
    service.submit_text.return_value = submission

    await bot.handle_update(message("/post"))
    await bot.handle_update(message(f"caption {LINK}", message_id=2))

    service.submit_text.assert_awaited_once_with(requester_id="7", text=f"caption {LINK}")
    assert replies(api)[-1] == "⏳ Queued as job #5"

    submission.result.set_result(None)
    await asyncio.gather(*bot._background)
    assert replies(api)[-1] == "✅ Posted to the channel"


@pytest.mark.asyncio
async def test_text_without_open_request_is_ignored(bot, service):
    await bot.handle_update(message(f"caption {LINK}"))

    service.submit_text.assert_not_awaited()


@pytest.mark.asyncio
async def test_invalid_link_keeps_request_open(bot, api, service):
    service.submit_text.side_effect = [InvalidPostUrlError("nope"), make_submission()]

    await bot.handle_update(message("/post nope"))
    assert replies(api)[-1].startswith("❌")

    await bot.handle_update(message(LINK))
    assert service.submit_text.await_count == 2
    assert replies(api)[-1] == "⏳ Queued as job #1"


@pytest.mark.asyncio
async def test_failed_job_is_reported(bot, api, service):
    submission = make_submission(9)
    service.submit_text.return_value = submission

    await bot.handle_update(message(f"/post {LINK}"))
    submission.result.set_exception(RetriesExhaustedError(9, 3, "boom"))
    await asyncio.gather(*bot._background)

    assert replies(api)[-1].startswith("❌ Job #9 failed")


@pytest.mark.asyncio
async def test_cleared_job_is_reported(bot, api, service):
    submission = make_submission(4)
    service.submit_text.return_value = submission

    await bot.handle_update(message(f"/post {LINK}"))
    submission.result.set_exception(QueueClearedError(4))
    await asyncio.gather(*bot._background)

    assert replies(api)[-1] == "🗑️ Job #4 was removed from the queue"


@pytest.mark.asyncio
async def test_clear_queue_in_group_chat_replies(bot, api, service):
    await bot.handle_update(message("/clear_queue", chat_id=100, user_id=7))

    service.clear_queue.assert_awaited_once_with("7")
    assert replies(api) == ["🗑️ Queue cleared. Jobs removed: 3"]


@pytest.mark.asyncio
async def test_queue_status_in_private_chat_relies_on_notifier(bot, api, service):
    await bot.handle_update(message("/queue_status", chat_id=7, user_id=7))

    service.queue_status.assert_awaited_once_with("7")
    assert replies(api) == []


@pytest.mark.asyncio
async def test_reply_errors_are_swallowed(bot, api, service):
    api.send_message.side_effect = RuntimeError("blocked by user")

    await bot.handle_update(message("/post"))


@pytest.mark.asyncio
async def test_run_polls_until_shutdown(bot, api, service):
    shutdown = asyncio.Event()
    api.get_me = AsyncMock(return_value={"username": "publisher_bot"})

    async def get_updates(offset, timeout):
        shutdown.set()
        return [message("/clear_queue")]

    api.get_updates = AsyncMock(side_effect=get_updates)

    await asyncio.wait_for(bot.run(shutdown), timeout=1)

    service.clear_queue.assert_awaited_once()
    assert bot._offset == 2
