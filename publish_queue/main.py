"""CLI entrypoint: runs the scheduler and the chat bot in one process."""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Optional

import asyncpg

from publish_queue.bot import PublishBot
from publish_queue.config import PublishQueueConfig
from publish_queue.executor import JobExecutor
from publish_queue.fastapi_router import create_publish_router
from publish_queue.integrations.telegram import (
    TelegramBotApi,
    TelegramChannelPublisher,
    TelegramUserNotifier,
)
from publish_queue.integrations.twitter import TwitterMediaFetcher
from publish_queue.router import ResultRouter
from publish_queue.scheduler import PublishScheduler
from publish_queue.service import PublishService
from publish_queue.store import JobStore
from publish_queue.temp_files import TempFileManager


def setup_logging():
    """Setup logging configuration."""
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def create_db_pool(config: PublishQueueConfig):
    """Create database connection pool."""
    return await asyncpg.create_pool(config.db_dsn, min_size=1, max_size=5)


def create_http_server(app: "PublishApp", host: str, port: int):
    """uvicorn server for the operator HTTP API."""
    import uvicorn
    from fastapi import FastAPI

    api = FastAPI(title="publish-queue")
    api.include_router(
        create_publish_router(lambda: app.service, auth_token=app.config.operator_token)
    )
    return uvicorn.Server(uvicorn.Config(api, host=host, port=port, log_config=None))


class PublishApp:
    """Wires the queue core to its collaborators."""

    def __init__(self, config: PublishQueueConfig, db_pool: asyncpg.Pool):
        self.config = config
        self.api = TelegramBotApi(config.telegram_bot_token, timeout=config.http_timeout_seconds)
        self.store = JobStore(db_pool)
        self.router = ResultRouter(TelegramUserNotifier(self.api))
        self.executor = JobExecutor(
            fetcher=TwitterMediaFetcher(
                config.twitter_bearer_token,
                proxy_url=config.twitter_proxy_url,
                timeout=config.http_timeout_seconds,
                rate_limit_grace_seconds=config.rate_limit_grace_seconds,
            ),
            publisher=TelegramChannelPublisher(self.api, config.telegram_target_channel_id),
            temp_files=TempFileManager(config.temp_dir),
            max_retries=config.max_retries,
            retry_increment_ms=config.retry_increment_ms,
            require_media=config.require_media,
        )
        self.scheduler = PublishScheduler(self.store, self.executor, self.router)
        self.service = PublishService(self.store, self.scheduler, self.router)
        self.bot = PublishBot(self.api, self.service)


async def run_publisher(
    config: Optional[PublishQueueConfig] = None,
    db_pool=None,
    logger: Optional[logging.Logger] = None,
    shutdown_event: Optional[asyncio.Event] = None,
    with_bot: bool = True,
    stop_timeout: Optional[float] = 60.0,
    http_host: str = "127.0.0.1",
    http_port: Optional[int] = None,
):
    """
    Run the publisher until shutdown or a fatal store error.

    Args:
        config: PublishQueueConfig instance. If None, will load from environment.
        db_pool: Database connection pool. If None, will create from config.
        logger: Logger instance. If None, will create default logger.
        shutdown_event: Optional asyncio.Event for graceful shutdown.
        with_bot: Also poll Telegram for chat commands.
        stop_timeout: Seconds to let an in-flight job finish on shutdown.
        http_host: Interface for the operator HTTP API.
        http_port: Serve the operator HTTP API on this port when set.
    """
    if config is None:
        config = PublishQueueConfig.from_env()

    if logger is None:
        logger = logging.getLogger(__name__)

    if shutdown_event is None:
        shutdown_event = asyncio.Event()

    db_pool_provided = db_pool is not None
    if db_pool is None:
        db_pool = await create_db_pool(config)

    app = PublishApp(config, db_pool)
    server = None
    server_task = None
    try:
        await app.scheduler.start()

        waiters = [
            asyncio.create_task(shutdown_event.wait()),
            asyncio.create_task(app.scheduler.wait_closed()),
        ]
        if with_bot:
            waiters.append(asyncio.create_task(app.bot.run(shutdown_event)))
        if http_port is not None:
            server = create_http_server(app, http_host, http_port)
            server_task = asyncio.create_task(server.serve())
            waiters.append(server_task)
            logger.info(f"Operator API listening on {http_host}:{http_port}")

        done, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        shutdown_event.set()
        if server is not None:
            server.should_exit = True
        for task in pending:
            if task is not server_task:
                task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            if not task.cancelled() and task.exception() is not None:
                raise task.exception()
    finally:
        if app.scheduler.running:
            await app.scheduler.stop(timeout=stop_timeout)
        if not db_pool_provided and db_pool:
            await db_pool.close()


def main():
    """Main entrypoint for the publisher."""
    setup_logging()
    logger = logging.getLogger(__name__)

    parser = argparse.ArgumentParser(description="Twitter/X to Telegram publish queue")
    parser.add_argument(
        "--no-bot",
        action="store_true",
        help="Only drain the queue; do not poll Telegram for chat commands",
    )
    parser.add_argument(
        "--stop-timeout",
        type=float,
        default=60.0,
        help="Seconds to let an in-flight job finish on shutdown (default: 60)",
    )
    parser.add_argument(
        "--http-port",
        type=int,
        default=None,
        help="Serve the operator HTTP API on this port (needs the server extra)",
    )
    parser.add_argument(
        "--http-host",
        default="127.0.0.1",
        help="Interface for the operator HTTP API (default: 127.0.0.1)",
    )

    args = parser.parse_args()

    try:
        config = PublishQueueConfig.from_env()
    except Exception as e:
        logger.error(f"Failed to load config: {e}")
        sys.exit(1)

    async def run():
        """Async main function."""
        shutdown_event = asyncio.Event()
        loop = asyncio.get_running_loop()

        def signal_handler(signum):
            logger.info(f"Received signal {signum}, shutting down...")
            shutdown_event.set()

        for signum in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(signum, signal_handler, signum)

        try:
            logger.info("Starting publisher...")
            await run_publisher(
                config=config,
                logger=logger,
                shutdown_event=shutdown_event,
                with_bot=not args.no_bot,
                stop_timeout=args.stop_timeout,
                http_host=args.http_host,
                http_port=args.http_port,
            )
        except Exception as e:
            logger.error(f"Fatal error in publisher: {e}", exc_info=True)
            sys.exit(1)

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
