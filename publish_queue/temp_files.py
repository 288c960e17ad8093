"""Scratch storage for media downloaded while a job runs."""

import asyncio
import logging
import os
from typing import Iterable
from uuid import uuid4

logger = logging.getLogger(__name__)


class TempFileManager:
    """Allocates and releases scratch file paths under one directory."""

    def __init__(self, temp_dir: str):
        self.temp_dir = os.path.abspath(temp_dir)

    def allocate(self, extension: str) -> str:
        """Return a fresh, unused path with the given extension."""
        os.makedirs(self.temp_dir, exist_ok=True)
        suffix = extension if extension.startswith(".") else f".{extension}"
        return os.path.join(self.temp_dir, f"{uuid4().hex}{suffix}")

    async def release(self, paths: Iterable[str]) -> None:
        """Delete scratch files. Never raises; missing files are ignored."""
        for path in paths:
            try:
                await asyncio.to_thread(os.remove, path)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning(f"Failed to remove scratch file {path}: {e}")
