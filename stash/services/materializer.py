import asyncio
import os
import shutil
from pathlib import Path
from typing import Optional

import aiofiles
import aiofiles.os

from stash.errors import FilesystemConflict
from stash.logger_config import setup_logger
from stash.services.path_resolver import is_jailed

logger = setup_logger()


class FilesystemMaterializer:
    """Turns a validated target path into an open, empty file.

    Uploads may reuse a logical path with a different type: a file at /a is
    replaced by a directory when /a/b is uploaded, and a directory at /a is
    replaced by a file when /a itself is uploaded.
    """

    def __init__(self, storage_root: Path):
        self.storage_root = Path(storage_root)

    def find_blocking_file(self, directory: Path) -> Optional[Path]:
        """Return the first path segment under the root that is not a directory."""
        try:
            relative = Path(directory).relative_to(self.storage_root)
        except ValueError:
            return None

        candidate = self.storage_root
        for part in relative.parts:
            candidate = candidate / part
            if not os.path.lexists(candidate):
                return None
            if not os.path.isdir(candidate):
                return candidate
        return None

    async def ensure_directory(self, directory: Path) -> None:
        """Create directory and its parents, removing one blocking file if needed."""
        logger.debug(f"Ensuring directories exist: {directory}")
        try:
            await aiofiles.os.makedirs(directory, exist_ok=True)
            return
        except (FileExistsError, NotADirectoryError) as e:
            blocking = await asyncio.to_thread(self.find_blocking_file, directory)
            if blocking is None:
                raise
            if not is_jailed(self.storage_root, blocking):
                raise FilesystemConflict(
                    f"Refusing to delete {blocking} outside the storage root",
                    {"path": str(blocking)},
                ) from e

            logger.info(f"Deleting existing file: {blocking}")
            await aiofiles.os.unlink(blocking)

        # Retry exactly once; anything failing now is fatal for the request
        await aiofiles.os.makedirs(directory, exist_ok=True)

    async def prepare(self, path: Path):
        """Open path for writing, creating or clearing whatever is in the way.

        Args:
            path: Absolute target path, already checked by the path resolver

        Returns:
            An aiofiles binary file opened in "wb" mode; the caller closes it
        """
        path = Path(path)
        logger.debug(f"Creating write stream for: {path}")

        await self.ensure_directory(path.parent)

        if await aiofiles.os.path.isdir(path):
            logger.info(f"Removing existing directory: {path}")
            await asyncio.to_thread(shutil.rmtree, path)
        # an existing regular file is truncated by "wb"

        return await aiofiles.open(path, "wb")
