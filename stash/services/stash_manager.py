import shutil
from pathlib import Path
from typing import Optional

import aiofiles.os

from stash import config
from stash.logger_config import setup_logger
from stash.services import path_resolver
from stash.services.id_allocator import IdAllocator
from stash.services.ingestion import IngestionPipeline
from stash.services.materializer import FilesystemMaterializer
from stash.services.quota_gate import QuotaGate
from stash.services.sweeper import FilesystemSweep, RetentionSweeper

logger = setup_logger()


class StashManager:
    """Owns the process-wide state: storage root, quota counter and id registry.

    Created once per application and handed to the request handlers, which
    never touch module globals.
    """

    def __init__(
        self,
        storage_root: Path,
        max_write_bytes: int = config.MAX_WRITE_BYTES,
        interval_minutes: int = config.CLEAN_INTERVAL_MINUTES,
        max_age_minutes: int = config.MAX_AGE_MINUTES,
        sweep: Optional[FilesystemSweep] = None,
    ):
        self.storage_root = Path(storage_root).absolute()
        self.quota = QuotaGate(max_write_bytes)
        self.ids = IdAllocator()
        self.materializer = FilesystemMaterializer(self.storage_root)
        self.pipeline = IngestionPipeline(self.quota, self.materializer)
        self.sweeper = RetentionSweeper(
            self.storage_root,
            self.quota,
            interval_minutes=interval_minutes,
            max_age_minutes=max_age_minutes,
            sweep=sweep,
        )

    async def initialize(self):
        """Create the storage root and report the space it has to work with."""
        logger.info("Initializing stash manager...")

        await aiofiles.os.makedirs(self.storage_root, exist_ok=True)
        logger.debug(f"Storage root created/verified: {self.storage_root}")

        # Two full quota cycles can be on disk before the oldest is swept
        _, _, free = shutil.disk_usage(str(self.storage_root))
        required_space = self.quota.max_bytes * 2
        if free < required_space:
            logger.warning(
                f"Only {free / (1024*1024*1024):.2f} GB free, "
                f"worst case usage is {required_space / (1024*1024*1024):.2f} GB"
            )

    def resolve(self, request_path: str) -> Path:
        return path_resolver.resolve(self.storage_root, request_path)

    def allocate_id(self) -> str:
        return self.ids.allocate()

    async def store(self, content_type: str, body, path: Path) -> int:
        return await self.pipeline.ingest(content_type, body, path)

    def start_sweeper(self) -> None:
        self.sweeper.start()

    async def stop_sweeper(self) -> None:
        await self.sweeper.stop()
