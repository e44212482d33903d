import asyncio
import os
import shutil
import stat
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional

from stash.errors import SweepFailure
from stash.logger_config import setup_logger
from stash.services.quota_gate import QuotaGate

logger = setup_logger()


class FilesystemSweep(ABC):
    """Deletes regular files older than a threshold below a root directory."""

    @abstractmethod
    async def run(self, root: Path, max_age_minutes: int) -> None:
        """Delete aged files under root.

        Raises:
            SweepFailure: If the walk or any deletion failed
        """


class FindSweep(FilesystemSweep):
    """Bulk delete through `find -delete` in a child process."""

    def __init__(self, executable: str = "find"):
        self.executable = executable

    def command(self, root: Path, max_age_minutes: int) -> List[str]:
        return [self.executable, str(root), "-type", "f", "-mmin", f"+{max_age_minutes}", "-delete"]

    async def run(self, root: Path, max_age_minutes: int) -> None:
        cmd = self.command(root, max_age_minutes)
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise SweepFailure(f"Could not start {self.executable}: {e}", {"command": " ".join(cmd)}) from e

        try:
            stdout, stderr = await process.communicate()
        except asyncio.CancelledError:
            # shutdown mid-sweep, do not leave find running
            if process.returncode is None:
                process.kill()
            await process.wait()
            raise
        if stdout:
            logger.info(stdout.decode("utf-8", errors="replace").rstrip())
        if stderr:
            logger.error(stderr.decode("utf-8", errors="replace").rstrip())
        if process.returncode != 0:
            raise SweepFailure(
                f"{self.executable} exited with status {process.returncode}",
                {"command": " ".join(cmd), "returncode": str(process.returncode)},
            )


class WalkSweep(FilesystemSweep):
    """Recursive os.walk with an mtime check, run in a worker thread."""

    def _sweep(self, root: Path, max_age_minutes: int) -> List[str]:
        cutoff = time.time() - max_age_minutes * 60
        errors: List[str] = []

        def on_error(error: OSError) -> None:
            errors.append(f"{error.filename}: {error.strerror}")

        for folder_path, _, files in os.walk(root, onerror=on_error):
            for name in files:
                file_path = os.path.join(folder_path, name)
                try:
                    info = os.lstat(file_path)
                    if stat.S_ISREG(info.st_mode) and info.st_mtime < cutoff:
                        os.unlink(file_path)
                except FileNotFoundError:
                    continue
                except OSError as e:
                    errors.append(f"{file_path}: {e.strerror}")
        return errors

    async def run(self, root: Path, max_age_minutes: int) -> None:
        errors = await asyncio.to_thread(self._sweep, Path(root), max_age_minutes)
        if errors:
            for error in errors:
                logger.error(error)
            raise SweepFailure(f"{len(errors)} errors while sweeping {root}", {"first": errors[0]})


def default_sweep() -> FilesystemSweep:
    """Prefer a find(1) child process, fall back to walking in a thread."""
    executable = shutil.which("find")
    if executable:
        return FindSweep(executable)
    return WalkSweep()


class RetentionSweeper:
    """Periodically deletes aged files and opens a new quota cycle.

    Sweeps run back to back on one task: the next one is scheduled only after
    the current one has finished, so two sweeps never overlap.
    """

    def __init__(
        self,
        storage_root: Path,
        quota: QuotaGate,
        interval_minutes: int,
        max_age_minutes: int,
        sweep: Optional[FilesystemSweep] = None,
    ):
        self.storage_root = Path(storage_root)
        self.quota = quota
        self.interval_minutes = interval_minutes
        self.max_age_minutes = max_age_minutes
        self.sweep_impl = sweep or default_sweep()
        self._task: Optional[asyncio.Task] = None

    async def sweep(self) -> None:
        """Run one sweep; failures are logged and the counter is reset regardless."""
        logger.info(f"Cleaning up {self.storage_root}")
        try:
            await self.sweep_impl.run(self.storage_root, self.max_age_minutes)
        except SweepFailure as e:
            logger.error(f"Clean-up failed: {e.message}", exc_info=True)
        except Exception as e:
            logger.error(f"Clean-up failed: {e}", exc_info=True)
        finally:
            written = self.quota.reset()
            logger.info(f"Clean-up completed for {written} bytes.")

    async def run_forever(self) -> None:
        while True:
            await self.sweep()
            await asyncio.sleep(self.interval_minutes * 60)

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run_forever())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
