from stash.errors import QuotaExceeded
from stash.logger_config import setup_logger

logger = setup_logger()


class QuotaGate:
    """Global byte budget shared by every upload between two sweeps.

    admit() and reset() never await, so on a single event loop they cannot
    interleave and the counter needs no lock.
    """

    def __init__(self, max_bytes: int):
        if max_bytes < 0:
            raise ValueError("max_bytes must not be negative")
        self.max_bytes = max_bytes
        self.written_bytes: int = 0

    @property
    def remaining(self) -> int:
        return self.max_bytes - self.written_bytes

    def admit(self, chunk_length: int) -> None:
        """Account for a chunk about to be written.

        Raises:
            QuotaExceeded: If the chunk does not fit; the counter is left untouched
        """
        if chunk_length + self.written_bytes > self.max_bytes:
            logger.error(
                f"MAX_WRITE_BYTES ({self.max_bytes}) reached, "
                f"rejecting chunk of {chunk_length} bytes until the next cleanup"
            )
            raise QuotaExceeded(chunk_length, self.written_bytes, self.max_bytes)
        self.written_bytes += chunk_length

    def reset(self) -> int:
        """Zero the counter and return what it held."""
        previous = self.written_bytes
        self.written_bytes = 0
        logger.debug(f"Quota counter reset. Previous: {previous}")
        return previous
