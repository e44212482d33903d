import base64
import secrets
from typing import Set

from stash import config


class IdAllocator:
    """Hands out the shortest random prefix not issued before in this process."""

    def __init__(self, random_bytes: int = config.RANDOM_ID_BYTES, min_length: int = config.MIN_ID_LENGTH):
        self.random_bytes = random_bytes
        self.min_length = min_length
        self.issued: Set[str] = set()

    def _draw(self) -> str:
        raw = secrets.token_bytes(self.random_bytes)
        return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")

    def allocate(self) -> str:
        while True:
            encoded = self._draw()
            for length in range(self.min_length, len(encoded) + 1):
                candidate = encoded[:length]
                if candidate not in self.issued:
                    self.issued.add(candidate)
                    return candidate
            # every prefix of this draw is taken, try another one
