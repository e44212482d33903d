import argparse
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple
from urllib.parse import urlparse

import uvicorn

from stash import config


def _parse_port(value: Optional[str]) -> int:
    """Leading digits of value, or the default port."""
    match = re.match(r"\s*(\d+)", value or "")
    if not match:
        return config.DEFAULT_PORT
    return int(match.group(1)) or config.DEFAULT_PORT


def parse_bind_target(target: Optional[str], port: Optional[str] = None) -> Tuple[str, int]:
    """Work out host and port from the positional arguments.

    Accepts a full URL ("http://0.0.0.0:8080"), a bare port ("8080"), or a
    host followed by an optional port ("0.0.0.0", "8080").
    """
    if target:
        parsed = urlparse(target)
        if parsed.scheme and parsed.hostname:
            try:
                url_port = parsed.port
            except ValueError:
                url_port = None
            return parsed.hostname, url_port or config.DEFAULT_PORT

        if re.fullmatch(r"[0-9]+", target):
            return config.DEFAULT_HOST, _parse_port(target)

    return target or config.DEFAULT_HOST, _parse_port(port)


@dataclass
class ServerOptions:
    host: str
    port: int
    storage_root: str
    max_write_bytes: int
    interval_minutes: int
    max_age_minutes: int

    @classmethod
    def from_args(cls, argv: Optional[List[str]] = None) -> 'ServerOptions':
        """Create ServerOptions from command line arguments."""
        parser = argparse.ArgumentParser(description='Anonymous, ephemeral file-drop server')
        parser.add_argument('target', nargs='?', default=None,
                            help='URL to listen on, a port number, or a host name')
        parser.add_argument('port', nargs='?', default=None,
                            help='Port, when target is a host name')
        parser.add_argument('--root', type=str, default=config.STORAGE_ROOT,
                            help='Storage root directory')
        parser.add_argument('--max-bytes', type=int, default=config.MAX_WRITE_BYTES,
                            help='Maximum bytes written between two cleanups')
        parser.add_argument('--interval', type=int, default=config.CLEAN_INTERVAL_MINUTES,
                            help='Minutes between cleanups')
        parser.add_argument('--max-age', type=int, default=None,
                            help='Minutes a file is kept (defaults to the cleanup interval)')
        args = parser.parse_args(argv)

        if args.max_bytes < 0:
            parser.error('--max-bytes must not be negative')
        if args.interval <= 0:
            parser.error('--interval must be positive')

        host, port = parse_bind_target(args.target, args.port)
        return cls(
            host=host,
            port=port,
            storage_root=args.root,
            max_write_bytes=args.max_bytes,
            interval_minutes=args.interval,
            max_age_minutes=args.max_age if args.max_age is not None else args.interval,
        )

    def apply(self) -> None:
        """Push the options into the config module read at startup."""
        config.STORAGE_ROOT = self.storage_root
        config.MAX_WRITE_BYTES = self.max_write_bytes
        config.CLEAN_INTERVAL_MINUTES = self.interval_minutes
        config.MAX_AGE_MINUTES = self.max_age_minutes


def main(argv: Optional[List[str]] = None) -> None:
    options = ServerOptions.from_args(argv)
    options.apply()

    from stash.main import app, logger

    logger.info("Starting Stash server...")
    logger.info(f"Storage root: {options.storage_root}")
    logger.info(f"Maximum bytes per cleanup cycle: {options.max_write_bytes / (1024*1024):.2f} MB")
    logger.info(f"Cleanup every {options.interval_minutes} minutes, keeping files {options.max_age_minutes} minutes")
    uvicorn.run(app, host=options.host, port=options.port)


if __name__ == "__main__":
    main()
