import asyncio
from enum import Enum
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional, Tuple

from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header
from starlette.requests import ClientDisconnect

from stash import config
from stash.errors import FilesystemConflict, IngestionError, NoDataError, QuotaExceeded, WriteError
from stash.logger_config import setup_logger
from stash.services.materializer import FilesystemMaterializer
from stash.services.quota_gate import QuotaGate

logger = setup_logger()


class IngestState(Enum):
    AWAITING_DATA = "awaiting_data"
    WRITING = "writing"
    DONE = "done"
    FAILED = "failed"


class MultipartEvent(Enum):
    PART_BEGIN = "part_begin"
    HEADER_FIELD = "header_field"
    HEADER_VALUE = "header_value"
    HEADER_END = "header_end"
    HEADERS_FINISHED = "headers_finished"
    PART_DATA = "part_data"
    PART_END = "part_end"
    END = "end"


def _write_error(message: str, cause: Exception) -> WriteError:
    error = WriteError(message, {"reason": str(cause)})
    error.__cause__ = cause
    return error


class IngestionSession:
    """One upload moving through AWAITING_DATA -> WRITING -> DONE | FAILED.

    The outcome is a one-shot future: the first terminal transition wins and
    any later settle() or fail() call is a no-op.
    """

    def __init__(self, path: Path, quota: QuotaGate, materializer: FilesystemMaterializer):
        self.path = Path(path)
        self.quota = quota
        self.materializer = materializer
        self.state = IngestState.AWAITING_DATA
        self.outcome: asyncio.Future = asyncio.get_running_loop().create_future()
        self.payload_bytes = 0
        self._sink = None

    @property
    def settled(self) -> bool:
        return self.outcome.done()

    def settle(self) -> None:
        if self.settled:
            return
        self.state = IngestState.DONE
        self.outcome.set_result(self.payload_bytes)

    def fail(self, error: IngestionError) -> None:
        if self.settled:
            logger.debug(f"Ignoring {type(error).__name__} after settlement of {self.path}")
            return
        self.state = IngestState.FAILED
        self.outcome.set_exception(error)

    async def begin_payload(self) -> None:
        self.state = IngestState.WRITING
        self._sink = await self.materializer.prepare(self.path)

    async def write(self, chunk: bytes) -> None:
        self.quota.admit(len(chunk))
        await self._sink.write(chunk)
        self.payload_bytes += len(chunk)

    async def finish_payload(self) -> None:
        await self.close()
        self.settle()

    async def close(self) -> None:
        if self._sink is not None:
            sink, self._sink = self._sink, None
            await sink.close()


class _Part:
    """Headers and bookkeeping for the multipart section being parsed."""

    def __init__(self):
        self.headers: Dict[bytes, bytes] = {}
        self.header_field = b""
        self.header_value = b""
        self.name: Optional[str] = None
        self.filename: Optional[str] = None
        self.is_payload = False
        self.size = 0
        self.truncated = False

    def end_header(self) -> None:
        self.headers[self.header_field.lower()] = self.header_value
        self.header_field = b""
        self.header_value = b""

    def read_disposition(self) -> None:
        _, options = parse_options_header(self.headers.get(b"content-disposition"))
        self.name = options.get(b"name", b"").decode("utf-8", errors="replace")
        if b"filename" in options:
            self.filename = options[b"filename"].decode("utf-8", errors="replace")


class MultipartReader:
    """Feeds body chunks to python-multipart and queues its callbacks.

    The parser's callbacks are synchronous, so they only record events; the
    pipeline replays them afterwards and may await disk writes in between.
    """

    def __init__(self, boundary: bytes):
        self.events: List[Tuple[MultipartEvent, bytes]] = []
        callbacks = {
            "on_part_begin": self.on_part_begin,
            "on_part_data": self.on_part_data,
            "on_part_end": self.on_part_end,
            "on_header_field": self.on_header_field,
            "on_header_value": self.on_header_value,
            "on_header_end": self.on_header_end,
            "on_headers_finished": self.on_headers_finished,
            "on_end": self.on_end,
        }
        self.parser = MultipartParser(boundary, callbacks)
        self.error: Optional[MultipartParseError] = None

    def on_part_begin(self) -> None:
        self.events.append((MultipartEvent.PART_BEGIN, b""))

    def on_part_data(self, data: bytes, start: int, end: int) -> None:
        self.events.append((MultipartEvent.PART_DATA, data[start:end]))

    def on_part_end(self) -> None:
        self.events.append((MultipartEvent.PART_END, b""))

    def on_header_field(self, data: bytes, start: int, end: int) -> None:
        self.events.append((MultipartEvent.HEADER_FIELD, data[start:end]))

    def on_header_value(self, data: bytes, start: int, end: int) -> None:
        self.events.append((MultipartEvent.HEADER_VALUE, data[start:end]))

    def on_header_end(self) -> None:
        self.events.append((MultipartEvent.HEADER_END, b""))

    def on_headers_finished(self) -> None:
        self.events.append((MultipartEvent.HEADERS_FINISHED, b""))

    def on_end(self) -> None:
        self.events.append((MultipartEvent.END, b""))

    def _drain(self) -> List[Tuple[MultipartEvent, bytes]]:
        events, self.events = self.events, []
        return events

    def feed(self, chunk: bytes) -> List[Tuple[MultipartEvent, bytes]]:
        """Parse chunk and return the events it produced.

        A parse error is kept until raise_for_error() so that the events
        emitted before it are still delivered.
        """
        try:
            self.parser.write(chunk)
        except MultipartParseError as e:
            self.error = e
        return self._drain()

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error

    def finish(self) -> List[Tuple[MultipartEvent, bytes]]:
        self.parser.finalize()
        return self._drain()


class IngestionPipeline:
    """Streams a request body into the storage root through the quota gate."""

    def __init__(
        self,
        quota: QuotaGate,
        materializer: FilesystemMaterializer,
        max_field_size: int = config.MAX_FIELD_SIZE,
        payload_field: str = config.PAYLOAD_FIELD,
    ):
        self.quota = quota
        self.materializer = materializer
        self.max_field_size = max_field_size
        self.payload_field = payload_field

    async def ingest(self, content_type: str, body: AsyncIterator[bytes], path: Path) -> int:
        """Store the payload of a request body at path.

        Args:
            content_type: The request's Content-Type header, possibly empty
            body: The request body as an async stream of chunks
            path: Absolute target path inside the storage root

        Returns:
            int: Number of payload bytes written

        Raises:
            NoDataError: If a multipart body has no payload part
            WriteError: If the body cannot be parsed or written
        """
        session = IngestionSession(path, self.quota, self.materializer)
        media_type, options = parse_options_header(content_type or "")

        try:
            if media_type == b"multipart/form-data":
                await self._ingest_multipart(session, options.get(b"boundary"), body)
            else:
                await self._ingest_raw(session, body)
        except IngestionError as e:
            session.fail(e)
        except QuotaExceeded as e:
            session.fail(_write_error("Quota exceeded while writing", e))
        except ClientDisconnect as e:
            session.fail(_write_error("Client disconnected during upload", e))
        except MultipartParseError as e:
            session.fail(_write_error("Malformed multipart body", e))
        except (FilesystemConflict, OSError, ValueError) as e:
            # ValueError: the OS rejects the path itself, e.g. an embedded NUL
            session.fail(_write_error(f"Could not write {path}", e))
        finally:
            await session.close()

        if session.state is IngestState.FAILED and session.payload_bytes:
            logger.warning(f"Upload aborted, {session.payload_bytes} bytes left at {path} until cleanup")
        return await session.outcome

    async def _ingest_raw(self, session: IngestionSession, body: AsyncIterator[bytes]) -> None:
        await session.begin_payload()
        async for chunk in body:
            if chunk:
                await session.write(chunk)
        await session.finish_payload()

    async def _ingest_multipart(
        self, session: IngestionSession, boundary: Optional[bytes], body: AsyncIterator[bytes]
    ) -> None:
        if not boundary:
            raise WriteError("Multipart body without boundary")

        logger.debug(f"Parsing multipart body for {session.path}")
        reader = MultipartReader(boundary)
        part = _Part()

        async for chunk in body:
            if not chunk:
                continue
            for event, data in reader.feed(chunk):
                part = await self._handle_event(session, part, event, data)
            reader.raise_for_error()
        for event, data in reader.finish():
            part = await self._handle_event(session, part, event, data)

        if session.state is IngestState.WRITING:
            raise WriteError("Multipart body ended inside the payload part")
        if session.state is IngestState.AWAITING_DATA:
            raise NoDataError(f"No '{self.payload_field}' part in multipart body")

    async def _handle_event(
        self, session: IngestionSession, part: _Part, event: MultipartEvent, data: bytes
    ) -> _Part:
        # the parser keeps emitting events after the payload is settled
        if session.settled:
            return part

        if event is MultipartEvent.PART_BEGIN:
            return _Part()
        if event is MultipartEvent.HEADER_FIELD:
            part.header_field += data
        elif event is MultipartEvent.HEADER_VALUE:
            part.header_value += data
        elif event is MultipartEvent.HEADER_END:
            part.end_header()
        elif event is MultipartEvent.HEADERS_FINISHED:
            part.read_disposition()
            kind = "file" if part.filename is not None else "field"
            logger.debug(f"{kind} received with name: {part.name}")
            if part.name == self.payload_field and session.state is IngestState.AWAITING_DATA:
                part.is_payload = True
                await session.begin_payload()
        elif event is MultipartEvent.PART_DATA:
            if part.is_payload:
                await session.write(data)
            else:
                part.size += len(data)
                if part.filename is None and part.size > self.max_field_size:
                    part.truncated = True
        elif event is MultipartEvent.PART_END:
            if part.is_payload:
                await session.finish_payload()
            elif part.truncated:
                logger.warning(f"Field {part.name!r} exceeded {self.max_field_size} bytes, truncated")
        return part
