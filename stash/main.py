import mimetypes
import re
from contextlib import asynccontextmanager
from pathlib import Path

import aiofiles
import aiofiles.os
from fastapi import Depends, FastAPI, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, RedirectResponse, Response, StreamingResponse

from stash import config
from stash.errors import IngestionError, PathEscape
from stash.logger_config import setup_logger
from stash.services.stash_manager import StashManager

# Logger setup
logger = setup_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create and initialize the manager owning all shared state
    app.state.manager = StashManager(
        Path(config.STORAGE_ROOT),
        max_write_bytes=config.MAX_WRITE_BYTES,
        interval_minutes=config.CLEAN_INTERVAL_MINUTES,
        max_age_minutes=config.MAX_AGE_MINUTES,
    )
    await app.state.manager.initialize()
    app.state.manager.start_sweeper()
    yield
    await app.state.manager.stop_sweeper()


# Create FastAPI app with lifespan
app = FastAPI(title="Stash", lifespan=lifespan)


def get_manager(request: Request) -> StashManager:
    return request.app.state.manager


def external_base_path(forwarded_path: str, original_url: str) -> str:
    """Join a reverse-proxy prefix and the request URL into one path."""
    joined = forwarded_path.rstrip("/") + "/" + original_url.lstrip("/")
    return re.sub(r"/{2,}", "/", joined)


def original_url(request: Request) -> str:
    url = request.url.path
    if request.url.query:
        url += "?" + request.url.query
    return url


@app.exception_handler(PathEscape)
async def path_escape_handler(request: Request, exc: PathEscape):
    logger.error(f"Jailbreak attempt for: {exc.request_path}")
    return PlainTextResponse(f"error: Jailbreak for path: {exc.request_path}\n", status_code=400)


@app.exception_handler(IngestionError)
async def ingestion_error_handler(request: Request, exc: IngestionError):
    logger.error(f"Error uploading {request.url.path}: {exc.message}", exc_info=exc)
    return PlainTextResponse("error: Internal write error.\n", status_code=500)


@app.get("/")
async def landing_page(request: Request, manager: StashManager = Depends(get_manager)):
    """Serve the upload form with a fresh suggested path."""
    logger.info("Stash homepage")
    try:
        random_id = manager.allocate_id()
    except (OSError, NotImplementedError) as e:
        logger.error(f"Could not allocate random id: {str(e)}", exc_info=True)
        return PlainTextResponse("error: Internal error.\n", status_code=500)

    server_path = external_base_path(
        request.headers.get("x-forwarded-original-path", ""),
        original_url(request),
    )

    async with aiofiles.open(config.INDEX_PAGE, "r", encoding="utf-8") as f:
        page = await f.read()
    page = page.replace("$__RANDOM_PATH", random_id).replace("$__SERVER_PATH", server_path)
    return HTMLResponse(page, media_type="text/html; charset=UTF-8")


@app.api_route("/{file_path:path}", methods=["POST", "PUT"])
async def upload_file(
    file_path: str,
    request: Request,
    manager: StashManager = Depends(get_manager),
):
    """Store the request body at the given path.

    Raw bodies are stored as-is; multipart bodies contribute their first
    part named "data".
    """
    url_path = "/" + file_path
    real_path = manager.resolve(url_path)
    logger.info(f"Stash post: {real_path}")

    written = await manager.store(request.headers.get("content-type", ""), request.stream(), real_path)
    logger.debug(f"Stored {written} bytes at {real_path}")

    if request.query_params.get("redirect"):
        # temporary redirect (302 Found) to the stored file, relative to the upload URL
        return RedirectResponse("./" + url_path.rsplit("/", 1)[-1], status_code=302)
    return PlainTextResponse("ok\n")


@app.api_route("/{file_path:path}", methods=["GET", "HEAD"])
async def get_file(
    file_path: str,
    request: Request,
    manager: StashManager = Depends(get_manager),
):
    """Retrieve a stored file."""
    try:
        real_path = manager.resolve("/" + file_path)
    except PathEscape:
        real_path = None

    if real_path is None or not await aiofiles.os.path.isfile(real_path):
        logger.debug(f"No such file for: {original_url(request)}")
        return PlainTextResponse(
            f"error: No such file or directory ({original_url(request)}).\n",
            status_code=404,
        )

    content_type, _ = mimetypes.guess_type(real_path.name)
    size = await aiofiles.os.path.getsize(real_path)
    media_type = content_type or "application/octet-stream"
    headers = {"content-length": str(size)}

    if request.method == "HEAD":
        return Response(media_type=media_type, headers=headers)

    async def file_iterator():
        async with aiofiles.open(real_path, 'rb') as file:
            while chunk := await file.read(config.CHUNK_SIZE):
                yield chunk

    return StreamingResponse(
        file_iterator(),
        media_type=media_type,
        headers=headers,
    )

