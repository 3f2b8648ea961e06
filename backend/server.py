# fshare/backend/server.py

from fastapi import APIRouter, FastAPI, UploadFile, File, HTTPException, Depends, Query, Request, Header
from fastapi.responses import FileResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool
from pydantic import BaseModel
from pathlib import Path
from typing import Any, Dict, List, Optional
from urllib.parse import quote_plus
import os

from backend.archiver import archive_name_for, build_archive, remove_archive
from backend.events import EventBroker
from backend.listing import convert_bytes, extract_file_name, list_path, list_top
from backend.registry import Entry, RegistryStore
from backend.resolver import resolve_download_target, resolve_path
from shared.auth import create_session_token, verify_session_token
from shared.config import DEFAULT_CONFIG_FILE, Settings, update_settings
from shared.exceptions import (
    ConfigurationError,
    EntryNotFound,
    FileShareError,
    InvalidPath,
    StatTargetMissing,
)
from shared.logging_config import setup_logger
from shared.network import get_client_ip, is_loopback
from shared.storage import JsonStorage

# Set up logger
logger = setup_logger(__name__)

ERROR_STATUS = {
    EntryNotFound: 404,
    StatTargetMissing: 404,
    InvalidPath: 400,
    ConfigurationError: 400,
}

# The live registry is bound to these at startup
RESTART_ONLY_SETTINGS = ("storage_file", "machine_id")


def to_http_error(error: FileShareError) -> HTTPException:
    """Maps a core error kind to the HTTP status the client sees. Unlisted kinds are 500."""
    for kind, status_code in ERROR_STATUS.items():
        if isinstance(error, kind):
            return HTTPException(status_code=status_code, detail=str(error))
    logger.error(f"Internal error: {error}")
    return HTTPException(status_code=500, detail=str(error))


# Request models
class LoginRequest(BaseModel):
    password: str


class AddTextRequest(BaseModel):
    message: str = ""


class AddPathRequest(BaseModel):
    path: str


class RemoveRequest(BaseModel):
    name: str


class ListingResponse(BaseModel):
    path: List[str]
    files: List[Dict[str, Any]]


class ArchiveResponse(FileResponse):
    """Sends a built archive and removes it afterwards, also when sending fails."""

    async def __call__(self, scope, receive, send):
        try:
            await super().__call__(scope, receive, send)
        finally:
            remove_archive(self.path)


# --- Dependencies ---
def get_registry(request: Request) -> RegistryStore:
    return request.app.state.registry


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def require_session(request: Request, authorization: Optional[str] = Header(None)):
    token = authorization or ""
    if token.lower().startswith("bearer "):
        token = token[7:]
    verify_session_token(get_settings(request), token)


def require_local(request: Request):
    """Only the machine running the server may share its local paths or change settings."""
    host = request.client.host if request.client else ""
    if not is_loopback(host):
        logger.warning(f"Rejected local-only request from {host}")
        raise HTTPException(status_code=403, detail="Only allowed from this machine")


router = APIRouter()


@router.get("/ping")
async def ping(request: Request):
    """Simple endpoint to check if the server is online"""
    return {"status": "online", "machine_id": get_settings(request).machine_id}


@router.get("/api/files", dependencies=[Depends(require_session)])
def list_files(
    path: str = Query("", description="Slash-delimited path, empty for the share list"),
    registry: RegistryStore = Depends(get_registry),
):
    """
    Lists the registry when path is empty. Otherwise the first segment names a
    shared directory and the rest is browsed live on disk.
    """
    try:
        resolved = resolve_path(registry, path)
        if resolved.is_root:
            items = list_top(registry)
        else:
            if not resolved.resolved_path:
                raise InvalidPath(f"{resolved.root_name} cannot be browsed")
            items = list_path(resolved.target())
    except FileShareError as e:
        logger.info(f"Listing {path!r} failed: {e}")
        raise to_http_error(e)
    return ListingResponse(
        path=list(resolved.segments),
        files=[item.model_dump(mode="json", exclude_none=True) for item in items],
    )


@router.get("/api/download")
def download(
    request: Request,
    filename: str = Query("", description="Slash-delimited path of the item to download"),
    token: str = Query(""),
    registry: RegistryStore = Depends(get_registry),
):
    """Sends a file as-is, or a directory as a zip built next to it and removed after sending."""
    verify_session_token(get_settings(request), token, status_code=403)
    try:
        _, target = resolve_download_target(registry, filename)
    except FileShareError as e:
        logger.info(f"Download of {filename!r} failed: {e}")
        raise to_http_error(e)

    if os.path.isdir(target):
        try:
            archive_path = build_archive(target)
        except FileShareError as e:
            raise to_http_error(e)
        download_name = archive_name_for(target)
        try:
            logger.info(f"Sending archive {download_name} ({convert_bytes(os.path.getsize(archive_path))})")
            return ArchiveResponse(
                archive_path,
                media_type="application/zip",
                headers={"Content-Disposition": f"attachment; filename={quote_plus(download_name)}"},
            )
        except BaseException:
            remove_archive(archive_path)
            raise

    download_name = extract_file_name(target)
    logger.info(f"Sending file {target}")
    return FileResponse(
        target,
        headers={
            "Content-Disposition": f"attachment; filename={quote_plus(download_name)}",
            "download-filename": quote_plus(download_name),
        },
    )


@router.post("/api/login")
def login(body: LoginRequest, request: Request):
    settings = get_settings(request)
    if not settings.auth_enable:
        return {"message": "success"}
    if body.password != settings.password:
        logger.warning(f"Failed login from {get_client_ip(request)}")
        raise HTTPException(status_code=403, detail="Wrong password")
    return {"Authorization": create_session_token(settings), "message": "success"}


def _safe_upload_name(filename: str) -> str:
    base = os.path.basename((filename or "").replace("\\", "/"))
    return "".join(c for c in base if c.isalnum() or c in "._- ()").strip()


@router.post("/api/addFile", dependencies=[Depends(require_session)])
async def add_file(request: Request, file: UploadFile = File(...)):
    """Stores an uploaded file in the upload directory and shares it under its file name."""
    safe_filename = _safe_upload_name(file.filename)
    if not safe_filename or safe_filename in (".", ".."):
        raise HTTPException(status_code=400, detail="Invalid filename")

    upload_dir = Path(get_settings(request).upload_dir)
    dst_path = upload_dir / safe_filename
    try:
        upload_dir.mkdir(parents=True, exist_ok=True)
        with open(dst_path, "wb") as out_file:
            chunk_size = 8192 * 4  # 32KB chunks
            while chunk := await file.read(chunk_size):
                out_file.write(chunk)
    except OSError as e:
        logger.error(f"Error saving upload {dst_path}: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Failed to save file")

    entry = Entry(name=safe_filename, path=str(dst_path), owner=get_client_ip(request))
    try:
        stored = await run_in_threadpool(get_registry(request).add, entry)
    except FileShareError as e:
        raise to_http_error(e)
    return {"message": "added", "data": stored.model_dump(mode="json", exclude_none=True)}


@router.post("/api/addText", dependencies=[Depends(require_session)])
def add_text(body: AddTextRequest, request: Request, registry: RegistryStore = Depends(get_registry)):
    if not body.message.strip():
        raise HTTPException(status_code=400, detail="Message must not be empty")
    try:
        stored = registry.add_text(body.message, get_client_ip(request))
    except FileShareError as e:
        raise to_http_error(e)
    return {"message": "added", "data": stored.model_dump(mode="json", exclude_none=True)}


@router.post("/api/addPath", dependencies=[Depends(require_session), Depends(require_local)])
def add_path(body: AddPathRequest, request: Request, registry: RegistryStore = Depends(get_registry)):
    """Shares an existing local file or directory without copying it."""
    entry = Entry(name=os.path.basename(os.path.normpath(body.path)), path=body.path,
                  owner=get_client_ip(request))
    try:
        stored = registry.add(entry)
    except FileShareError as e:
        raise to_http_error(e)
    return {"message": "added", "data": stored.model_dump(mode="json", exclude_none=True)}


@router.post("/api/removeFile", dependencies=[Depends(require_session)])
def remove_file(body: RemoveRequest, registry: RegistryStore = Depends(get_registry)):
    try:
        registry.remove(body.name)
    except FileShareError as e:
        raise to_http_error(e)
    return {"message": "removed"}


@router.get("/api/registrySSE", dependencies=[Depends(require_session)])
async def registry_sse(request: Request):
    broker: EventBroker = request.app.state.broker
    subscriber = broker.subscribe()
    return StreamingResponse(
        broker.stream(subscriber),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
    )


@router.get("/api/settings", dependencies=[Depends(require_session), Depends(require_local)])
def read_settings(request: Request):
    data = get_settings(request).to_json()
    data.pop("password", None)
    return data


@router.post("/api/settings", dependencies=[Depends(require_session), Depends(require_local)])
def write_settings(changes: Dict[str, Any], request: Request):
    current = get_settings(request).to_json()
    fixed = [key for key in RESTART_ONLY_SETTINGS if key in changes and changes[key] != current.get(key)]
    if fixed:
        raise HTTPException(
            status_code=400,
            detail=f"Settings {', '.join(sorted(fixed))} can only be changed in the config file before start",
        )
    try:
        new_settings = update_settings(get_settings(request), request.app.state.config_file, changes)
    except FileShareError as e:
        raise to_http_error(e)
    request.app.state.settings = new_settings
    data = new_settings.to_json()
    data.pop("password", None)
    return data


def create_app(settings: Settings, config_file: Path = DEFAULT_CONFIG_FILE,
               registry: Optional[RegistryStore] = None,
               broker: Optional[EventBroker] = None) -> FastAPI:
    """Builds the app with its collaborators attached to app.state."""
    broker = broker or EventBroker()
    if registry is None:
        registry = RegistryStore(JsonStorage(settings.storage_file), settings.machine_id)
    if registry.on_change is None:
        registry.on_change = broker.publish_registry_change

    app = FastAPI(title="fshare")
    app.state.settings = settings
    app.state.config_file = Path(config_file)
    app.state.registry = registry
    app.state.broker = broker
    app.include_router(router)
    logger.info(f"Registry storage at {settings.storage_file}, uploads go to {settings.upload_dir}")
    return app
