import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from settings import get_settings
from src.data.geo import GeoPoint
from src.data.posts_repo import get_post, init_db, insert_post, insert_scan, list_by_qr_payload, list_in_bbox, list_latest
from src.data.uploads import discard_upload, safe_filename, save_upload
from src.errors import InvalidArgument, StorageUnavailable, UploadTooLarge
from src.middleware import RequestLoggingMiddleware
from src.monitoring import get_metrics, record_event
from src.posts.models import (
    CreateScanRequest,
    NearbyPostResponse,
    NearbyPostsResponse,
    PostResponse,
    PostsListResponse,
    ScanCreatedResponse,
)
from src.posts.service import (
    DEFAULT_LIMIT,
    DEFAULT_RADIUS_M,
    create_post,
    find_by_qr_payload,
    find_near,
    record_scan,
    validate_post,
)

settings = get_settings()
BACKEND_ROOT = Path(__file__).resolve().parent


def _resolve(path_str: str) -> Path:
    p = Path(path_str)
    return p if p.is_absolute() else BACKEND_ROOT / p


POSTS_DB = _resolve(settings.sqlite_path)
UPLOAD_DIR = _resolve(settings.upload_dir)
MAX_UPLOAD_BYTES = settings.max_upload_mb * 1024 * 1024

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(levelname)s %(name)s %(message)s",
)
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)


@asynccontextmanager
async def lifespan(app: FastAPI):
    version = init_db(POSTS_DB)
    UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    logger.info("telemetry startup db=%s schema_version=%s uploads=%s", POSTS_DB, version, UPLOAD_DIR)
    yield


app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(InvalidArgument)
def invalid_argument_handler(request: Request, exc: InvalidArgument):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(UploadTooLarge)
def upload_too_large_handler(request: Request, exc: UploadTooLarge):
    return JSONResponse(status_code=413, content={"detail": str(exc)})


@app.exception_handler(StorageUnavailable)
def storage_unavailable_handler(request: Request, exc: StorageUnavailable):
    logger.warning("telemetry storage_unavailable path=%s error=%s", request.url.path, str(exc))
    return JSONResponse(
        status_code=503,
        content={"detail": "Storage is temporarily unavailable. Please try again."},
    )


@app.exception_handler(Exception)
def unhandled_exception_handler(request: Request, exc: Exception):
    """Return consistent JSON error for unhandled exceptions (500)."""
    logger.exception("telemetry unhandled_exception path=%s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={"detail": "An unexpected error occurred. Please try again later."},
    )


app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/favicon.ico", include_in_schema=False)
def favicon(request: Request):
    return Response(status_code=204)


@app.get("/health")
def health(request: Request):
    return {"status": "ok", "ts": int(time.time() * 1000)}


@app.get("/metrics")
def metrics(request: Request):
    return get_metrics()


# --- Posts ---


@app.get("/api/posts/near", response_model=NearbyPostsResponse)
def posts_near(
    request: Request,
    lat: float | None = None,
    lng: float | None = None,
    radius: float = DEFAULT_RADIUS_M,
    limit: int = DEFAULT_LIMIT,
):
    """Posts within `radius` meters of (lat, lng), nearest first, each with `distance` in meters."""
    if lat is None or lng is None:
        raise HTTPException(status_code=400, detail="lat and lng are required.")
    logger.info("telemetry route=posts_near radius_m=%s limit=%s", radius, limit)
    nearby = find_near(
        GeoPoint(lat, lng),
        radius,
        limit,
        candidate_source=lambda box, max_rows: list_in_bbox(POSTS_DB, box, limit=max_rows),
    )
    return NearbyPostsResponse(
        items=[NearbyPostResponse(**n.post._asdict(), distance=n.distance_m) for n in nearby]
    )


@app.get("/api/posts", response_model=PostsListResponse)
def posts_latest(request: Request):
    """Newest 20 posts."""
    return PostsListResponse(items=[PostResponse.from_record(p) for p in list_latest(POSTS_DB)])


@app.get("/api/posts/by-qr", response_model=PostsListResponse)
def posts_by_qr(request: Request, qr: str = "", limit: int = DEFAULT_LIMIT):
    """Posts attached to scans of the given QR payload, newest first."""
    logger.info("telemetry route=posts_by_qr limit=%s", limit)
    posts = find_by_qr_payload(
        qr,
        limit,
        list_by_qr=lambda payload, n: list_by_qr_payload(POSTS_DB, payload, n),
    )
    return PostsListResponse(items=[PostResponse.from_record(p) for p in posts])


@app.post("/api/posts", response_model=PostResponse, status_code=201)
@limiter.limit(settings.write_rate_limit)
def post_create(
    request: Request,
    post_type: str = Form(..., alias="type"),
    lat: float = Form(...),
    lng: float = Form(...),
    title: str | None = Form(None),
    description: str | None = Form(None),
    created_by: str | None = Form(None, alias="createdBy"),
    scan_id: str | None = Form(None, alias="scanId"),
    media: UploadFile | None = File(None),
):
    """Create a post (multipart). Optional `media` file is stored and linked as mediaUrl."""
    validate_post(post_type, lat, lng)
    stored = None
    if media is not None and media.filename:
        stored = save_upload(UPLOAD_DIR, media.filename, media.file, MAX_UPLOAD_BYTES)
    try:
        rec = create_post(
            lambda **fields: insert_post(POSTS_DB, **fields),
            post_type=post_type,
            lat=lat,
            lng=lng,
            title=title or None,
            description=description or None,
            media_url=stored.url if stored else None,
            size=stored.size if stored else None,
            content_type=media.content_type if stored else None,
            original_name=media.filename if stored else None,
            created_by=created_by or None,
            scan_id=scan_id or None,
        )
    except StorageUnavailable:
        if stored:
            discard_upload(UPLOAD_DIR, stored)
        raise
    record_event("posts_created")
    logger.info("telemetry route=post_create type=%s has_media=%s", post_type, stored is not None)
    return PostResponse.from_record(rec)


@app.get("/api/posts/{post_id}", response_model=PostResponse)
def post_detail(request: Request, post_id: str):
    rec = get_post(POSTS_DB, post_id)
    if rec is None:
        raise HTTPException(status_code=404, detail="Post not found.")
    return PostResponse.from_record(rec)


# --- Scans ---


@app.post("/api/scans", response_model=ScanCreatedResponse, status_code=201)
@limiter.limit(settings.write_rate_limit)
def scan_create(request: Request, body: CreateScanRequest):
    """Record a QR scan with the client's location fix."""
    scan = record_scan(
        lambda **fields: insert_scan(POSTS_DB, **fields),
        qr_payload=body.qr_payload,
        lat=body.lat,
        lng=body.lng,
        session_id=body.session_id,
        spot_id=body.spot_id,
    )
    record_event("scans_recorded")
    return ScanCreatedResponse(id=scan.id)


# --- Uploaded media ---


@app.get("/uploads/{filename}", include_in_schema=False)
def uploaded_media(request: Request, filename: str):
    if filename != safe_filename(filename):
        raise HTTPException(status_code=404, detail="Not found.")
    path = UPLOAD_DIR / filename
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Not found.")
    return FileResponse(path)
