# app/main.py
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging, sys, time, traceback

# keep httpx/httpcore quiet
for name in ("httpx", "httpcore"):
    logging.getLogger(name).setLevel(logging.WARNING)

# ===== logging setup =====
logging.basicConfig(
    level=logging.INFO,
    stream=sys.stdout,
    format="%(asctime)s [%(levelname)s] %(message)s",
)
log = logging.getLogger("tablextract")

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request as StarletteRequest
from starlette.responses import Response as StarletteResponse

class AccessLogMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: StarletteRequest, call_next):
        t0 = time.time()
        clen = request.headers.get("content-length", "-")
        try:
            log.info(f"[req] {request.method} {request.url.path} q={dict(request.query_params)} len={clen}")
            resp: StarletteResponse = await call_next(request)
            dt = int((time.time() - t0) * 1000)
            log.info(f"[res] {request.method} {request.url.path} -> {resp.status_code} {dt}ms")
            return resp
        except Exception:
            dt = int((time.time() - t0) * 1000)
            log.error(f"[res] {request.method} {request.url.path} -> 500 {dt}ms\n{traceback.format_exc()}")
            raise

import redis

from app.config import Settings, load_settings
from app.models.account_models import AuthUser, ExtractionMetadata, SubscriptionTier
from app.models.api_models import (
    ExportIn, ExtractClipboardIn, ExtractFileIn, ExtractOptions, ExtractResponse, ExtractTextIn,
    HistoryResponse, SubscriptionResponse, SubscriptionUpdateIn, UsageResponse, VisibilityIn,
)
from app.models.table_models import ExtractionResult
from app.services import export
from app.services.extraction import (
    decode_file, extract_table_from_clipboard, extract_table_from_file, extract_table_from_text,
)
from app.services.extraction_store import ExtractionStore
from app.services.file_inspect import inspect_pdf_bytes, is_image_file, validate_file
from app.services.gemini_client import GeminiClient
from app.services.identity import IdentityClient, bearer_token
from app.services.subscription import MAX_UPLOAD_SIZE, SubscriptionService
from app.services.usage import UsageService
from app.services.user_store import UserStore


class Services:
    """Clients built once at start-up and shared by every request."""

    def __init__(self, settings: Settings, r: redis.Redis, gemini: GeminiClient, identity: IdentityClient):
        self.settings = settings
        self.redis = r
        self.gemini = gemini
        self.identity = identity
        self.users = UserStore(r)
        self.usage = UsageService(self.users)
        self.subscriptions = SubscriptionService(self.users, self.usage)
        self.extractions = ExtractionStore(r, now=self.users.now)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Services":
        return cls(
            settings,
            redis.Redis.from_url(settings.redis_url, decode_responses=True),
            GeminiClient.from_settings(settings),
            IdentityClient.from_settings(settings),
        )

    async def aclose(self) -> None:
        await self.gemini.aclose()
        await self.identity.aclose()


def get_services(request: Request) -> Services:
    return request.app.state.services


async def current_user(request: Request, svc: Services = Depends(get_services)) -> AuthUser:
    token = bearer_token(request.headers.get("authorization"))
    if not token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    user = await svc.identity.get_user(token)
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    await run_in_threadpool(svc.users.ensure_user, user.id, user.email)
    return user


def _grid_or_400(data) -> list:
    if not isinstance(data, list) or not all(isinstance(r, list) for r in data):
        raise HTTPException(status_code=400, detail="Invalid data format")
    return data


def _download(content, ext: str) -> Response:
    return Response(
        content=content,
        media_type=export.MIME_TYPES[ext],
        headers={"Content-Disposition": f'attachment; filename="{export.download_filename(ext)}"'},
    )


async def _run_extraction(svc: Services, user: AuthUser, opts: ExtractOptions,
                          run: Callable[[bool], Awaitable[ExtractionResult]], *,
                          file_size: Optional[int], metadata: ExtractionMetadata) -> ExtractResponse:
    allowed, reason = await run_in_threadpool(svc.subscriptions.can_perform_extraction, user.id, file_size)
    if not allowed:
        log.info(f"[extract] user={user.id} refused: {reason}")
        raise HTTPException(status_code=403, detail=reason)

    result = await run(opts.debug or svc.settings.debug)
    if not result.success:
        return ExtractResponse(result=result)

    sub = await run_in_threadpool(svc.subscriptions.get_subscription_details, user.id)
    data = result.data
    if sub and not sub.features.multiple_tables_support and data.tables and len(data.tables) > 1:
        log.info(f"[extract] user={user.id} tier={sub.tier.value}: keeping 1 of {len(data.tables)} tables")
        result = result.model_copy(update={"data": data.model_copy(update={"tables": data.tables[:1]})})

    await run_in_threadpool(svc.usage.track_extraction, user.id)
    extraction_id = None
    if opts.save:
        rec = await run_in_threadpool(svc.extractions.save_extraction, user.id, result, metadata)
        extraction_id = rec.id
    return ExtractResponse(result=result, extraction_id=extraction_id)


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    settings = settings or (services.settings if services else load_settings())
    services = services or Services.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await services.aclose()

    app = FastAPI(title="Tablextract Backend", version="0.1.0", lifespan=lifespan)
    app.state.services = services
    app.add_middleware(AccessLogMiddleware)

    # comma separated, e.g. "http://localhost:5173,https://your-frontend.com"
    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
            allow_headers=["*"],
            expose_headers=["*"],
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.exception_handler(redis.RedisError)
    async def store_error(request: Request, exc: redis.RedisError) -> JSONResponse:
        log.error(f"[redis] {request.method} {request.url.path} failed: {type(exc).__name__}: {exc}")
        return JSONResponse(status_code=500, content={"error": "Internal server error"})

    @app.get("/health", tags=["meta"])
    def health() -> dict:
        return {"status": "ok"}

    @app.get("/", tags=["meta"])
    def root() -> dict:
        return {"message": "Tablextract Backend is running"}

    # ========= extraction =========
    @app.post("/extract/file", tags=["extract"], response_model=ExtractResponse)
    async def extract_file(p: ExtractFileIn, user: AuthUser = Depends(current_user),
                           svc: Services = Depends(get_services)):
        try:
            content = decode_file(p)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        valid, errors = validate_file(p.mime_type, len(content), max_size=MAX_UPLOAD_SIZE)
        if not valid:
            raise HTTPException(status_code=400, detail=" ".join(errors))

        page_count = None
        if p.mime_type == "application/pdf":
            info = await run_in_threadpool(inspect_pdf_bytes, p.filename, content)
            if not info.ok:
                raise HTTPException(status_code=400, detail=info.error)
            page_count = info.page_count
            log.info(f"[extract] pdf {p.filename!r} pages={page_count} sha256={info.sha256[:12]}")

        meta = ExtractionMetadata(
            file_name=p.filename, file_type=p.mime_type, file_size=len(content), page_count=page_count,
            extraction_method="file", extraction_hints=p.hints,
        )
        return await _run_extraction(
            svc, user, p,
            lambda debug: extract_table_from_file(svc.gemini, content, p.mime_type, hints=p.hints,
                                                  model_version=p.model_version, debug=debug),
            file_size=len(content), metadata=meta,
        )

    @app.post("/extract/text", tags=["extract"], response_model=ExtractResponse)
    async def extract_text(p: ExtractTextIn, user: AuthUser = Depends(current_user),
                           svc: Services = Depends(get_services)):
        if not p.text.strip():
            raise HTTPException(status_code=400, detail="No text provided")
        meta = ExtractionMetadata(
            file_size=len(p.text.encode("utf-8")), extraction_method="clipboard", extraction_hints=p.hints,
        )
        return await _run_extraction(
            svc, user, p,
            lambda debug: extract_table_from_text(svc.gemini, p.text, hints=p.hints,
                                                  model_version=p.model_version, debug=debug),
            file_size=meta.file_size, metadata=meta,
        )

    @app.post("/extract/clipboard", tags=["extract"], response_model=ExtractResponse)
    async def extract_clipboard(p: ExtractClipboardIn, user: AuthUser = Depends(current_user),
                                svc: Services = Depends(get_services)):
        image = p.files[0] if p.files and is_image_file(p.files[0].mime_type) else None
        if image is not None:
            try:
                size = len(decode_file(image))
            except ValueError as e:
                raise HTTPException(status_code=400, detail=str(e))
            meta = ExtractionMetadata(file_name=image.filename, file_type=image.mime_type, file_size=size,
                                      extraction_method="clipboard", extraction_hints=p.hints)
        else:
            size = len(p.text.encode("utf-8")) if p.text else None
            meta = ExtractionMetadata(file_size=size, extraction_method="clipboard", extraction_hints=p.hints)
        return await _run_extraction(
            svc, user, p,
            lambda debug: extract_table_from_clipboard(svc.gemini, text=p.text, files=p.files, hints=p.hints,
                                                       model_version=p.model_version, debug=debug),
            file_size=size, metadata=meta,
        )

    # ========= history =========
    @app.get("/extractions", tags=["history"], response_model=HistoryResponse)
    def list_extractions(limit: int = 10, offset: int = 0, include_hidden: bool = False,
                         user: AuthUser = Depends(current_user), svc: Services = Depends(get_services)):
        limit = max(1, min(limit, 100))
        records = svc.extractions.get_extraction_history(user.id, limit=limit, offset=max(0, offset),
                                                         include_hidden=include_hidden)
        return HistoryResponse(extractions=records)

    @app.get("/extractions/{extraction_id}", tags=["history"])
    def get_extraction(extraction_id: str, user: AuthUser = Depends(current_user),
                       svc: Services = Depends(get_services)):
        rec = svc.extractions.get_extraction(extraction_id, user.id)
        if rec is None:
            raise HTTPException(status_code=404, detail="Extraction not found")
        return {"extraction": rec.model_dump(mode="json", by_alias=True, exclude_none=True)}

    @app.delete("/extractions/{extraction_id}", tags=["history"])
    def delete_extraction(extraction_id: str, user: AuthUser = Depends(current_user),
                          svc: Services = Depends(get_services)):
        if not svc.extractions.delete_extraction(extraction_id, user.id):
            raise HTTPException(status_code=404, detail="Extraction not found")
        return {"success": True}

    @app.post("/extractions/visibility", tags=["history"])
    def set_visibility(p: VisibilityIn, user: AuthUser = Depends(current_user),
                       svc: Services = Depends(get_services)):
        updated = svc.extractions.toggle_extractions_visibility(user.id, p.ids, p.visible)
        return {"success": True, "updated": updated}

    # ========= export =========
    @app.post("/export/clipboard/{fmt}", tags=["export"])
    def export_clipboard(fmt: str, p: ExportIn, user: AuthUser = Depends(current_user)):
        data = _grid_or_400(p.data)
        render = {
            "csv": export.to_csv,
            "tsv": export.to_tsv,
            "markdown": export.to_compact_markdown,
            "html": export.to_html_fragment,
        }.get(fmt)
        if render is None:
            raise HTTPException(status_code=404, detail=f"Unknown format: {fmt}")
        return PlainTextResponse(render(data))

    @app.post("/export/{fmt}", tags=["export"])
    def export_table(fmt: str, p: ExportIn, user: AuthUser = Depends(current_user),
                     svc: Services = Depends(get_services)):
        if fmt not in ("csv", "tsv", "json", "markdown", "excel", "html"):
            raise HTTPException(status_code=404, detail=f"Unknown format: {fmt}")
        data = _grid_or_400(p.data)

        if fmt in ("excel", "html"):
            sub = svc.subscriptions.get_subscription_details(user.id)
            if sub is None or not sub.features.advanced_export:
                raise HTTPException(status_code=403, detail="Advanced export requires a paid subscription")

        if fmt == "csv":
            return _download(export.to_csv(data), "csv")
        if fmt == "tsv":
            return _download(export.to_tsv(data), "tsv")
        if fmt == "json":
            return export.to_json_records(data)
        if fmt == "markdown":
            return _download(export.to_markdown(data, p.title or "Extracted Table"), "md")
        if fmt == "html":
            return _download(export.to_html_document(data, p.title or "Table Export"), "html")

        if p.multiple_tables:
            sheets = [(t.sheet_name, t.data) for t in p.multiple_tables]
        else:
            sheets = [("Extracted Table", data)]
        return _download(export.to_excel(sheets), "xlsx")

    # ========= usage / subscription =========
    @app.get("/usage", tags=["account"], response_model=UsageResponse)
    def get_usage(user: AuthUser = Depends(current_user), svc: Services = Depends(get_services)):
        stats = svc.usage.get_usage_statistics(user.id)
        if stats is None:
            raise HTTPException(status_code=404, detail="Usage statistics not found")
        return UsageResponse(usage=stats)

    @app.post("/usage", tags=["account"], response_model=UsageResponse)
    def track_usage(user: AuthUser = Depends(current_user), svc: Services = Depends(get_services)):
        if not svc.usage.track_extraction(user.id):
            raise HTTPException(status_code=500, detail="Failed to track extraction")
        return UsageResponse(usage=svc.usage.get_usage_statistics(user.id))

    @app.get("/subscription", tags=["account"], response_model=SubscriptionResponse)
    def get_subscription(user: AuthUser = Depends(current_user), svc: Services = Depends(get_services)):
        details = svc.subscriptions.get_subscription_details(user.id)
        if details is None:
            raise HTTPException(status_code=404, detail="Subscription details not found")
        return SubscriptionResponse(subscription=details)

    @app.post("/subscription", tags=["account"], response_model=SubscriptionResponse)
    def update_subscription(p: SubscriptionUpdateIn, user: AuthUser = Depends(current_user),
                            svc: Services = Depends(get_services)):
        if not p.tier:
            raise HTTPException(status_code=400, detail="Subscription tier is required")
        try:
            tier = SubscriptionTier(p.tier)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid subscription tier")

        end_date = None
        if p.end_date:
            try:
                end_date = datetime.fromisoformat(p.end_date.replace("Z", "+00:00"))
            except ValueError:
                raise HTTPException(status_code=400, detail="Invalid end date")
            if end_date.tzinfo is None:
                end_date = end_date.replace(tzinfo=timezone.utc)

        if not svc.subscriptions.update_subscription(user.id, tier, end_date):
            raise HTTPException(status_code=500, detail="Failed to update subscription")
        return SubscriptionResponse(subscription=svc.subscriptions.get_subscription_details(user.id))

    return app

app = create_app()
