"""HTTP surface for health snapshots and on-demand diagnostic tests."""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict

from ..auth.auth import verify_token
from ..health.service import HealthService, ResponseCode, ServiceResponse

HEALTH_CODE_HEADER = "X-Health-Code"

HTTP_STATUS = {
    ResponseCode.OK: 200,
    ResponseCode.TIMEOUT: 200,
    ResponseCode.VALIDATION_ERROR: 422,
    ResponseCode.INTERNAL_ERROR: 500,
}

router = APIRouter(prefix="/health", tags=["health"])


class TestRequestBody(BaseModel):
    """Body of ``POST /health/test``; values are validated by the runner."""

    __test__ = False

    model_config = ConfigDict(extra="forbid")

    component_name: str
    test_type: str
    custom_query: Optional[str] = None


_service: Optional[HealthService] = None
_admin_token_hash: Optional[str] = None


def get_service() -> HealthService:
    if _service is None:
        raise HTTPException(status_code=503, detail="Health service is not configured")
    return _service


def set_service(service: Optional[HealthService], admin_token_hash: Optional[str] = None) -> None:
    """Install the service the routes delegate to, plus the optional admin token hash."""
    global _service, _admin_token_hash
    _service = service
    _admin_token_hash = admin_token_hash


def require_admin(x_admin_token: Optional[str] = Header(default=None)) -> None:
    if _admin_token_hash is None:
        return
    if not x_admin_token or not verify_token(x_admin_token, _admin_token_hash):
        raise HTTPException(status_code=401, detail="Invalid or missing admin token")


def to_http(result: ServiceResponse) -> Response:
    status_code = HTTP_STATUS[result.code]
    headers = {HEALTH_CODE_HEADER: result.code.value}
    if isinstance(result.body, bytes):
        if result.filename:
            headers["Content-Disposition"] = f'attachment; filename="{result.filename}"'
        return Response(
            content=result.body,
            status_code=status_code,
            media_type=result.content_type,
            headers=headers,
        )
    body = result.body
    if isinstance(body, BaseModel):
        body = body.model_dump(mode="json")
    return JSONResponse(content=body, status_code=status_code, headers=headers)


@router.get("", dependencies=[Depends(require_admin)])
async def get_health(
    mode: str = Query(default="quick"),
    force: bool = Query(default=False),
    export_format: Optional[str] = Query(default=None, alias="format"),
    service: HealthService = Depends(get_service),
) -> Response:
    """Current snapshot for ``mode``, or an export download when ``format`` is set."""
    return to_http(await service.health(mode=mode, force=force, export_format=export_format))


@router.post("/test", dependencies=[Depends(require_admin)])
async def run_test(
    body: TestRequestBody,
    service: HealthService = Depends(get_service),
) -> Response:
    return to_http(
        await service.test(body.component_name, body.test_type, body.custom_query)
    )


@router.get("/components", dependencies=[Depends(require_admin)])
async def list_components(service: HealthService = Depends(get_service)) -> Response:
    return JSONResponse(content={"components": service.components()})


@router.get("/components/{name}", dependencies=[Depends(require_admin)])
async def get_component(
    name: str,
    detailed: bool = Query(default=False),
    service: HealthService = Depends(get_service),
) -> Response:
    """One component from the full snapshot with its health score."""
    return to_http(await service.component(name, detailed=detailed))


def create_app(engine) -> FastAPI:
    """
    Mount the health routes on a new app bound to ``engine``.

    The poller runs for the lifetime of the app and the engine's clients are
    closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        engine.poller.start()
        yield
        await engine.close()

    set_service(engine.service, engine.settings.admin_token_hash)
    app = FastAPI(title=engine.settings.service_name, lifespan=lifespan)
    app.include_router(router)
    return app
