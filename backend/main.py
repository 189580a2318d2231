# backend/main.py

# Suppress ResourceWarning from wsdiscovery library (unclosed sockets in daemon threads)
# Must be done before any other imports
import warnings

warnings.filterwarnings("ignore", category=ResourceWarning)
warnings.filterwarnings("ignore", message="unclosed.*socket")
warnings.filterwarnings("ignore", module="wsdiscovery")

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from typing import Any, Dict, Optional
import datetime
import logging
import traceback
from uuid import uuid4

from config import get_settings
from errors import (
    AuthError,
    AuthReason,
    DvrBridgeError,
    NotFoundError,
    PersistenceError,
    UpstreamUnavailableError,
    ValidationError,
)
from integrations.go2rtc_client import get_media_engine
from integrations.webrtc_signaling import get_ice_servers_config
from models import Device, DeviceStatus
from services.discovery import get_discovery_service
from services.registry import get_registry
from services.session_bridge import get_session_bridge
from utils.security import get_token_service

# Load settings
settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="DVR Bridge Backend",
    version="1.0.0",
    description="DVR/IP camera discovery, registry and Alexa WebRTC session bridge over go2rtc"
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins.split(","),
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ---- Exception handlers ----

ERROR_STATUS_CODES = [
    (NotFoundError, 404),
    (ValidationError, 400),
    (AuthError, 401),
    (UpstreamUnavailableError, 502),
    (PersistenceError, 500),
]


def status_code_for(exc: DvrBridgeError) -> int:
    for error_class, status_code in ERROR_STATUS_CODES:
        if isinstance(exc, error_class):
            return status_code
    return 500


@app.exception_handler(DvrBridgeError)
async def dvr_bridge_exception_handler(request: Request, exc: DvrBridgeError):
    """Translate domain errors into JSON with a matching status code"""
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    return JSONResponse(status_code=status_code, content={"success": False, **exc.to_dict()})


# Global exception handler to ensure errors return proper JSON with CORS headers
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch all unhandled exceptions and return proper JSON response"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "detail": str(exc),
            "type": type(exc).__name__,
            "traceback": traceback.format_exc() if settings.debug else None
        }
    )


# ---- Startup event ----

@app.on_event("startup")
async def startup_event():
    """Application startup"""
    logger.info("=" * 60)
    logger.info("DVR Bridge Backend Starting")
    logger.info("=" * 60)
    logger.info(f"Environment: {settings.app_env}")
    logger.info(f"go2rtc API: {settings.go2rtc_api_url}")
    logger.info(f"DVR IP: {settings.dvr_ip or 'not configured'}")
    logger.info(f"Auto-discovery: {settings.auto_discover}")

    try:
        get_registry().load()
    except PersistenceError as e:
        logger.error(f"Failed to load camera registry: {e.message}")

    logger.info("=" * 60)

    if settings.auto_discover:
        get_discovery_service().start_periodic(settings.discovery_interval_seconds)


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown - cleanup background services"""
    logger.info("DVR Bridge Backend Shutting Down")

    await get_discovery_service().stop_periodic()
    await get_session_bridge().close()
    await get_media_engine().close()

    logger.info("Shutdown complete")


# ---- Pydantic models ----

class CameraCreateRequest(BaseModel):
    """Request body for manual camera registration"""
    name: Optional[str] = None
    streamUri: Optional[str] = None
    address: Optional[str] = None
    port: int = 554
    channel: int = Field(default=1, ge=0)


class CameraUpdateRequest(BaseModel):
    """Request body for camera update"""
    name: Optional[str] = None
    streamUri: Optional[str] = None
    address: Optional[str] = None
    port: Optional[int] = None
    channel: Optional[int] = None
    manufacturer: Optional[str] = None
    model: Optional[str] = None
    status: Optional[DeviceStatus] = None


class DVRSetupRequest(BaseModel):
    """Request body for completing setup of a DVR found by subnet sweep"""
    channelCount: int
    username: str = "admin"
    password: str = ""
    port: Optional[int] = None


class StreamStartRequest(BaseModel):
    cameraId: str


# ---- Health check endpoint ----

@app.get("/api/health")
async def health_check():
    """Health check endpoint to verify backend is running"""
    return {
        "status": "ok",
        "version": app.version,
        "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat()
    }


@app.get("/api/status")
async def service_status():
    """
    Service status: camera counts and media engine readiness.

    Returns:
        WebRTC readiness, camera counts by status and discovery state
    """
    registry = get_registry()
    engine_ready = await get_media_engine().is_available()
    discovery = get_discovery_service()

    return {
        "success": True,
        "status": {
            "webrtc": "ready" if engine_ready else "not ready",
            "cameras": registry.count_by_status(),
            "discovery": {
                "running": discovery.is_running,
                "periodic": discovery.is_periodic,
                "lastRun": discovery.last_metrics.to_dict() if discovery.last_metrics else None,
            },
        },
    }


# ---- Camera registry endpoints ----

@app.get("/api/cameras")
async def list_cameras():
    """List all registered cameras in registry order"""
    cameras = get_registry().list()
    return {
        "success": True,
        "count": len(cameras),
        "cameras": [c.to_dict() for c in cameras],
    }


@app.post("/api/cameras/discover")
async def discover_cameras():
    """
    Run discovery now.

    Joins the in-flight run if one is already going.

    Returns:
        Full registry contents, timestamp and discovery method
    """
    logger.info("Discovery requested via API")
    result = await get_discovery_service().run_discovery()
    return {"success": True, **result.to_dict()}


@app.get("/api/cameras/{camera_id}")
async def get_camera(camera_id: str):
    """
    Get camera by ID.

    Returns:
        Camera data or 404 if not found
    """
    camera = get_registry().get(camera_id)
    if not camera:
        raise NotFoundError("Camera", camera_id)
    return {"success": True, "camera": camera.to_dict()}


@app.post("/api/cameras", status_code=201)
async def add_camera(req: CameraCreateRequest):
    """
    Manually add a camera.

    Requires name, streamUri and address.
    """
    missing = [f for f in ("name", "streamUri", "address") if not getattr(req, f)]
    if missing:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing)}",
            field=missing[0],
        )

    logger.info(f"Manually adding camera at {req.address}:{req.port}")
    camera = get_registry().add(Device(
        id=str(uuid4()),
        name=req.name,
        stream_uri=req.streamUri,
        address=req.address,
        port=req.port,
        channel=req.channel,
        manufacturer="Manual",
        model="Custom",
        status=DeviceStatus.UNKNOWN,
    ))
    return {"success": True, "camera": camera.to_dict()}


@app.patch("/api/cameras/{camera_id}")
async def update_camera(camera_id: str, req: CameraUpdateRequest):
    """
    Update camera fields; omitted fields are left unchanged.

    Returns:
        Updated camera data or 404 if not found
    """
    fields = req.model_dump(exclude_none=True)
    if "streamUri" in fields:
        fields["stream_uri"] = fields.pop("streamUri")

    registry = get_registry()
    if not registry.update(camera_id, fields):
        raise NotFoundError("Camera", camera_id)

    return {
        "success": True,
        "message": "Camera updated",
        "camera": registry.get(camera_id).to_dict(),
    }


@app.delete("/api/cameras/{camera_id}")
async def delete_camera(camera_id: str):
    """Remove a camera from the registry"""
    if not get_registry().remove(camera_id):
        raise NotFoundError("Camera", camera_id)
    return {"success": True, "message": "Camera removed"}


@app.post("/api/cameras/{camera_id}/setup")
async def setup_dvr(camera_id: str, req: DVRSetupRequest):
    """
    Replace a "setup required" DVR placeholder with its channels.

    Returns:
        The channel cameras that were created
    """
    logger.info(f"Setting up DVR {camera_id} with {req.channelCount} channels")
    created = get_registry().replace_sentinel(
        camera_id,
        channel_count=req.channelCount,
        username=req.username,
        password=req.password,
        port=req.port,
    )
    return {
        "success": True,
        "count": len(created),
        "cameras": [c.to_dict() for c in created],
    }


# ---- WebRTC endpoints ----

@app.get("/api/webrtc/token")
async def issue_stream_token(cameraId: Optional[str] = None):
    """
    Issue a short-lived access token for one camera.

    Args:
        cameraId: Camera the token grants access to
    """
    if not cameraId:
        raise ValidationError("cameraId query parameter is required", field="cameraId")

    access_token = get_token_service().issue_token(cameraId)
    return {"success": True, **access_token.to_dict()}


@app.get("/api/webrtc/ice-servers")
async def get_ice_servers():
    """ICE servers (STUN/TURN) for browser clients"""
    return {"success": True, "iceServers": get_ice_servers_config(settings)}


def extract_token(request: Request) -> Optional[str]:
    """Token from ?token= or an `Authorization: Bearer` header."""
    token = request.query_params.get("token")
    if token:
        return token
    authorization = request.headers.get("authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


@app.post("/api/stream/start")
async def start_stream(req: StreamStartRequest, request: Request):
    """
    Register a camera's stream with go2rtc.

    Requires a token issued for the same camera.

    Returns:
        go2rtc stream name to play
    """
    token_camera_id = get_token_service().verify_token(extract_token(request))
    if token_camera_id != req.cameraId:
        raise AuthError(AuthReason.INVALID)

    camera = get_registry().get(req.cameraId)
    if not camera:
        raise NotFoundError("Camera", req.cameraId)

    stream_name = f"camera_{camera.id}"
    await get_media_engine().register_stream(stream_name, camera.stream_uri)
    logger.info(f"Added stream {stream_name} to go2rtc")

    return {"success": True, "streamName": stream_name}


# ---- Alexa Smart Home endpoints ----

@app.get("/api/alexa")
async def alexa_status():
    return {"message": "Alexa endpoint is active. Use POST for directives."}


@app.post("/api/alexa")
async def alexa_directive(body: Dict[str, Any]):
    """
    Alexa Smart Home skill entry point.

    Always answers 200 with an Alexa event; failures are ErrorResponse events.
    """
    return await get_session_bridge().handle_directive(body)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
    )
