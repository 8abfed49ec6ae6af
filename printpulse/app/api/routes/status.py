"""Read-only overlay endpoints."""

import base64
import binascii
import logging
from dataclasses import dataclass

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import Response

from printpulse.app.schemas.printer import PrinterConfig, PrinterConfigResponse
from printpulse.app.schemas.status import ErrorStatus, OverlayDisplay, ResolvedStatus
from printpulse.app.services.camera import CameraFeed, camera_transform
from printpulse.app.services.overlay import OverlayBoard
from printpulse.app.services.status_poller import StatusPoller

logger = logging.getLogger(__name__)
router = APIRouter(tags=["status"])


@dataclass
class OverlayRuntime:
    """Everything the routes read, created once at startup."""

    config: PrinterConfig
    poller: StatusPoller
    board: OverlayBoard
    camera: CameraFeed


def get_runtime(request: Request) -> OverlayRuntime:
    runtime = getattr(request.app.state, "overlay", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Overlay is not running")
    return runtime


@router.get("/status", response_model=OverlayDisplay)
async def get_status(runtime: OverlayRuntime = Depends(get_runtime)):
    """Current overlay text, as the template renders it."""
    return runtime.board.display


@router.get("/status/raw", response_model=ResolvedStatus | ErrorStatus)
async def get_raw_status(runtime: OverlayRuntime = Depends(get_runtime)):
    """Result of the last poll cycle."""
    if runtime.poller.last_result is None:
        raise HTTPException(status_code=404, detail="No status yet")
    return runtime.poller.last_result


@router.get("/status/debug")
async def get_debug_info(runtime: OverlayRuntime = Depends(get_runtime)):
    if not runtime.config.debug:
        raise HTTPException(status_code=404, detail="Debug mode is off")
    if runtime.poller.debug_info is None:
        raise HTTPException(status_code=404, detail="No diagnostics yet")
    return runtime.poller.debug_info


@router.get("/thumbnail")
async def get_thumbnail(runtime: OverlayRuntime = Depends(get_runtime)):
    """PNG embedded in the file being printed."""
    data = runtime.board.thumbnail
    if not data:
        raise HTTPException(status_code=404, detail="No thumbnail")
    try:
        image = base64.b64decode(data)
    except (binascii.Error, ValueError) as e:
        logger.warning(f"Thumbnail data could not be decoded: {e}")
        raise HTTPException(status_code=404, detail="No thumbnail")
    return Response(
        content=image,
        media_type="image/png",
        headers={"Cache-Control": "no-cache"},
    )


@router.get("/config", response_model=PrinterConfigResponse)
async def get_config(runtime: OverlayRuntime = Depends(get_runtime)):
    config = runtime.config
    return PrinterConfigResponse(
        name=config.name,
        ip=config.ip,
        camera_url=config.camera,
        camera_transform=camera_transform(config.flip_horizontal, config.flip_vertical),
        camera_state=runtime.camera.state.value,
        show_chamber=config.show_chamber,
        update_interval=config.update_interval,
        debug=config.debug,
    )
