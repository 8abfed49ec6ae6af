from pydantic import BaseModel, Field


class PrinterConfig(BaseModel):
    """Resolved identity and display flags for the one printer being watched."""

    name: str = "Printer"
    ip: str = Field(..., min_length=1)
    camera: str = ""  # Empty = no camera feed
    flip_horizontal: bool = False
    flip_vertical: bool = False
    show_chamber: bool = False
    update_interval: int = 2000  # ms
    debug: bool = False


class PrinterConfigResponse(BaseModel):
    name: str
    ip: str
    camera_url: str
    camera_transform: str
    camera_state: str
    show_chamber: bool
    update_interval: int
    debug: bool
