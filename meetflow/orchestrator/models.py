"""
Pydantic models for the Meetflow command API

Response bodies for the HTTP commands and inbound WebSocket messages.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class CommandResponse(BaseModel):
    """Result of a lifecycle command"""
    success: bool = Field(..., description="Whether the command changed anything")
    command: str = Field(..., description="Command name")
    state: str = Field(..., description="Orchestrator state after the command")
    session_id: Optional[str] = Field(None, description="Active recording session, if any")
    message: str = ""


class HealthResponse(BaseModel):
    """Health check"""
    status: str = Field(..., description="healthy | loading | degraded")
    service: str = "meetflow"
    state: str
    readiness: Dict[str, Any] = Field(default_factory=dict)
    detection_active: bool = False
    redis_connected: bool = False
    uptime_seconds: float = 0.0


class VideoFrameMessage(BaseModel):
    """One camera frame sent over the video WebSocket"""
    image: str = Field(..., description="Base64-encoded image")
    width: Optional[int] = None
    height: Optional[int] = None


class SessionEventsResponse(BaseModel):
    """Page of events replayed from a session's Redis stream"""
    session_id: str
    events: List[Dict[str, Any]] = Field(default_factory=list)
    last_id: str = Field(..., description="Pass back as last_id to read the next page")
