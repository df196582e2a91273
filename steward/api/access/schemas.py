"""
Access Schemas

Pydantic models for the route check endpoint.
"""

from typing import Dict, Optional

from pydantic import BaseModel, Field


class RouteCheckRequest(BaseModel):
    """Path the session layer is about to serve."""

    path: str = Field(..., min_length=1, max_length=500)
    query_params: Dict[str, str] = {}
    # End user's address and agent as seen by the session layer.
    # When omitted, the headers of this call are used.
    ip: Optional[str] = Field(None, max_length=64)
    user_agent: Optional[str] = Field(None, max_length=500)


class RouteCheckResponse(BaseModel):
    """Route check verdict."""

    allowed: bool
    reason: Optional[str] = None
    permission: Optional[str] = None
