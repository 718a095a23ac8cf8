"""Request/Response schemas for the FastAPI endpoints."""

from __future__ import annotations

from pydantic import BaseModel


class SavePreferencesResponse(BaseModel):
    success: bool = True
    message: str = "Preferences saved successfully"
    cleared_cache: int = 0


class ClearAICacheResponse(BaseModel):
    success: bool = True
    cleared_count: int = 0
