"""API routes for the podcast pipeline."""

from castforge.api import highlight_routes, routes, voice_routes, websocket

__all__ = ["highlight_routes", "routes", "voice_routes", "websocket"]
