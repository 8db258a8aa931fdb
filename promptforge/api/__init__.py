"""
HTTP API Layer.

FastAPI application exposing refine/generate/feedback/history endpoints on
top of the gateway and orchestration layers.
"""

from promptforge.api.app import create_app
from promptforge.api.services import GatewayServices

__all__ = ["create_app", "GatewayServices"]
