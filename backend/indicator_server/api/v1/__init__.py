"""
API v1 Router

Direct-call indicator endpoints.
"""

from fastapi import APIRouter

from indicator_server.api.v1.endpoints import indicators

router = APIRouter()

router.include_router(indicators.router, tags=["Indicators"])
