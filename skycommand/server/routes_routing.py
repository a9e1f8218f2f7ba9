"""
Provider routing REST API routes.
"""

from fastapi import APIRouter

from skycommand.atc.routing import supports_vision
from skycommand.server.app import get_gateway
from skycommand.server.schemas import RouteRequest, RouteResponse

router = APIRouter()


@router.post("/route", response_model=RouteResponse)
async def route_key(request: RouteRequest) -> RouteResponse:
    """Show which provider and model an API key would use."""
    route = get_gateway().route_for(request.api_key)

    return RouteResponse(
        provider=route.provider,
        label=route.label,
        base_url=route.base_url,
        model=route.model,
        vision=supports_vision(route),
    )
