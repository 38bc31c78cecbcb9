"""
Navigation endpoints
====================

POST /api/v1/navigation/route               -- turn-by-turn route between two points
POST /api/v1/navigation/reroute             -- new route only when off the old one
POST /api/v1/navigation/current-instruction -- instruction due at the current position
"""

from fastapi import APIRouter, Depends, Request

from ridedispatch.api.dependencies import get_navigation
from ridedispatch.api.middleware import limiter
from ridedispatch.api.schemas import (
    CurrentInstructionRequest,
    CurrentInstructionResponse,
    InstructionSchema,
    RerouteRequest,
    RerouteResponse,
    RouteRequest,
    RouteSchema,
)
from ridedispatch.domain import navigation as rules
from ridedispatch.services.navigation import NavigationService

router = APIRouter(prefix="/navigation", tags=["navigation"])


@router.post("/route", response_model=RouteSchema, summary="Get turn-by-turn route")
@limiter.limit("100/minute")
async def get_route(
    request: Request,
    body: RouteRequest,
    navigation: NavigationService = Depends(get_navigation),
):
    route = await navigation.get_instructions(
        body.start.to_location(), body.end.to_location()
    )
    return RouteSchema.from_entity(route)


@router.post("/reroute", response_model=RerouteResponse, summary="Reroute if off route")
@limiter.limit("100/minute")
async def reroute(
    request: Request,
    body: RerouteRequest,
    navigation: NavigationService = Depends(get_navigation),
):
    new_route = await navigation.get_reroute(
        body.current.to_location(),
        body.destination.to_location(),
        body.route.to_entity(),
        body.threshold_m,
    )
    if new_route is None:
        return RerouteResponse(off_route=False)
    return RerouteResponse(off_route=True, route=RouteSchema.from_entity(new_route))


@router.post(
    "/current-instruction",
    response_model=CurrentInstructionResponse,
    summary="Instruction to announce at the current position",
)
@limiter.limit("100/minute")
async def current_instruction(
    request: Request,
    body: CurrentInstructionRequest,
    navigation: NavigationService = Depends(get_navigation),
):
    instructions = [i.to_entity() for i in body.instructions]
    current = body.current.to_location()
    due = navigation.get_current_instruction(instructions, current, body.threshold_m)
    if due is None:
        return CurrentInstructionResponse()
    upcoming = rules.next_instruction(instructions, due)
    return CurrentInstructionResponse(
        current=InstructionSchema.from_entity(due),
        next=InstructionSchema.from_entity(upcoming) if upcoming else None,
        spoken=rules.voice_instruction(due),
    )
