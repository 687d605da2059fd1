"""
Generation Slot API Routes.

Slot configuration: profile binding, enablement and auto-generation.
"""

from dataclasses import asdict

from fastapi import APIRouter, Path

from ideaforge.api.deps import CurrentSubject, Services
from ideaforge.core.generation.scheduler import SlotView
from ideaforge.core.schemas import (
    EnsureSlotsRequest,
    ErrorResponse,
    SlotResponse,
    SlotUpdate,
    SuccessResponse,
)

router = APIRouter(prefix="/slots", tags=["Slots"])


def _to_response(view: SlotView) -> SlotResponse:
    return SlotResponse.model_validate(asdict(view))


@router.get("", response_model=list[SlotResponse])
async def list_slots(
    services: Services,
    subject: CurrentSubject,
) -> list[SlotResponse]:
    views = await services.scheduler.list_slots()
    return [_to_response(view) for view in views]


@router.post("/ensure", response_model=list[SlotResponse])
async def ensure_slots(
    body: EnsureSlotsRequest,
    services: Services,
    subject: CurrentSubject,
) -> list[SlotResponse]:
    """Create the missing slots numbered 1..count."""
    views = await services.scheduler.ensure_slots(body.count)
    return [_to_response(view) for view in views]


@router.get("/countdowns", response_model=SuccessResponse)
async def get_countdowns(
    services: Services,
    subject: CurrentSubject,
) -> SuccessResponse:
    """Minutes until the next auto-generation, keyed by slot number."""
    remaining = await services.scheduler.countdowns()
    return SuccessResponse(data={str(slot): minutes for slot, minutes in remaining.items()})


@router.get("/{slot_number}", response_model=SlotResponse, responses={404: {"model": ErrorResponse}})
async def get_slot(
    services: Services,
    subject: CurrentSubject,
    slot_number: int = Path(ge=1),
) -> SlotResponse:
    return _to_response(await services.scheduler.get_slot(slot_number))


@router.put(
    "/{slot_number}",
    response_model=SlotResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def update_slot(
    body: SlotUpdate,
    services: Services,
    subject: CurrentSubject,
    slot_number: int = Path(ge=1),
) -> SlotResponse:
    """
    Update a slot.

    Turning auto-generation on schedules the first run one interval from
    now; turning it off clears the schedule. Rejected with 409 while the
    slot has a generation in progress.
    """
    changes = {}
    if "profile_id" in body.model_fields_set:
        changes["profile_id"] = body.profile_id

    view = await services.scheduler.update_slot(
        slot_number,
        is_enabled=body.is_enabled,
        auto_generate=body.auto_generate,
        interval_minutes=body.auto_generate_interval_minutes,
        **changes,
    )
    return _to_response(view)
