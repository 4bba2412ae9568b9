from __future__ import annotations

from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from workstation_booking import BookingError, BookingOrchestrator, BookingRequest, ReservationYamlRepository
from workstation_booking.clock import parse_local_date, parse_local_datetime

mcp = FastMCP(
    "Workstation Booking MCP Server",
    instructions="Browse workstation time slots and manage reservations through the booking core.",
    json_response=True,
)

DATA_DIR = Path(__file__).parent / "data"
REPOSITORY = ReservationYamlRepository(DATA_DIR)
ORCHESTRATOR = BookingOrchestrator(REPOSITORY)


def _result(outcome: Any, serialize: Any = None) -> dict[str, Any]:
    if outcome.error is not None:
        return {"ok": False, "error": outcome.error.to_dict()}
    value = serialize(outcome.value) if serialize is not None else outcome.value
    return {"ok": True, "result": value}


@mcp.resource("booking://workstations")
async def list_workstations() -> list[dict[str, Any]]:
    """List workstations with their room and status."""
    return [row.to_dict() for row in REPOSITORY.list_workstations()]


@mcp.tool()
def list_time_slots(workstation_id: str, day_iso: str) -> dict[str, Any]:
    """Return the hourly slots of a workstation for one day (YYYY-MM-DD)."""
    try:
        day = parse_local_date(day_iso, "day_iso")
    except BookingError as error:
        return {"ok": False, "error": error.to_dict()}
    outcome = ORCHESTRATOR.available_slots(workstation_id, day)
    return _result(outcome, lambda slots: [slot.to_dict() for slot in slots])


@mcp.tool()
def book_workstation(
    user_id: str,
    workstation_id: str,
    start_iso: str,
    end_iso: str,
    notes: str | None = None,
) -> dict[str, Any]:
    """Create a reservation using local ISO timestamps without offset."""
    try:
        request = BookingRequest(
            actor_id=user_id,
            workstation_id=workstation_id,
            start=parse_local_datetime(start_iso, "start_iso"),
            end=parse_local_datetime(end_iso, "end_iso"),
            notes=notes,
        )
    except BookingError as error:
        return {"ok": False, "error": error.to_dict()}
    return _result(ORCHESTRATOR.submit(request), lambda record: record.to_dict())


@mcp.tool()
def cancel_reservation(user_id: str, reservation_id: str, reason: str | None = None) -> dict[str, Any]:
    """Cancel a reservation. Manager roles must pass a reason of 10 to 500 characters."""
    if reason is None:
        outcome = ORCHESTRATOR.cancel(reservation_id, user_id)
    else:
        outcome = ORCHESTRATOR.cancel_with_reason(reservation_id, user_id, reason)
    return _result(outcome, lambda record: record.to_dict())


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
