from __future__ import annotations

from pathlib import Path
from typing import Any

from mcp.server.fastmcp import FastMCP

from stay_booking import Stay, StayValidationError, StayYamlRepository
from stay_booking import book_stay as _book_stay
from stay_booking import extend_stay as _extend_stay

mcp = FastMCP(
    "Stay Booking MCP Server",
    instructions="Book and extend unit stays using the stay_booking conflict rules.",
    json_response=True,
)

DATA_DIR = Path(__file__).parent / "data"
REPOSITORY = StayYamlRepository(DATA_DIR)


def _stay_payload(stay: Stay) -> dict[str, Any]:
    return {
        "id": stay.id,
        "guest": stay.guest,
        "unit": stay.unit,
        "check_in": stay.check_in.isoformat(),
        "check_out": stay.check_out.isoformat(),
        "nights": stay.nights,
    }


@mcp.tool()
def list_stays(unit: str | None = None) -> list[dict[str, Any]]:
    """Return stored stays, optionally filtered by unit."""
    stays = REPOSITORY.get_stays()
    return [_stay_payload(stay) for stay in stays if unit is None or stay.unit == unit]


@mcp.tool()
def book_stay(guest: str, unit: str, check_in: str, nights: int) -> dict[str, Any]:
    """Create a stay; check_in is an ISO date (YYYY-MM-DD)."""
    try:
        created, result = _book_stay(REPOSITORY, guest, unit, check_in, nights)
    except StayValidationError as error:
        return {"ok": False, "message": str(error)}
    if created is None:
        return {"ok": False, "message": result.message}
    return {"ok": True, "stay": _stay_payload(created)}


@mcp.tool()
def extend_stay(guest: str, unit: str, check_in: str, nights: int) -> dict[str, Any]:
    """Extend an existing stay to a larger number of nights."""
    try:
        updated, result = _extend_stay(REPOSITORY, guest, unit, check_in, nights)
    except StayValidationError as error:
        return {"ok": False, "message": str(error)}
    if updated is None:
        return {"ok": False, "message": result.message}
    return {"ok": True, "stay": _stay_payload(updated)}


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
