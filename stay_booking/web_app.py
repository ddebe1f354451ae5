from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from flask import Flask, jsonify, request

from .booking import Stay, StayValidationError
from .yaml_store import StayConflictError, StayStorageError, StayYamlRepository, book_stay, extend_stay

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000
BOOKING_ROUTE = "/api/v1/booking"


def create_app(
    data_dir: str | Path = "data",
    now_provider: Callable[[], datetime] | None = None,
) -> Flask:
    app = Flask(__name__)
    repository = StayYamlRepository(data_dir)
    clock: Callable[[], datetime] = now_provider or datetime.now

    @app.after_request
    def add_cors_headers(response: Any) -> Any:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,PUT,PATCH,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response

    @app.errorhandler(404)
    def not_found(_error: Any) -> Any:
        return jsonify({"message": "Not found"}), 404

    @app.errorhandler(StayValidationError)
    def invalid_input(error: StayValidationError) -> Any:
        return jsonify({"message": str(error)}), 422

    @app.errorhandler(StayConflictError)
    def write_conflict(error: StayConflictError) -> Any:
        return jsonify({"message": str(error)}), 409

    @app.errorhandler(StayStorageError)
    def storage_failure(_error: StayStorageError) -> Any:
        return jsonify({"message": "The booking store is unavailable."}), 500

    @app.get("/")
    def health_check() -> Any:
        return jsonify({"message": "OK"})

    @app.get("/api-docs")
    def api_docs() -> Any:
        return jsonify(_openapi_document())

    @app.put(BOOKING_ROUTE)
    @app.put(BOOKING_ROUTE + "/")
    def create_booking() -> Any:
        fields = _read_booking_payload()
        created, result = book_stay(repository, *fields, now=clock())
        if created is None:
            return jsonify(result.message), 400
        return jsonify(_serialize_stay(created))

    @app.patch(BOOKING_ROUTE)
    @app.patch(BOOKING_ROUTE + "/")
    def extend_booking() -> Any:
        fields = _read_booking_payload()
        updated, result = extend_stay(repository, *fields, now=clock())
        if updated is None:
            return jsonify(result.message), 400
        return jsonify(_serialize_stay(updated))

    return app


def _read_booking_payload() -> tuple[Any, Any, Any, Any]:
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise StayValidationError("Request body must be a JSON object.")

    missing = [key for key in ("guestName", "unitID", "checkInDate", "numberOfNights") if key not in payload]
    if missing:
        raise StayValidationError(f"Missing fields: {', '.join(missing)}")

    return payload["guestName"], payload["unitID"], payload["checkInDate"], payload["numberOfNights"]


def _serialize_stay(stay: Stay) -> dict[str, Any]:
    return {
        "id": stay.id,
        "guestName": stay.guest,
        "unitID": stay.unit,
        "checkInDate": stay.check_in.isoformat(),
        "numberOfNights": stay.nights,
    }


def _openapi_document() -> dict[str, Any]:
    booking_input = {"$ref": "#/components/schemas/BookingInput"}
    booking_responses = {
        "200": {
            "description": "OK",
            "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Booking"}}},
        },
        "400": {
            "description": "Booking rejected",
            "content": {"application/json": {"schema": {"type": "string"}}},
        },
        "422": {
            "description": "Invalid input",
            "content": {"application/json": {"schema": {"$ref": "#/components/schemas/MessageResponse"}}},
        },
    }
    return {
        "openapi": "3.0.1",
        "info": {"title": "OpenAPI definition", "version": "v0"},
        "servers": [{"url": f"http://localhost:{DEFAULT_PORT}", "description": "Generated server url"}],
        "tags": [{"name": "booking-controller"}, {"name": "system"}],
        "paths": {
            "/": {
                "get": {
                    "summary": "Health check",
                    "tags": ["system"],
                    "operationId": "helloWorld",
                    "responses": {
                        "200": {
                            "description": "OK",
                            "content": {"application/json": {"schema": {"$ref": "#/components/schemas/MessageResponse"}}},
                        }
                    },
                }
            },
            BOOKING_ROUTE: {
                "put": {
                    "summary": "Create booking",
                    "tags": ["booking-controller"],
                    "requestBody": {"required": True, "content": {"application/json": {"schema": booking_input}}},
                    "responses": booking_responses,
                },
                "patch": {
                    "summary": "Extend booking",
                    "tags": ["booking-controller"],
                    "requestBody": {"required": True, "content": {"application/json": {"schema": booking_input}}},
                    "responses": booking_responses,
                },
            },
        },
        "components": {
            "schemas": {
                "BookingInput": {
                    "type": "object",
                    "properties": {
                        "guestName": {"type": "string"},
                        "unitID": {"type": "string"},
                        "checkInDate": {"type": "string", "format": "date"},
                        "numberOfNights": {"type": "integer", "format": "int32"},
                    },
                },
                "Booking": {
                    "type": "object",
                    "properties": {
                        "id": {"type": "string"},
                        "guestName": {"type": "string"},
                        "unitID": {"type": "string"},
                        "checkInDate": {"type": "string", "format": "date"},
                        "numberOfNights": {"type": "integer", "format": "int32"},
                    },
                },
                "MessageResponse": {
                    "type": "object",
                    "properties": {"message": {"type": "string"}},
                },
            }
        },
    }


if __name__ == "__main__":
    app = create_app()
    app.run(host=DEFAULT_HOST, port=DEFAULT_PORT, debug=False)
