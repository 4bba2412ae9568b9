from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

from flask import Flask, jsonify, request

from .clock import Clock, SystemClock, parse_local_date, parse_local_datetime
from .config import BookingSettings
from .errors import (
    AuthorizationError,
    BookingError,
    ConflictError,
    NotFoundError,
    PolicyViolation,
    TransientFailure,
    ValidationError,
)
from .models import ReservationStatus
from .orchestrator import BookingOrchestrator, BookingOutcome, BookingRequest
from .policies import standing_for_strikes
from .slots import next_day, previous_day
from .yaml_store import ReservationYamlRepository

ACTOR_HEADER = "X-User-Id"


def _status_code(error: BookingError) -> int:
    if isinstance(error, AuthorizationError):
        return 401 if not request.headers.get(ACTOR_HEADER) else 403
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, PolicyViolation):
        return 422
    if isinstance(error, ConflictError):
        return 409
    if isinstance(error, TransientFailure):
        return 503
    return 500


def _parse_optional_datetime(value: Any, field: str) -> datetime | None:
    if value in (None, ""):
        return None
    return parse_local_datetime(value, field)


def create_app(
    data_dir: str | Path = "data",
    clock: Clock | None = None,
    settings: BookingSettings | None = None,
) -> Flask:
    app = Flask(__name__)
    effective_clock = clock or SystemClock()
    effective_settings = settings or BookingSettings()
    repository = ReservationYamlRepository(data_dir, settings=effective_settings)
    orchestrator = BookingOrchestrator(repository, clock=effective_clock, settings=effective_settings)
    app.config["ORCHESTRATOR"] = orchestrator
    app.config["REPOSITORY"] = repository

    def actor_id() -> str | None:
        value = request.headers.get(ACTOR_HEADER, "").strip()
        return value or None

    def payload() -> dict[str, Any]:
        body = request.get_json(silent=True)
        return body if isinstance(body, dict) else {}

    def failure(error: BookingError) -> Any:
        code = _status_code(error)
        if code >= 500:
            app.logger.error("Booking request failed: %s", error.message)
        return jsonify({"ok": False, "message": error.message, "error": error.to_dict()}), code

    def respond(outcome: BookingOutcome[Any], key: str, serialize: Any = None, status: int = 200) -> Any:
        if outcome.error is not None:
            return failure(outcome.error)
        value = outcome.value
        if serialize is not None:
            value = serialize(value)
        return jsonify({"ok": True, key: value}), status

    def reservation_json(record: Any) -> dict[str, Any]:
        serialized = record.to_dict()
        serialized["effective_status"] = record.effective_status(effective_clock.now()).value
        return serialized

    @app.errorhandler(BookingError)
    def handle_booking_error(error: BookingError) -> Any:
        return failure(error)

    @app.after_request
    def add_cors_headers(response: Any) -> Any:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,PATCH,DELETE,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = f"Content-Type,{ACTOR_HEADER}"
        return response

    @app.get("/api/workstations")
    def list_workstations() -> Any:
        rows = sorted(repository.list_workstations(), key=lambda row: (row.room_id, row.name))
        return jsonify({"ok": True, "workstations": [row.to_dict() for row in rows]})

    @app.get("/api/workstations/<workstation_id>/time-slots")
    def get_time_slots(workstation_id: str) -> Any:
        day = parse_local_date(request.args.get("date"), default=effective_clock.now().date())
        outcome = orchestrator.available_slots(workstation_id, day)
        if outcome.error is not None:
            return failure(outcome.error)
        return jsonify(
            {
                "ok": True,
                "workstation_id": workstation_id,
                "date": day.isoformat(),
                "slots": [slot.to_dict() for slot in outcome.value or []],
            }
        )

    @app.get("/api/calendar/navigate")
    def navigate_calendar() -> Any:
        today = effective_clock.now().date()
        current = parse_local_date(request.args.get("date"), default=today)
        direction = str(request.args.get("direction", "next")).lower()
        if direction == "previous":
            target = previous_day(current, today)
        elif direction == "next":
            target = next_day(current)
        elif direction == "today":
            target = today
        else:
            raise ValidationError("direction must be previous, next or today.", field="direction")
        return jsonify({"ok": True, "date": target.isoformat()})

    @app.get("/api/reservations/check-availability")
    def check_availability() -> Any:
        outcome = orchestrator.check_availability(
            str(request.args.get("workstation_id", "")),
            parse_local_datetime(request.args.get("start"), "start"),
            parse_local_datetime(request.args.get("end"), "end"),
            request.args.get("exclude_reservation_id") or None,
        )
        return respond(outcome, "available")

    @app.get("/api/reservations/can-reserve")
    def can_reserve() -> Any:
        outcome = orchestrator.can_make_reservation(actor_id(), parse_local_datetime(request.args.get("start"), "start"))
        return respond(
            outcome,
            "decision",
            lambda decision: {
                "allowed": decision.allowed,
                "earliest_start": (
                    decision.earliest_start.isoformat(timespec="minutes") if decision.earliest_start else None
                ),
                "message": decision.message,
            },
        )

    @app.get("/api/reservations/has-active")
    def has_active() -> Any:
        return respond(orchestrator.has_active_reservation(actor_id()), "has_active")

    @app.get("/api/reservations/validate-duration")
    def validate_duration() -> Any:
        outcome = orchestrator.validate_duration(
            actor_id(),
            parse_local_datetime(request.args.get("start"), "start"),
            parse_local_datetime(request.args.get("end"), "end"),
        )
        return respond(outcome, "max_duration_hours")

    @app.get("/api/reservations/<reservation_id>/can-cancel")
    def can_cancel(reservation_id: str) -> Any:
        return respond(orchestrator.can_cancel(reservation_id, actor_id()), "decision", lambda decision: decision.to_dict())

    @app.get("/api/users/<user_id>/reservations/upcoming")
    def upcoming(user_id: str) -> Any:
        outcome = orchestrator.upcoming_reservations(user_id, actor_id())
        return respond(outcome, "reservations", lambda rows: [reservation_json(row) for row in rows])

    @app.get("/api/users/<user_id>/reservations/stats")
    def stats(user_id: str) -> Any:
        return respond(orchestrator.reservation_stats(user_id, actor_id()), "stats")

    @app.post("/api/reservations")
    def create_reservation() -> Any:
        body = payload()
        booking = BookingRequest(
            actor_id=actor_id(),
            workstation_id=str(body.get("workstation_id", "")).strip(),
            start=parse_local_datetime(body.get("start"), "start"),
            end=parse_local_datetime(body.get("end"), "end"),
            notes=(str(body["notes"]) if body.get("notes") else None),
        )
        return respond(orchestrator.submit(booking), "reservation", reservation_json, status=201)

    @app.patch("/api/reservations/<reservation_id>")
    def update_reservation(reservation_id: str) -> Any:
        body = payload()
        outcome = orchestrator.edit(
            reservation_id,
            actor_id(),
            start=_parse_optional_datetime(body.get("start"), "start"),
            end=_parse_optional_datetime(body.get("end"), "end"),
            notes=(str(body["notes"]) if body.get("notes") is not None else None),
        )
        return respond(outcome, "reservation", reservation_json)

    @app.patch("/api/reservations/<reservation_id>/status")
    def update_status(reservation_id: str) -> Any:
        raw_status = str(payload().get("status", "")).upper()
        try:
            status = ReservationStatus(raw_status)
        except ValueError as error:
            raise ValidationError(f"Unknown reservation status: {raw_status or '(empty)'}", field="status") from error
        return respond(orchestrator.set_status(reservation_id, actor_id(), status), "reservation", reservation_json)

    @app.post("/api/reservations/<reservation_id>/cancel")
    def cancel_reservation(reservation_id: str) -> Any:
        return respond(orchestrator.cancel(reservation_id, actor_id()), "reservation", reservation_json)

    @app.post("/api/reservations/<reservation_id>/cancel-with-reason")
    def cancel_with_reason(reservation_id: str) -> Any:
        reason = payload().get("reason")
        outcome = orchestrator.cancel_with_reason(reservation_id, actor_id(), str(reason) if reason is not None else None)
        return respond(outcome, "reservation", reservation_json)

    @app.delete("/api/reservations/<reservation_id>")
    def delete_reservation(reservation_id: str) -> Any:
        return respond(orchestrator.delete(reservation_id, actor_id()), "reservation_id")

    def user_json(user: Any) -> dict[str, Any]:
        serialized = user.to_dict()
        serialized["standing"] = standing_for_strikes(user.strike_count).value
        return serialized

    @app.post("/api/penalties/add-strike/<user_id>")
    def add_strike(user_id: str) -> Any:
        reason = payload().get("reason")
        outcome = orchestrator.add_strike(user_id, actor_id(), str(reason).strip() if reason else None)
        return respond(outcome, "user", user_json)

    @app.post("/api/penalties/remove-strike/<user_id>")
    def remove_strike(user_id: str) -> Any:
        return respond(orchestrator.remove_strike(user_id, actor_id()), "user", user_json)

    @app.post("/api/penalties/reset-strikes/<user_id>")
    def reset_strikes(user_id: str) -> Any:
        return respond(orchestrator.reset_strikes(user_id, actor_id()), "user", user_json)

    return app
