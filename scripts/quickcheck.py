from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
import traceback

from workstation_booking import (
    BookingOrchestrator,
    BookingRequest,
    FixedClock,
    ReservationYamlRepository,
    seed_demo_data,
)


def main() -> int:
    print("[INFO] Workstation Booking Quick Check")
    print("[INFO] Seeding demo inventory...")

    repo = ReservationYamlRepository("data")
    seeded = seed_demo_data(repo)
    print(f"[OK] Workstations: {len(seeded['workstations'])}, users: {len(seeded['users'])}")

    now = datetime.now().replace(hour=7, minute=0, second=0, microsecond=0) + timedelta(days=1)
    orchestrator = BookingOrchestrator(repo, clock=FixedClock(now))

    outcome = orchestrator.submit(
        BookingRequest(
            actor_id="student",
            workstation_id="ws-11",
            start=now.replace(hour=10),
            end=now.replace(hour=12),
        )
    )
    if not outcome.ok:
        print(f"[WARN] Booking refused: {outcome.error.message if outcome.error else 'unknown'}")
    else:
        record = outcome.value
        print(
            "[OK] Reserved slot: "
            f"{record.workstation_id},"
            f"{record.start.isoformat(timespec='minutes')}"
            f"~{record.end.isoformat(timespec='minutes')} ({record.status.value})"
        )

    slots = orchestrator.available_slots("ws-11", now.date())
    free = [slot.label for slot in slots.value or [] if slot.available]
    print(f"[OK] Free slots on {now.date().isoformat()}: {', '.join(free) or 'none'}")
    print(f"[OK] Reservations YAML: {Path('data/reservations.yaml').resolve()}")
    print(f"[OK] Event Log YAML: {Path('data/reservation_events.yaml').resolve()}")

    print("[DONE] Quick check completed successfully.")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception:
        print("[ERROR] Quick check failed.")
        traceback.print_exc()
        raise SystemExit(1)
