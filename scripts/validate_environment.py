#!/usr/bin/env python3
"""Validate local booking-service environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sqlite3
import sys
import tempfile
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.domain.errors import ResourceUnavailable
from backend.domain.models import (
    Actor,
    BookingRequest,
    RecurrenceFrequency,
    RecurrenceRule,
    Role,
    TimeInterval,
)
from backend.repository.data_repository import DataRepository
from backend.services.approval_service import ApprovalService
from backend.services.conflict_index import ConflictIndex
from backend.services.scheduling_service import BookingScheduler
from backend.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="booking-env-")

    # CHECK 1 — Python version >= 3.11
    if sys.version_info >= (3, 11):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.11",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2 — Required packages importable with versions
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("numpy", "numpy"),
        ("pandas", "pandas"),
        ("dateutil", "python-dateutil"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    from importlib.metadata import PackageNotFoundError, version

    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except (ImportError, PackageNotFoundError) as exc:
            import_errors.append(f"{module_name} ({exc})")
    if import_errors:
        ok, line = _print_result(
            "Required packages",
            False,
            "missing/unimportable -> " + "; ".join(import_errors),
        )
    else:
        ok, line = _print_result("Required packages: all importable", True)
    results.append(line)
    all_passed = all_passed and ok

    try:
        base_settings = get_settings()
        temp_db_path = Path(temp_dir) / "booking_validation.db"
        validation_settings = replace(
            base_settings,
            database_path=temp_db_path,
            seed_demo_data=True,
        )
        repository = DataRepository(validation_settings)

        # CHECK 3 — Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4 — Demo catalog seeding
        try:
            repository.seed_demo_data()
            with sqlite3.connect(temp_db_path) as conn:
                cursor = conn.cursor()
                cursor.execute("SELECT COUNT(*) FROM Resources;")
                resources = int(cursor.fetchone()[0])
                cursor.execute("SELECT COUNT(*) FROM Users;")
                users = int(cursor.fetchone()[0])
            if resources == 0 or users == 0:
                raise RuntimeError(f"expected seeded rows, got resources={resources} users={users}")
            ok, line = _print_result(
                "Demo catalog",
                True,
                f": {resources} resources, {users} users",
            )
        except Exception as exc:
            ok, line = _print_result("Demo catalog", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5 — Recurring submission, approval and conflict detection
        index = ConflictIndex()
        scheduler = BookingScheduler(index=index, repository=repository, settings=validation_settings)
        approvals = ApprovalService(index=index, repository=repository, settings=validation_settings)
        lecturer = Actor(uid="lect-001", role=Role.LECTURER)
        admin = Actor(uid="admin-001", role=Role.ADMIN)
        start = datetime(2026, 2, 2, 9, tzinfo=timezone.utc)
        slot = TimeInterval(start=start, end=start + timedelta(hours=2))
        try:
            group = scheduler.submit(
                BookingRequest(
                    requester_id=lecturer.uid,
                    resource_id="res-lab-a",
                    interval=slot,
                    purpose="Environment check",
                    recurrence=RecurrenceRule(
                        frequency=RecurrenceFrequency.WEEKLY,
                        until=date(2026, 2, 23),
                    ),
                ),
                actor=lecturer,
            )
            approvals.approve(admin, group.occurrences[0].occurrence_id)
            conflict_detected = False
            try:
                scheduler.submit(
                    BookingRequest(
                        requester_id=admin.uid,
                        resource_id="res-lab-a",
                        interval=slot,
                        purpose="Overlap probe",
                    ),
                    actor=admin,
                )
            except ResourceUnavailable:
                conflict_detected = True
            if not conflict_detected:
                raise RuntimeError("overlapping submission was accepted")
            ok, line = _print_result(
                "Scheduling round-trip",
                True,
                f": {len(group.occurrences)} occurrences, conflict detected",
            )
        except Exception as exc:
            ok, line = _print_result("Scheduling round-trip", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Booking Service Environment Validation")
    print(SEPARATOR_LINE)
    for line in results:
        print(f" {line}")
    print(SEPARATOR_LINE)
    if all_passed:
        print(" All checks passed. Environment is ready.")
        print(SEPARATOR_LINE)
        return 0
    print(" One or more checks failed.")
    print(SEPARATOR_LINE)
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
