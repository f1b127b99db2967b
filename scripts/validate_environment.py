#!/usr/bin/env python3
"""Validate local temple visit service environment readiness."""

from __future__ import annotations

import importlib
import shutil
import sqlite3
import sys
import tempfile
from dataclasses import replace
from datetime import date
from importlib.metadata import version
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from backend.repository.data_repository import DataRepository
from backend.services.capacity_ledger import CapacityLedger
from backend.services.qr_service import QrCodeService, QrPayload
from backend.services.simulation_service import build_baseline
from backend.utils.config import get_settings

SEPARATOR_LINE = "=" * 44


def _print_result(name: str, success: bool, detail: str = "") -> tuple[bool, str]:
    if success:
        return True, f"[PASS] {name}{detail}"
    return False, f"[FAIL] {name}: {detail}"


def main() -> int:
    results: list[str] = []
    all_passed = True
    temp_dir = tempfile.mkdtemp(prefix="temple-env-")

    # CHECK 1: Python version >= 3.10
    if sys.version_info >= (3, 10):
        ok, line = _print_result("Python " + sys.version.split()[0], True)
    else:
        ok, line = _print_result(
            "Python version >= 3.10",
            False,
            f"found {sys.version.split()[0]}",
        )
    results.append(line)
    all_passed = all_passed and ok

    # CHECK 2: Required packages importable with versions
    package_specs = [
        ("fastapi", "fastapi"),
        ("uvicorn", "uvicorn"),
        ("pydantic", "pydantic"),
        ("numpy", "numpy"),
        ("pandas", "pandas"),
        ("qrcode", "qrcode"),
        ("PIL", "pillow"),
        ("httpx", "httpx"),
        ("pytest", "pytest"),
    ]
    import_errors: list[str] = []
    for module_name, dist_name in package_specs:
        try:
            importlib.import_module(module_name)
            version(dist_name)
        except Exception as exc:  # pragma: no cover - runtime guard
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
        temp_db_path = Path(temp_dir) / "temple_validation.db"
        validation_settings = replace(get_settings(), database_path=temp_db_path)
        repository = DataRepository(validation_settings)

        # CHECK 3: Database initialization
        try:
            repository.initialize_database()
            ok, line = _print_result("Database initialization", True)
        except Exception as exc:
            ok, line = _print_result("Database initialization", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 4: Demo temples and slots
        try:
            seeded_slots = repository.seed_demo_data_if_empty(date.today())
            with sqlite3.connect(temp_db_path) as conn:
                temples = int(conn.execute("SELECT COUNT(*) FROM Temples;").fetchone()[0])
                booked = int(conn.execute("SELECT COALESCE(SUM(booked_count), 0) FROM Slots;").fetchone()[0])
            if temples == 0 or seeded_slots == 0:
                raise RuntimeError(f"expected seeded data, got temples={temples} slots={seeded_slots}")
            if booked != 0:
                raise RuntimeError(f"seeded slots must start empty, found {booked} booked seats")
            ok, line = _print_result(
                "Demo seed",
                True,
                f": {temples} temples, {seeded_slots} slots",
            )
        except Exception as exc:
            ok, line = _print_result("Demo seed", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 5: Capacity ledger round trip
        try:
            ledger = CapacityLedger(repository)
            reserved = ledger.reserve(1, 2)
            released = ledger.release(1, 2)
            if reserved.booked_count != 2 or released.booked_count != 0:
                raise RuntimeError(
                    f"unexpected counters reserved={reserved.booked_count} released={released.booked_count}"
                )
            ok, line = _print_result("Capacity ledger round trip", True)
        except Exception as exc:
            ok, line = _print_result("Capacity ledger round trip", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 6: QR encoding
        try:
            data_url = QrCodeService().encode(
                QrPayload(
                    booking_code="TCMVALIDATE",
                    temple_name="Validation Temple",
                    date=date.today().isoformat(),
                    time_window="06:00 - 06:30",
                    visitors=1,
                    user_name="Validator",
                )
            )
            if not data_url.startswith("data:image/png;base64,"):
                raise RuntimeError("QR output is not a PNG data URL")
            ok, line = _print_result("QR encoding", True)
        except Exception as exc:
            ok, line = _print_result("QR encoding", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

        # CHECK 7: Simulation baseline
        try:
            temple = repository.list_temples()[0]
            records, peak_hours, _ = build_baseline(temple, validation_settings)
            ok, line = _print_result(
                "Simulation baseline",
                True,
                f": {len(records)} hours, {len(peak_hours)} peak windows",
            )
        except Exception as exc:
            ok, line = _print_result("Simulation baseline", False, str(exc))
        results.append(line)
        all_passed = all_passed and ok

    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    print(SEPARATOR_LINE)
    print(" Temple Visit Environment Validation")
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
