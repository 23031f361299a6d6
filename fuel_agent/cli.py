from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from fuel_agent.services.ocr import OcrSession
from fuel_agent.services.pipeline import ExtractionResult, Photo, extract_readings

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp", ".bmp", ".tif", ".tiff"}


@dataclass
class Expectation:
    filename: str
    kind: str = ""
    gallons: Optional[float] = None
    total: Optional[float] = None
    miles: Optional[int] = None


def _num(s: str) -> Optional[float]:
    try:
        return float(s)
    except ValueError:
        return None


def parse_expectation(filename: str) -> Expectation:
    """Read expected values from names like pump_9.811_gallons_35.51_total.jpg
    or odometer_168237_miles.jpg (odometer_miles_168237.jpg also accepted)."""
    stem = Path(filename).stem
    parts = stem.split("_")
    exp = Expectation(filename=filename)
    if not parts or parts[0] not in ("pump", "odometer"):
        return exp
    exp.kind = parts[0]
    for i, p in enumerate(parts[1:], start=1):
        prev = _num(parts[i - 1]) if i > 1 else None
        nxt = _num(parts[i + 1]) if i + 1 < len(parts) else None
        if exp.kind == "pump" and p == "gallons" and prev is not None:
            exp.gallons = prev
        elif exp.kind == "pump" and p == "total" and prev is not None:
            exp.total = prev
        elif exp.kind == "odometer" and p == "miles":
            val = prev if prev is not None else nxt
            if val is not None:
                exp.miles = int(val)
    return exp


def check(exp: Expectation, result: ExtractionResult) -> List[str]:
    """Mismatch descriptions; empty when the case passes."""
    problems: List[str] = []
    if exp.kind == "pump":
        got_g, got_t = result.pump.gallons.value, result.pump.total.value
        if exp.gallons is not None and (got_g is None or abs(got_g - exp.gallons) >= 0.01):
            problems.append(f"gallons {got_g} != {exp.gallons}")
        if exp.total is not None and (got_t is None or abs(got_t - exp.total) >= 0.1):
            problems.append(f"total {got_t} != {exp.total}")
    elif exp.kind == "odometer":
        got_m = result.odometer.miles.value
        if exp.miles is not None and got_m != exp.miles:
            problems.append(f"miles {got_m} != {exp.miles}")
    return problems


async def _extract_files(paths: Iterable[Path], session: OcrSession) -> ExtractionResult:
    photos = [Photo(data=p.read_bytes(), filename=p.name) for p in paths]
    return await extract_readings(photos, session)


def extract_cmd(args: argparse.Namespace) -> int:
    async def run() -> ExtractionResult:
        async with OcrSession(args.backend) as session:
            return await _extract_files([Path(p) for p in args.photos], session)

    result = asyncio.run(run())
    doc = result.model_dump()
    doc["status"] = result.status
    print(json.dumps(doc, indent=2))
    return 0 if result.status != "failed" else 1


def bench_cmd(args: argparse.Namespace) -> int:
    folder = Path(args.directory)
    if not folder.is_dir():
        print(f"No test images directory found: {folder}", file=sys.stderr)
        return 2
    cases = [parse_expectation(p.name) for p in sorted(folder.iterdir()) if p.suffix.lower() in IMAGE_SUFFIXES]
    cases = [c for c in cases if c.kind]
    if not cases:
        print("No tests to run. Add images named pump_<gal>_gallons_<total>_total.jpg or odometer_<miles>_miles.jpg")
        return 0

    async def run() -> int:
        failed = 0
        async with OcrSession(args.backend) as session:
            for case in cases:
                result = await _extract_files([folder / case.filename], session)
                problems = check(case, result) if not result.failures else [f.message for f in result.failures]
                print(f"{'PASS' if not problems else 'FAIL'} {case.filename}")
                for p in problems:
                    print(f"  - {p}")
                failed += bool(problems)
        return failed

    failed = asyncio.run(run())
    print(f"{len(cases) - failed}/{len(cases)} passed")
    return 1 if failed else 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Read fuel pump and odometer photos.")
    parser.add_argument("--backend", default=None, help="OCR backend (tesseract, vision, proxy); default from OCR_BACKEND")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    ext = sub.add_parser("extract", help="Extract readings from one or more photos")
    ext.add_argument("photos", nargs="+", help="Image files (pump and/or odometer, any order)")
    ext.set_defaults(func=extract_cmd)

    bench = sub.add_parser("bench", help="Check extraction against values encoded in file names")
    bench.add_argument("directory", help="Folder of labelled images")
    bench.set_defaults(func=bench_cmd)
    return parser


def main(argv: Iterable[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
