"""CLI entrypoint."""
from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv as _load_dotenv

from drivespots import config
from drivespots.boundaries import MunicipalityBoundaryStore
from drivespots.http import MissingApiKeyError, UpstreamError
from drivespots.models import InvalidInputError
from drivespots.quota import RateLimitedError
from drivespots.service import DiscoveryService, build_clients, parse_origin

CLI_IDENTITY = "cli"


def _repo_root() -> Path:
    return Path(__file__).resolve().parent


def load_env(path: str = ".env", root_dir: Optional[Path] = None) -> None:
    """Optionally load a repo-root .env file without overriding real env vars."""
    root = Path(root_dir) if root_dir else _repo_root()
    env_path = (root / path).resolve()
    if not env_path.exists():
        return
    _load_dotenv(dotenv_path=env_path, override=False)


def _env_len(name: str) -> int:
    return len((os.environ.get(name) or "").strip())


def _path_state(path: Path) -> str:
    exists = path.exists()
    readable = bool(exists and os.access(path, os.R_OK))
    return f"{path} (exists={exists}, readable={readable})"


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Find sightseeing spots within a drive budget")
    parser.add_argument("--preflight", action="store_true", help="Run offline checks only")
    parser.add_argument("--config", type=str, default=None, help="Path to a settings JSON file")
    sub = parser.add_subparsers(dest="command")

    discover = sub.add_parser("discover", help="Group spots by reachable municipality")
    discover.add_argument("--origin", type=str, default=None, help="lat,lng")
    discover.add_argument("--municipality", type=str, default=None)
    budget = discover.add_mutually_exclusive_group()
    budget.add_argument("--time", type=float, default=None, help="Minutes of driving")
    budget.add_argument("--distance", type=float, default=None, help="Kilometres of driving")
    discover.add_argument("--workers", type=int, default=None)

    iso = sub.add_parser("isochrone", help="Municipalities inside a drive-time region")
    iso.add_argument("--origin", type=str, required=True, help="lat,lng")
    iso_budget = iso.add_mutually_exclusive_group(required=True)
    iso_budget.add_argument("--time", type=float, default=None)
    iso_budget.add_argument("--distance", type=float, default=None)
    iso.add_argument("--boundaries", type=str, default=None, help="GeoJSON boundary file")

    serve = sub.add_parser("serve", help="Run the JSON HTTP server")
    serve.add_argument("--port", type=int, default=config.DEFAULT_PORT)

    return parser.parse_args(argv)


def run_preflight() -> int:
    ok = True

    for name in ("GOOGLE_MAPS_API_KEY", "HERE_API_KEY"):
        if _env_len(name):
            print(f"{name}: OK")
        else:
            print(f"{name}: MISSING")
            ok = False

    boundaries = Path(config.MUNICIPALITY_BOUNDARIES_PATH)
    print(f"Boundaries: {_path_state(boundaries)}")
    if not boundaries.exists():
        ok = False

    print(
        "Limits: workers={workers}, places={ph}/h {pd}/day, isoline={ih}/h {id}/day".format(
            workers=config.MAX_CONCURRENT_UPSTREAM,
            ph=config.PLACES_HOURLY_LIMIT,
            pd=config.PLACES_DAILY_LIMIT,
            ih=config.HERE_HOURLY_LIMIT,
            id=config.HERE_DAILY_LIMIT,
        )
    )

    print("Preflight: PASS" if ok else "Preflight: FAIL")
    return 0 if ok else 1


def _search_params(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "origin": args.origin,
        "municipality": args.municipality,
        "mode": "distance" if args.distance is not None else "time",
        "value": args.distance if args.distance is not None else args.time,
    }


def _isochrone_params(args: argparse.Namespace) -> Dict[str, Any]:
    origin = parse_origin(args.origin)
    return {"lat": origin.lat, "lon": origin.lon, "time": args.time, "distance": args.distance}


def _print_json(data: Dict[str, Any]) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


def main(argv: Optional[list] = None) -> int:
    load_env()
    args = parse_args(argv)
    config.load_settings(args.config)
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    if args.preflight:
        return run_preflight()

    if args.command == "serve":
        from server import serve

        return serve(args.port)

    if args.command not in ("discover", "isochrone"):
        print("Choose a command: discover, isochrone or serve", file=sys.stderr)
        return 2

    boundaries = None
    if args.command == "isochrone" and args.boundaries:
        boundaries = MunicipalityBoundaryStore(args.boundaries)
    service = DiscoveryService(
        build_clients(),
        boundaries=boundaries,
        max_workers=getattr(args, "workers", None),
    )

    try:
        if args.command == "discover":
            result = service.search(_search_params(args), CLI_IDENTITY)
        else:
            result = service.isochrone(_isochrone_params(args), CLI_IDENTITY)
    except InvalidInputError as exc:
        print(f"Invalid input: {exc}", file=sys.stderr)
        return 2
    except (UpstreamError, MissingApiKeyError, RateLimitedError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    _print_json(result)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
