"""Command-line client for sending workload hints and overrides to a running controller."""

import argparse
import json
import os
import sys
import urllib.error
import urllib.request
from typing import Any

DEFAULT_URL = "http://localhost:8086"
TIMEOUT = 5.0


class ClientError(Exception):
    """The controller could not be reached or rejected the request."""


def request_json(base_url: str, method: str, path: str, payload: dict | None = None) -> Any:
    """Send one request to the controller API and return the decoded JSON reply."""
    data = json.dumps(payload).encode("utf-8") if payload is not None else None
    req = urllib.request.Request(
        base_url.rstrip("/") + path,
        data=data,
        headers={"Content-Type": "application/json"} if data is not None else {},
        method=method,
    )
    try:
        with urllib.request.urlopen(req, timeout=TIMEOUT) as r:
            return json.loads(r.read().decode("utf-8"))
    except urllib.error.HTTPError as e:
        body = e.read().decode("utf-8", errors="replace")
        try:
            message = json.loads(body).get("error", body)
        except (ValueError, AttributeError):
            message = body
        raise ClientError(f"HTTP {e.code}: {message}") from e
    except urllib.error.URLError as e:
        raise ClientError(f"Cannot reach controller at {base_url}: {e.reason}") from e


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="smart-fan-hint",
        description="Send workload hints to the smart fan controller",
        epilog="Examples: start whisper high 300 | stop whisper | override 50 60 testing",
    )
    parser.add_argument(
        "--url",
        default=os.environ.get("SMART_FAN_URL", DEFAULT_URL),
        help=f"Controller base URL (default: $SMART_FAN_URL or {DEFAULT_URL})",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    start = commands.add_parser("start", help="Signal that a workload is starting")
    start.add_argument("source")
    start.add_argument("intensity", nargs="?", default="medium", choices=("low", "medium", "high"))
    start.add_argument("duration", nargs="?", type=int, default=0, help="Expected seconds, 0 for open-ended")

    stop = commands.add_parser("stop", help="Signal that a workload finished")
    stop.add_argument("source")

    commands.add_parser("status", help="Show controller status")

    override = commands.add_parser("override", help="Pin the fan speed")
    override.add_argument("speed", type=int)
    override.add_argument("duration", nargs="?", type=int, default=0, help="Seconds, 0 for indefinite")
    override.add_argument("reason", nargs="?", default="manual")

    commands.add_parser("clear-override", help="Return to automatic control")
    return parser.parse_args(argv)


def run(args: argparse.Namespace) -> Any:
    """Dispatch one parsed command and return the controller's reply."""
    if args.command == "start":
        return request_json(args.url, "POST", "/api/hint", {
            "type": "gpu_load",
            "action": "start",
            "intensity": args.intensity,
            "duration_estimate": args.duration,
            "source": args.source,
        })
    if args.command == "stop":
        return request_json(args.url, "POST", "/api/hint", {
            "type": "gpu_load",
            "action": "stop",
            "source": args.source,
        })
    if args.command == "status":
        return request_json(args.url, "GET", "/api/status")
    if args.command == "override":
        return request_json(args.url, "POST", "/api/override", {
            "speed": args.speed,
            "duration": args.duration,
            "reason": args.reason,
        })
    return request_json(args.url, "DELETE", "/api/override")


def main(argv: list[str] | None = None) -> None:
    """Entry point."""
    args = _parse_args(argv)
    try:
        reply = run(args)
    except ClientError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(json.dumps(reply, indent=2))


if __name__ == "__main__":
    main()
