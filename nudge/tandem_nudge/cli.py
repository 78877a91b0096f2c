"""CLI entry point for the nudge service."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .analyzer import SignalAnalyzer
from .composer import BatchComposer
from .config import DEFAULT_CONFIG_PATH
from .daemon import NudgeDaemon
from .models import CaptureEntry

logger = logging.getLogger(__name__)

_DEFAULT_CONFIG = """\
# Tandem nudge service configuration
# Created automatically on first run.

server:
  host: 127.0.0.1
  port: 8765
  # idle sessions are stopped and dropped after this many seconds
  session_idle_timeout: 1800

model:
  model: claude-3-haiku-20240307
  max_tokens: 150
  # api_key: falls back to the ANTHROPIC_API_KEY environment variable

timing:
  min_wait: 15
  max_wait: 45
  thought_complete: 10

delivery:
  # POST target for nudge events; leave unset to only keep them in the outbox
  # response_url: http://127.0.0.1:9000/nudges
"""


def _ensure_config(config_path: str) -> str:
    """Create a default config file if none exists."""
    path = Path(config_path).expanduser()
    if path.exists():
        return str(path)

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(_DEFAULT_CONFIG)
    logger.info("Created default config at %s", path)
    return str(path)


def _build_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser with subcommands."""
    parser = argparse.ArgumentParser(description="Tandem nudge service")
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help="Config file path",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level",
    )

    sub = parser.add_subparsers(dest="command")

    # start (default)
    sub.add_parser("start", help="Start the nudge daemon")

    # analyze
    analyze_p = sub.add_parser(
        "analyze", help="Compose and analyze captures from a JSON or JSONL file"
    )
    analyze_p.add_argument("file", help="Capture file (JSON list or one object per line)")

    return parser


# ---- offline analysis ----


def read_captures(path: str | Path) -> list[dict[str, Any]]:
    """Read capture payloads from a JSON document or a JSONL file."""
    text = Path(path).expanduser().read_text()
    stripped = text.strip()
    if not stripped:
        return []
    try:
        data = json.loads(stripped)
    except json.JSONDecodeError:
        # JSONL: one capture object per line
        data = [json.loads(line) for line in stripped.splitlines() if line.strip()]
    if isinstance(data, dict):
        data = [data]
    return [item for item in data if isinstance(item, dict)]


def analyze_captures(payloads: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Compose every payload into one batch and analyze it."""
    received_at = time.time()
    entries = [
        CaptureEntry.from_payload(p, sequence_id=i, received_at=received_at)
        for i, p in enumerate(payloads, start=1)
        if isinstance(p.get("diff"), str) and p["diff"].strip()
    ]
    batch = BatchComposer().compose(entries, datetime.now(UTC))
    if batch is None:
        return None
    analysis = SignalAnalyzer().analyze(batch)
    return {
        "batch": batch.summary(),
        "structuredText": batch.structured_text,
        "analysis": analysis.to_dict(),
    }


# ---- subcommand handlers ----


def _cmd_start(args: argparse.Namespace) -> None:
    """Start the nudge daemon (default command)."""
    config_path = _ensure_config(args.config)
    daemon = NudgeDaemon(config_path=config_path)

    loop = asyncio.new_event_loop()

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, loop.stop)

    try:
        loop.run_until_complete(daemon.start())
        loop.run_forever()
    finally:
        loop.run_until_complete(daemon.stop())
        loop.close()


def _cmd_analyze(args: argparse.Namespace) -> None:
    """Print the structured batch and its analysis for a capture file."""
    try:
        payloads = read_captures(args.file)
    except (OSError, json.JSONDecodeError) as exc:
        print(f"Cannot read captures from {args.file}: {exc}", file=sys.stderr)
        sys.exit(1)

    result = analyze_captures(payloads)
    if result is None:
        print("No captures with a diff found.", file=sys.stderr)
        sys.exit(1)

    print(result["structuredText"])
    print()
    print(json.dumps({"batch": result["batch"], "analysis": result["analysis"]}, indent=2))


# ---- main ----


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    command = args.command or "start"

    if command == "start":
        _cmd_start(args)
    elif command == "analyze":
        _cmd_analyze(args)
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
