"""
Signal Engine command-line entry point.

Reads a JSON request from a file (or stdin), runs it through the signal
persistence service and prints the JSON result.

Examples:
    signal-engine predict --input request.json
    echo '{"signals": [...]}' | signal-engine batch
    signal-engine validate
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, Dict, Optional

from shared.config import get_config
from shared.utils import setup_logging

from .signal_persistence import SignalPersistenceService

COMMANDS = ["predict", "batch", "strength", "status", "validate"]


def read_payload(path: Optional[str]) -> Dict[str, Any]:
    """Load the JSON request body from ``path`` or stdin."""
    if path is None or path == "-":
        payload = json.load(sys.stdin)
    else:
        with open(path, "r", encoding="utf-8") as f:
            payload = json.load(f)
    if not isinstance(payload, dict):
        raise ValueError("Request body must be a JSON object")
    return payload


async def run_command(
    service: SignalPersistenceService, command: str, payload: Dict[str, Any]
) -> Any:
    if command == "predict":
        prediction = await service.predict_signal_persistence(
            payload.get("signalData"), payload.get("marketData"), payload.get("contextData")
        )
        return prediction.model_dump(mode="json", by_alias=True)

    if command == "batch":
        result = await service.batch_predict(
            payload.get("signals", []), payload.get("marketData"), payload.get("contextData")
        )
        return result.model_dump(mode="json", by_alias=True)

    if command == "strength":
        breakdown = service.analyze_signal_strength(
            payload.get("signalData"), payload.get("marketData")
        )
        return breakdown.to_dict()

    if command == "validate":
        return await service.validate_models()

    return service.get_status()


async def async_main(args: argparse.Namespace) -> int:
    config = get_config()
    logging.basicConfig(level=config.logging.level, format=config.logging.format)
    logger = setup_logging(config, "signal_engine")

    payload: Dict[str, Any] = {}
    if args.command in ("predict", "batch", "strength"):
        try:
            payload = read_payload(args.input)
        except (OSError, ValueError) as e:
            logger.error(f"Could not read {args.command} request: {e}")
            print(json.dumps({"error": str(e)}, indent=2))
            return 1

    service = SignalPersistenceService(config)
    try:
        result = await run_command(service, args.command, payload)
    except ValueError as e:
        logger.error(f"Invalid {args.command} request: {e}")
        print(json.dumps({"error": str(e)}, indent=2))
        return 1
    finally:
        await service.adjuster.close()

    print(json.dumps(result, indent=2, ensure_ascii=False, default=str))
    return 0


def main():
    parser = argparse.ArgumentParser(description="Signal persistence engine")
    parser.add_argument("command", choices=COMMANDS, help="Operation to run")
    parser.add_argument(
        "--input", "-i", default=None, help="JSON request file (defaults to stdin)"
    )
    args = parser.parse_args()

    sys.exit(asyncio.run(async_main(args)))


if __name__ == "__main__":
    main()
