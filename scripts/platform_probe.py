#!/usr/bin/env python3
import argparse
import asyncio
import json
import os
import sys
import time
from typing import Any, Dict, List

from dotenv import load_dotenv


def _duration_ms(start: float) -> int:
    return int((time.time() - start) * 1000)


async def probe_platform(adapter, titles: List[str], deep: bool) -> Dict[str, Any]:
    result: Dict[str, Any] = {
        "platform": adapter.id,
        "name": adapter.name,
        "search_status": None,
        "slug": None,
        "search_ms": None,
        "metrics_ok": False,
        "available_units": None,
        "consumed_units": None,
        "metrics_ms": None,
        "titles": [],
        "errors": []
    }

    start = time.time()
    try:
        outcome = await adapter.search(titles)
        result["search_status"] = outcome.status.value
        result["slug"] = outcome.slug
    except Exception as exc:
        result["errors"].append(f"search: {exc}")
        outcome = None
    result["search_ms"] = _duration_ms(start)

    if outcome is None or not outcome.slug:
        return result

    start = time.time()
    try:
        metrics = await adapter.fetch_metrics(outcome.slug)
        if metrics is not None:
            result["metrics_ok"] = True
            result["available_units"] = metrics.available
            result["consumed_units"] = metrics.consumed
    except Exception as exc:
        result["errors"].append(f"metrics: {exc}")
    result["metrics_ms"] = _duration_ms(start)

    if deep:
        try:
            result["titles"] = await adapter.fetch_titles(outcome.slug)
        except Exception as exc:
            result["errors"].append(f"titles: {exc}")

    return result


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Probe platform adapters: search, metrics and titles.")
    parser.add_argument(
        "--titles",
        default="Chainsaw Man,Человек-бензопила",
        help="Comma-separated titles to search for."
    )
    parser.add_argument("--platforms", default="", help="Comma-separated platform IDs to test.")
    parser.add_argument("--deep", action="store_true", help="Also fetch the title list of the match.")
    parser.add_argument("--sleep", type=float, default=0.2, help="Sleep seconds between platforms.")
    parser.add_argument(
        "--output",
        default="instance/platform_probe.json",
        help="Output JSON report path."
    )
    parser.add_argument("--env", default=".env", help="Path to .env file.")
    return parser.parse_args()


async def run(args: argparse.Namespace) -> Dict[str, Any]:
    from sources import get_platform_registry  # pylint: disable=import-outside-toplevel

    requested = [item.strip() for item in args.platforms.split(",") if item.strip()]
    titles = [item.strip() for item in args.titles.split(",") if item.strip()]
    registry = get_platform_registry(enabled=requested or None)

    results = []
    try:
        for key in registry.keys():
            results.append(await probe_platform(registry.get(key), titles, args.deep))
            if args.sleep:
                await asyncio.sleep(args.sleep)
    finally:
        await registry.close()

    return {
        "generated_at": time.strftime("%Y-%m-%dT%H:%M:%S%z"),
        "titles": titles,
        "deep": bool(args.deep),
        "total_platforms": len(results),
        "matched": sum(1 for item in results if item["search_status"] == "matched"),
        "metrics_failures": sum(1 for item in results if item["slug"] and not item["metrics_ok"]),
        "platforms": results
    }


def main() -> int:
    args = parse_args()
    load_dotenv(args.env)

    sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

    report = asyncio.run(run(args))

    output_dir = os.path.dirname(args.output)
    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
    with open(args.output, "w", encoding="utf-8") as handle:
        json.dump(report, handle, indent=2, sort_keys=True, ensure_ascii=False)

    print(f"Wrote report to {args.output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
