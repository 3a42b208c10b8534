import argparse
import asyncio
import json
from pathlib import Path

from loguru import logger

from app.core.config import get_settings
from app.db import init_db
from app.services.metrics_service import CycleResult, MetricsService
from pipelines.scheduler import CycleScheduler


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run protocol metrics aggregation cycles")
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep running cycles on the configured refresh interval",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Override REFRESH_INTERVAL_SECONDS when looping",
    )
    parser.add_argument(
        "--max-ticks",
        type=int,
        default=None,
        help="Stop the loop after N ticks",
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Write the latest metrics and route status as JSON to this path",
    )
    parser.add_argument(
        "--reset-route-log",
        action="store_true",
        help="Delete the persisted route open/close log before running",
    )
    return parser.parse_args()


def _write_output(path: Path, result: CycleResult) -> None:
    payload = {
        "metrics": result.metrics.model_dump(mode="json"),
        "routes": result.routes.model_dump(mode="json"),
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    logger.info("Wrote cycle output to {}", path)


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    init_db()
    service = MetricsService.from_settings(settings)
    try:
        if args.reset_route_log:
            service.reset_route_log()

        if not args.loop:
            result = await service.run_cycle()
            if result is None:
                logger.error("Cycle abandoned: {}", service.state.last_error)
                return 1
            if args.output:
                _write_output(args.output, result)
            return 0

        async def cycle() -> None:
            result = await service.run_cycle()
            if result is not None and args.output:
                _write_output(args.output, result)

        scheduler = CycleScheduler(
            cycle,
            interval_seconds=args.interval or settings.refresh_interval_seconds,
            is_busy=lambda: service.in_flight,
        )
        await scheduler.run_forever(max_ticks=args.max_ticks)
        return 0
    finally:
        await service.aclose()


def main() -> None:
    args = parse_args()
    try:
        raise SystemExit(asyncio.run(_run(args)))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
