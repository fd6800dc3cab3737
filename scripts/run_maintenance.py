import argparse
import asyncio
import os
import sys

# Add project root to path so we can import app
sys.path.append(os.getcwd())

from app.config.dependencies import build_pipeline_services


async def main(args: argparse.Namespace) -> None:
    services = build_pipeline_services()
    try:
        if args.loop:
            await services.maintenance.run_periodically()
            return

        summary = await services.maintenance.run_once(
            stuck_hours=args.stuck_hours,
            retention_days=args.retention_days,
        )
        print(f"Reset {summary['resetCount']} stuck jobs")
        print(f"Deleted {summary['deletedCount']} old jobs")
    finally:
        await services.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Reset stuck jobs and purge old ones.")
    parser.add_argument("--stuck-hours", type=float, default=None)
    parser.add_argument("--retention-days", type=int, default=None)
    parser.add_argument(
        "--loop",
        action="store_true",
        help="keep running at PIPELINE_SWEEP_INTERVAL_SECONDS",
    )
    asyncio.run(main(parser.parse_args()))
