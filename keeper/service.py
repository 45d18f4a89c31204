from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Optional

from .config import KeeperSettings, load_config
from .raffle_client import RaffleApiClient
from .scheduler import KeeperResult, KeeperScheduler
from .vrf_relay import VRFFulfillmentRelay

logger = logging.getLogger("chainraffle.keeper")


def configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )


def apply_overrides(settings: KeeperSettings, args: argparse.Namespace) -> KeeperSettings:
    updates = {}
    if args.once:
        updates["run_once"] = True
    if args.retry_stale:
        updates["retry_stale_requests"] = True
    if args.stale_after is not None:
        updates["stale_after_seconds"] = args.stale_after
    if args.poll_interval is not None:
        updates["poll_interval_seconds"] = args.poll_interval
    if args.no_relay:
        updates["rpc_url"] = None
    return settings.copy(**updates) if updates else settings


def build_scheduler(settings: KeeperSettings) -> KeeperScheduler:
    relay = None
    if settings.relay_enabled:
        relay = VRFFulfillmentRelay.from_settings(settings)
        logger.info("Relaying fulfillments from coordinator %s", settings.vrf_coordinator_address)
    else:
        logger.info("Fulfillment relay disabled (needs RPC_URL, VRF_COORDINATOR_ADDRESS, VRF_CALLBACK_SECRET)")
    return KeeperScheduler(settings, RaffleApiClient(settings), relay=relay, logger=logger)


def _describe(result: Optional[KeeperResult]) -> str:
    if result is None:
        return "nothing to do"
    if result.relayed:
        return f"relayed fulfillment for request {result.request_id}"
    if result.retried:
        return f"replaced stale request with {result.request_id}"
    return f"requested randomness {result.request_id}"


async def run(args: argparse.Namespace) -> Optional[KeeperResult]:
    configure_logging(args.verbose)
    settings = apply_overrides(load_config(args.env_file), args)
    scheduler = build_scheduler(settings)

    if settings.run_once:
        result = await scheduler.run_once()
        logger.info("Keeper pass finished: %s", _describe(result))
        return result

    await scheduler.run_forever()
    return None


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Polls the raffle, performs upkeep and relays VRF fulfillments."
    )
    parser.add_argument("--env-file", type=str, default=None, help="Path to .env file with settings")
    parser.add_argument("--once", action="store_true", help="Run a single keeper pass and exit.")
    parser.add_argument("--poll-interval", type=int, default=None, help="Seconds between passes.")
    parser.add_argument(
        "--retry-stale",
        action="store_true",
        help="Ask the raffle to re-request randomness that has gone unanswered.",
    )
    parser.add_argument(
        "--stale-after",
        type=int,
        default=None,
        help="Seconds a request may stay pending before it counts as stale.",
    )
    parser.add_argument(
        "--no-relay", action="store_true", help="Do not relay on-chain fulfillments."
    )
    parser.add_argument("--verbose", action="store_true", help="Log each pass at DEBUG level.")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    try:
        asyncio.run(run(args))
    except KeyboardInterrupt:
        logger.info("Keeper stopped by user.")


if __name__ == "__main__":
    main()
