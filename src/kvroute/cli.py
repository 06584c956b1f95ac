import argparse
import logging
import os

from . import config
from .sharding import HashRing

log = logging.getLogger("kvroute")


def parse_targets(raw: str) -> list[str]:
    return [t.strip() for t in raw.split(",") if t.strip()]


def cli(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="kvroute-ring: show which target each key is sharded to"
    )
    parser.add_argument(
        "--targets",
        default=os.environ.get("KVROUTE_TARGETS", ""),
        help="Comma-separated target identifiers (env: KVROUTE_TARGETS)",
    )
    parser.add_argument(
        "--replicas",
        type=int,
        default=config.RING_REPLICAS,
        help="Ring positions per target",
    )
    parser.add_argument(
        "--count",
        type=int,
        default=1,
        help="Number of distinct targets to list per key",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("keys", nargs="+", metavar="KEY")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    targets = parse_targets(args.targets)
    if not targets:
        parser.error("at least one target is required")
    if args.count < 1:
        parser.error("--count must be >= 1")

    ring = HashRing(targets, args.replicas)
    log.debug("ring: targets=%s replicas=%d", ",".join(ring.targets), ring.replicas)
    for key in args.keys:
        if args.count > 1:
            print(f"{key} -> {','.join(ring.lookup_list(key, args.count))}")
        else:
            print(f"{key} -> {ring.lookup(key)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(cli())
