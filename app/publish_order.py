# app/publish_order.py
"""

python -m app.publish_order samples/order.json
python -m app.publish_order samples/order.json --stream orders --redis-dsn redis://127.0.0.1:6379/0

"""
import argparse
import asyncio
import sys
from pathlib import Path

from infra.redis_stream import RedisStreamsPublisher
from utils.config import load_cfg, service_settings
from utils.logger import logger


def build_parser(defaults=None):
    s = defaults or service_settings({})
    p = argparse.ArgumentParser("publish-order")
    p.add_argument("file", help="JSON file to publish (sent verbatim)")
    p.add_argument("--redis-dsn", default=s.redis_dsn)
    p.add_argument("--stream", default=s.stream)
    return p


async def publish_file(path: Path, publisher: RedisStreamsPublisher) -> str:
    data = path.read_bytes()
    try:
        return await publisher.publish(data)
    finally:
        await publisher.close()


def main(argv=None) -> int:
    args = build_parser(service_settings(load_cfg())).parse_args(argv)
    path = Path(args.file)
    if not path.is_file():
        logger.error(f"file not found: {path}")
        return 2

    publisher = RedisStreamsPublisher(args.redis_dsn, stream=args.stream)
    try:
        entry_id = asyncio.run(publish_file(path, publisher))
    except Exception as e:
        logger.error(f"publish error: {e!r}")
        return 1
    logger.info(f"published {path.name} to {args.stream} (id={entry_id})")
    return 0


if __name__ == "__main__":
    sys.exit(main())
