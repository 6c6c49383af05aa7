# app/run_order_service.py
"""

python -m app.run_order_service
python -m app.run_order_service --config config.yaml --port 8081

"""
import argparse
import asyncio
import contextlib
import signal
import sys

import uvicorn

from infra import ServiceContainer, store_healthcheck
from orders.api import build_app
from orders.errors import StartupFatalError
from orders.pipeline import IngestionPipeline
from orders.query import QueryService
from utils.config import load_cfg, service_settings, ServiceSettings
from utils.logger import logger


def build_parser():
    p = argparse.ArgumentParser("order-service")
    p.add_argument("--config", default=None, help="path to config.yaml (default: repo root)")
    p.add_argument("--pg-dsn", default=None)
    p.add_argument("--redis-dsn", default=None)
    p.add_argument("--stream", default=None)
    p.add_argument("--host", default=None)
    p.add_argument("--port", type=int, default=None)
    p.add_argument("--concurrency", type=int, default=None)
    return p


def apply_cli(settings: ServiceSettings, args) -> ServiceSettings:
    if args.pg_dsn:
        settings.store_dsn = args.pg_dsn
    if args.redis_dsn:
        settings.redis_dsn = args.redis_dsn
    if args.stream:
        settings.stream = args.stream
    if args.host:
        settings.http_host = args.host
    if args.port:
        settings.http_port = args.port
    if args.concurrency:
        settings.concurrency = max(1, args.concurrency)
    return settings


async def main(settings: ServiceSettings) -> int:
    # store -> cache 恢复 -> channel，任何一步失败都直接退出
    try:
        container = await ServiceContainer.start(settings)
    except StartupFatalError as e:
        logger.error(f"startup failed: {e}")
        return 1

    try:
        pipeline = IngestionPipeline(
            container.store,
            container.cache,
            store_timeout=settings.store_timeout_sec,
            identifier_field=settings.identifier_field,
            index_field=settings.index_field,
            concurrency=settings.concurrency,
        )
        query = QueryService(container.cache, container.store)
        app = build_app(
            query,
            pipeline=pipeline,
            lookup_timeout=settings.lookup_timeout_sec,
            readiness=lambda: store_healthcheck(container.store),
        )

        stop_event = asyncio.Event()
        ingest_task = asyncio.create_task(pipeline.run(container.channel, stop_event), name="ingest")

        server = uvicorn.Server(
            uvicorn.Config(app, host=settings.http_host,
                                port=settings.http_port,
                                loop="asyncio",
                                lifespan="off",
                                timeout_keep_alive=10,
                                log_config=None,
                                access_log=False)
        )
        http_task = asyncio.create_task(server.serve(), name="http")
        logger.info(f"http server listening on {settings.http_host}:{settings.http_port}")

        def _graceful(*_):
            stop_event.set()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, _graceful)

        stop_wait = asyncio.create_task(stop_event.wait(), name="stop")
        done, _ = await asyncio.wait({stop_wait, ingest_task, http_task}, return_when=asyncio.FIRST_COMPLETED)
        stop_event.set()
        for t in done:
            if t is not stop_wait and not t.cancelled() and t.exception() is not None:
                logger.error(f"task {t.get_name()} crashed: {t.exception()!r}")

        server.should_exit = True
        for t in (ingest_task, http_task, stop_wait):
            t.cancel()
        for t in (ingest_task, http_task, stop_wait):
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await t
    finally:
        await container.stop()
        logger.info("order service stopped")
    return 0


def cli(argv=None) -> int:
    args = build_parser().parse_args(argv)
    settings = apply_cli(service_settings(load_cfg(args.config)), args)
    return asyncio.run(main(settings))


if __name__ == "__main__":
    sys.exit(cli())
