"""
Transform Proxy Server

    $ python -m transform_proxy.main --opts ./opts.yml --cachedir cache
    GET http://127.0.0.1:8888/fill/300/300/example.com/path/to/name

Send SIGHUP to reload the transform catalog without restarting.
"""

import argparse
import logging
import os
import signal
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from .config import ProxyConfig
from .routes_fastapi import router
from .service import TransformProxyService

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[ProxyConfig] = None,
    service: Optional[TransformProxyService] = None,
) -> FastAPI:
    if service is None:
        service = TransformProxyService(config or ProxyConfig.from_env())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await service.close()

    app = FastAPI(title="Transform Proxy", lifespan=lifespan)
    app.state.proxy = service
    app.include_router(router)
    return app


def install_reload_handler(service: TransformProxyService) -> None:
    """Reload the catalog on SIGHUP."""
    def _on_sighup(signum, frame):
        logger.info("[Proxy] SIGHUP received, reloading catalog")
        service.reload_catalog()

    signal.signal(signal.SIGHUP, _on_sighup)


def parse_args(argv=None) -> argparse.Namespace:
    defaults = ProxyConfig.from_env()
    parser = argparse.ArgumentParser(description="On-demand image transform proxy")
    parser.add_argument("--cachedir", default=defaults.cache_dir, help="File cache dir")
    parser.add_argument("--cachesize", type=int, default=defaults.cache_max_bytes, help="Max file cache size in bytes")
    parser.add_argument("--bind", default=defaults.bind, help="Port, or unix domain socket path")
    parser.add_argument("--opts", default=defaults.catalog_path, help="Transform catalog (YAML)")
    parser.add_argument("--log-level", default="INFO")
    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = ProxyConfig.from_env()
    config.cache_dir = args.cachedir
    config.cache_max_bytes = args.cachesize
    config.bind = args.bind
    config.catalog_path = args.opts

    service = TransformProxyService(config)
    install_reload_handler(service)
    app = create_app(service=service)

    logger.info(f"[Proxy] listen: {config.bind}")
    if config.bind.isdigit():
        uvicorn.run(app, host="0.0.0.0", port=int(config.bind))
    else:
        if os.path.exists(config.bind):
            os.remove(config.bind)
        uvicorn.run(app, uds=config.bind)


if __name__ == "__main__":
    main()
