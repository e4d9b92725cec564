import os
import pkgutil
from importlib import import_module

from fastapi import APIRouter

from chathub.logging import logger

_registered_modules: set[str] = set()


def collect_subrouters() -> APIRouter:
    """
    Collects the HTTP and WebSocket routers of the application.

    Every module in `api/http` and `api/ws/consumers` is imported and its
    module-level `router` is included in the returned main router.
    """
    main_router: APIRouter = APIRouter()

    app_dir = os.path.dirname(__file__)
    app_name = os.path.basename(app_dir)

    for subpackage in ("api.http", "api.ws.consumers"):
        path = os.path.join(app_dir, *subpackage.split("."))
        for _, module, _ in pkgutil.iter_modules([path]):
            api = import_module(f".{module}", package=f"{app_name}.{subpackage}")
            main_router.include_router(api.router)

            # Only log on first registration
            if f"{subpackage}.{module}" not in _registered_modules:
                logger.info(f'Register "{module}" {subpackage} router')
                _registered_modules.add(f"{subpackage}.{module}")

    return main_router
