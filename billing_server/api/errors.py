import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from billing_server.services.errors import BillingError

logger = logging.getLogger(__name__)


async def billing_error_handler(request: Request, exc: BillingError):
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BillingError, billing_error_handler)
