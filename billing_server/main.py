import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from billing_server import config
from billing_server.admin.routes import admin_router
from billing_server.api import admin_router as admin_api, payment_router, usage_router, webhook_router
from billing_server.api.errors import register_error_handlers
from billing_server.db.session import build_engine, build_sessionmaker

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    engine = build_engine()
    app.state.sessionmaker = build_sessionmaker(engine)
    logging.info("Database engine started: %s", engine.url.render_as_string(hide_password=True))
    try:
        yield
    finally:
        await engine.dispose()


def create_app(lifespan_handler=lifespan) -> FastAPI:
    app = FastAPI(title="Photo booth billing", lifespan=lifespan_handler)

    # Admin panel
    app.include_router(admin_router)

    app.include_router(payment_router.router, prefix="/api")
    app.include_router(webhook_router.router, prefix="/api")
    app.include_router(admin_api.router, prefix="/api")
    app.include_router(usage_router.router, prefix="/api")
    register_error_handlers(app)

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    return app


app = create_app()
