from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from .config import settings
from .core.errors import register_exception_handlers
from .core.logging import configure_logging
from .database import init_db
from .routers import auth as auth_router
from .routers import budgets as budgets_router
from .routers import categories as categories_router
from .routers import financial as financial_router
from .routers import transactions as transactions_router


API_PREFIX = "/api"


def create_app() -> FastAPI:
    configure_logging(settings.log_level, settings.log_file)

    app = FastAPI(title="Personal Finance Tracker – Backend", version="0.1.0")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    @app.on_event("startup")
    def on_startup():
        init_db()

    @app.get("/health")
    def health():
        return {"status": "ok"}

    app.include_router(auth_router.router, prefix=API_PREFIX)
    app.include_router(categories_router.router, prefix=API_PREFIX)
    app.include_router(transactions_router.router, prefix=API_PREFIX)
    app.include_router(budgets_router.router, prefix=API_PREFIX)
    app.include_router(financial_router.router, prefix=API_PREFIX)

    return app


app = create_app()
