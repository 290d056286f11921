import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from multimart.config import Settings
from multimart.database import init_database, make_engine, make_session_factory
from multimart.errors import register_exception_handlers
from multimart.gateway import RazorpayClient
from multimart.services.auth import ensure_admin_exists
from multimart.utils.email import Mailer

from multimart.routes import (
    auth,
    cart,
    delivery,
    health,
    orders,
    payments,
    payouts,
    products,
    tickets,
    wallet,
    withdrawals,
)

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s | %(message)s",
    )


def create_app(
    settings: Settings | None = None,
    gateway: RazorpayClient | None = None,
    mailer: Mailer | None = None,
) -> FastAPI:
    """
    Build the API. Collaborators not passed in are built from settings,
    which in turn default to the environment.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)

    engine = make_engine(settings.database_url)
    session_factory = make_session_factory(engine)

    if gateway is None:
        gateway = RazorpayClient(
            settings.razorpay_key_id,
            settings.razorpay_key_secret,
            base_url=settings.razorpay_base_url,
        )
    if mailer is None:
        mailer = Mailer(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_database(engine)
        db = session_factory()
        try:
            ensure_admin_exists(db, settings.admin_email)
        finally:
            db.close()
        logger.info("MultiMart API started")
        yield
        engine.dispose()

    app = FastAPI(title="MultiMart API", version="1.0.0", lifespan=lifespan)

    app.state.settings = settings
    app.state.engine = engine
    app.state.session_factory = session_factory
    app.state.gateway = gateway
    app.state.mailer = mailer

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # ── Health & Auth ──────────────────────────────────────────────────
    app.include_router(health.router)
    app.include_router(auth.router)

    # ── Catalog & checkout ────────────────────────────────────────────
    app.include_router(products.router,    prefix="/api")
    app.include_router(cart.router,        prefix="/api")
    app.include_router(orders.router,      prefix="/api")
    app.include_router(payments.router,    prefix="/api")

    # ── Wallets, payouts, delivery ────────────────────────────────────
    app.include_router(wallet.router,      prefix="/api")
    app.include_router(withdrawals.router, prefix="/api")
    app.include_router(payouts.router,     prefix="/api")
    app.include_router(delivery.router,    prefix="/api")

    # ── Support ───────────────────────────────────────────────────────
    app.include_router(tickets.router,     prefix="/api")

    return app
