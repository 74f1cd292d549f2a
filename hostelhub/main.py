from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from hostelhub.modules.subscription.api import router as subscription_router
from hostelhub.modules.payment.api import router as payment_router
from hostelhub.modules.promo.api import router as promo_router
from hostelhub.modules.access.gate import AccessGate, AccessGateMiddleware
from hostelhub.core.cache import AccessCaches
from hostelhub.core.database import db_manager, service_db_manager
from hostelhub.core.global_error_handler import register_global_exception_handlers
from hostelhub.core.config import settings
import logging

logger = logging.getLogger(__name__)

app = FastAPI(
    title=f"{settings.APP_NAME} API",
    description="Subscription, payment and access control backend for the hostel directory.",
    version="1.0.0"
)

# One set of caches per process, shared by the gate and the payment handlers
access_caches = AccessCaches.from_settings()
app.state.access_caches = access_caches

# Register global exception handlers
register_global_exception_handlers(app)

@app.on_event("shutdown")
async def shutdown_event():
    """Close database connections on shutdown."""
    await db_manager.close()
    await service_db_manager.close()
    logger.info("Database engines closed.")

app.add_middleware(
    AccessGateMiddleware,
    gate=AccessGate(access_caches, session_factory=db_manager.async_session_maker),
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(subscription_router, prefix="/api")
app.include_router(payment_router, prefix="/api")
app.include_router(promo_router, prefix="/api")

@app.get("/api/")
async def root():
    return {"message": f"{settings.APP_NAME} API is running"}

@app.get("/api/health")
async def health_check():
    return {"status": "ok"}
