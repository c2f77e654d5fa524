from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api import health, wallet
from .api.error_handlers import register_error_handlers
from .config import settings
from .logging_config import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    yield


# Create FastAPI app
app = FastAPI(
    title="SmartPay API",
    description="Passkey smart-wallet transfers with sponsored fees",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(wallet.router, tags=["Wallet"])


@app.get("/")
async def root():
    """Root endpoint with basic info"""
    return {
        "name": "SmartPay API",
        "version": "0.1.0",
        "cluster": settings.cluster,
        "docs": "/docs",
        "health": "/healthz"
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "smartpay.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level=settings.log_level.lower()
    )
