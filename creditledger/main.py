"""
Main FastAPI application for the credit ledger.
Serves health, credits, payments, generations and metrics.
"""
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from creditledger.api.routes import credits, generations, health, payments
from creditledger.core.config import settings
from creditledger.core.logging import configure_logging
from creditledger.utils.metrics import router as metrics_router

configure_logging()

app = FastAPI(
    title="Credit Ledger API",
    description="Prepaid credits for video generation, paid over Lightning",
    version="1.0.0",
)

# CORS
origins = settings.cors_origins_list
if not origins:
    origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Routers
app.include_router(health.router, tags=["health"])
app.include_router(credits.router)
app.include_router(payments.router)
app.include_router(generations.router)
app.include_router(metrics_router)
