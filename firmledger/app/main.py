import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from firmledger.app.api.config import cors_origins
from firmledger.app.api.routes.analytics import router as analytics_router


logger = logging.getLogger(__name__)


app = FastAPI(title="Firm Ledger Analytics API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Entity analytics: /api/{clients|groups|tasks}/{key}/analytics/...
app.include_router(analytics_router)
