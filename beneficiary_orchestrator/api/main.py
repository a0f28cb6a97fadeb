import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from beneficiary_orchestrator.api import routes_analysis
from beneficiary_orchestrator.api.schemas import HealthResponse
from beneficiary_orchestrator.core.config import get_settings
from beneficiary_orchestrator.core.logging import setup_logging

settings = get_settings()
setup_logging(logging.INFO)

app = FastAPI(title=settings.app_name)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/healthz", response_model=HealthResponse)
def healthz():
    return {"status": "ok", "service": settings.app_name}


app.include_router(routes_analysis.router)
