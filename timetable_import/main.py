import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from timetable_import.api.routes import router as api_router
from timetable_import.core.config import settings
from timetable_import.core.logs import log_feed

logger = logging.getLogger(__name__)

app = FastAPI(title="Timetable Import API", version="0.1.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router)


@app.on_event("startup")
def on_startup():
    # run.py wires the feed through dictConfig; plain `uvicorn timetable_import.main:app` does not.
    root = logging.getLogger()
    if log_feed not in root.handlers:
        root.addHandler(log_feed)
    logger.info("Timetable import API starting (backend=%s, env=%s)", settings.api_base_url, settings.environment)


@app.get("/health")
def health_check():
    return {"status": "ok"}
