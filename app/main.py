# app/main.py
import os
import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from app.auth import bootstrap_admin
from app.database import init_db, dispose_db, session_scope
from app.routers import (
    auth_router,
    systems_router,
    inspections_router,
    sop_router,
    excel_router,
    agents_router,
    drafts_router,
    dashboard_router,
)
from app.services.drafts import DraftAutosaver, store_factory_from_sessions
from app.services.inflight import InFlightGuard
from app.services.storage import STORAGE_BASE

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Pharma CSV Records API")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router.router)
app.include_router(systems_router.router)
app.include_router(inspections_router.router)
app.include_router(sop_router.router)
app.include_router(excel_router.router)
app.include_router(agents_router.router)
app.include_router(drafts_router.router)
app.include_router(dashboard_router.router)


@app.on_event("startup")
async def on_startup():
    os.environ.setdefault("OTEL_SDK_DISABLED", "true")
    # init db
    await init_db()
    # ensure storage folders exist
    for kind in ("excel", "sop"):
        os.makedirs(os.path.join(STORAGE_BASE, kind), exist_ok=True)
    async with session_scope() as s:
        await bootstrap_admin(s)
    # timers and locks belong to the running loop
    app.state.autosaver = DraftAutosaver(store_factory_from_sessions(session_scope))
    app.state.inflight = InFlightGuard()
    logger.info("Startup complete, storage at %s", STORAGE_BASE)


@app.on_event("shutdown")
async def on_shutdown():
    # unsaved drafts are written before the engine goes away
    await app.state.autosaver.flush()
    await dispose_db()
