import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core import db, settings
from notifications import router as notifications_router
from records import router as records_router
from tracking import router as tracking_router
from tracking import runtime as tracking_runtime

logging.basicConfig(
    level=settings.env_str("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    # Initialize the DB pool once per process. Any failure here is fatal:
    # without the tracking table there is no delivery guarantee.
    await db.init_pool()
    try:
        await tracking_runtime.start()
        yield
    finally:
        # Let the in-flight poll cycle finish before the pool goes away.
        await tracking_runtime.stop()
        await db.close_pool()


app = FastAPI(lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.env_list("CORS_ORIGINS", "*"),
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(records_router.router, tags=["tables"])
app.include_router(tracking_router.router, tags=["tracking"])
app.include_router(notifications_router.router, tags=["notifications"])


@app.get("/")
def root() -> dict:
    return {"message": "table gateway api"}
