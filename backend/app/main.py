from contextlib import asynccontextmanager

from fastapi import FastAPI

from backend.app.api.errors import setup_exception_handlers
from backend.app.api.v1.router import router as v1_router
from backend.app.core.logging_setup import configure_logging
from backend.services.scheduler import init_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    init_scheduler()
    yield


app = FastAPI(title="INVENTORYFLOW", version="0.1.0", lifespan=lifespan)
setup_exception_handlers(app)
app.include_router(v1_router, prefix="/v1")
