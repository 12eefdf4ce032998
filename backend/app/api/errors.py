from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from backend.app.core.exceptions import ReplenishmentError


def setup_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(ReplenishmentError)
    async def replenishment_error_handler(request: Request, exc: ReplenishmentError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())
