"""
Trigger HTTP du moteur de réapprovisionnement.

POST /v1/cron/generate-orders : trigger manuel / interne.
    Authorization: Bearer <CRON_SECRET> exigé si un secret est configuré.
GET  /v1/cron/generate-orders : trigger de la plateforme (cron).
    Accepté sans secret si le header plateforme vaut "1", sinon même règle que POST.
"""

from __future__ import annotations

import hmac
import logging

from fastapi import APIRouter, Depends, Header, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.core.config import settings
from backend.app.core.exceptions import AuthorizationError
from backend.services.replenishment import ReplenishmentRunner

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cron")


def _bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def _require_secret(authorization: str | None) -> None:
    secret = settings.CRON_SECRET
    if not secret:
        return
    token = _bearer_token(authorization)
    if token is None or not hmac.compare_digest(token.encode("utf-8"), secret.encode("utf-8")):
        logger.warning("Unauthorized replenishment trigger attempt")
        raise AuthorizationError()


def _is_platform_cron(request: Request) -> bool:
    return request.headers.get(settings.CRON_PLATFORM_HEADER) == "1"


def _run(db: Session, tenant_id: int | None) -> JSONResponse:
    result = ReplenishmentRunner(db).run(tenant_id=tenant_id)
    # seul un échec de lecture total donne un statut d'erreur
    status_code = 200 if result.success else 500
    return JSONResponse(status_code=status_code, content=jsonable_encoder(result))


@router.post("/generate-orders")
def trigger_generate_orders(
    tenant_id: int | None = None,
    authorization: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    _require_secret(authorization)
    logger.info("Replenishment triggered manually (POST)")
    return _run(db, tenant_id)


@router.get("/generate-orders")
def scheduled_generate_orders(
    request: Request,
    tenant_id: int | None = None,
    authorization: str | None = Header(default=None),
    db: Session = Depends(get_db),
):
    if not _is_platform_cron(request):
        _require_secret(authorization)
    logger.info("Replenishment triggered by scheduler (GET)")
    return _run(db, tenant_id)
