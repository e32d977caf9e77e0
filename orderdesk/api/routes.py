from fastapi import APIRouter, Depends
from fastapi.responses import Response

from orderdesk.api.deps import get_actor
from orderdesk.core.config import get_settings
from orderdesk.core.errors import Forbidden, NotFound
from orderdesk.directory.api import router as profiles_router
from orderdesk.inventory.api import inventory_router, products_router
from orderdesk.metrics import generate_metrics_payload, metrics_content_type
from orderdesk.sales.api import (
    call_logs_router,
    lead_items_router,
    leads_router,
    lookups_router,
    order_items_router,
    orders_router,
    webhooks_router,
)
from orderdesk.security import ActorContext

router = APIRouter()
router.include_router(orders_router)
router.include_router(order_items_router)
router.include_router(leads_router)
router.include_router(lead_items_router)
router.include_router(call_logs_router)
router.include_router(webhooks_router)
router.include_router(lookups_router)
router.include_router(products_router)
router.include_router(inventory_router)
router.include_router(profiles_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"])
def me(actor: ActorContext = Depends(get_actor)) -> dict[str, str | list[str] | None]:
    return {
        "user_id": actor.user_id,
        "display_name": actor.display_name,
        "capability": str(actor.capability),
        "roles": sorted(actor.roles),
    }


@router.get("/metrics", tags=["system"])
def metrics(actor: ActorContext = Depends(get_actor)) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise NotFound("Not found")
    if not actor.is_privileged:
        raise Forbidden("Not allowed: system.metrics")
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
