from fastapi import APIRouter, Depends

from groomquote.auth import require_actor
from groomquote.errors import MarketError
from groomquote.models import Actor, BusinessStatistics
from groomquote.routers.common import raise_market_http_error
from groomquote.services.statistics import business_statistics

router = APIRouter(prefix="/statistics", tags=["statistics"])


@router.get("/business/{business_id}", response_model=BusinessStatistics)
def get_business_statistics(business_id: str, actor: Actor = Depends(require_actor)):
    try:
        return business_statistics(actor, business_id)
    except MarketError as exc:
        raise_market_http_error(exc)
