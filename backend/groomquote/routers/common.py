from typing import NoReturn

from fastapi import HTTPException

from groomquote.errors import (
    MarketConflictError,
    MarketError,
    MarketNotFoundError,
    MarketPermissionError,
    MarketStateError,
    PaymentAmountMismatchError,
    PaymentGatewayError,
)


def raise_market_http_error(exc: MarketError) -> NoReturn:
    if isinstance(exc, MarketNotFoundError):
        raise HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, MarketPermissionError):
        raise HTTPException(status_code=403, detail=str(exc))
    if isinstance(exc, (MarketConflictError, MarketStateError)):
        raise HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, PaymentGatewayError):
        raise HTTPException(status_code=502, detail=str(exc))
    if isinstance(exc, PaymentAmountMismatchError):
        raise HTTPException(
            status_code=400,
            detail={"message": str(exc), "expected": exc.expected, "actual": exc.actual},
        )
    raise HTTPException(status_code=400, detail=str(exc))
