from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from gala.db import get_db
from gala.dependencies import get_provider
from gala.services.webhook_service import receive_webhook

router = APIRouter(prefix='/api/webhooks', tags=['webhooks'])


@router.post('/stripe')
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    provider=Depends(get_provider),
):
    payload = await request.body()
    # Ledger and order rows are locked inside; keep that work off the event loop.
    outcome = await run_in_threadpool(
        receive_webhook,
        db,
        provider=provider,
        payload=payload,
        signature=request.headers.get('stripe-signature'),
    )
    return outcome.as_response()
