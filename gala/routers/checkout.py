from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from gala.auth import CurrentUser
from gala.db import get_db
from gala.dependencies import get_optional_user, get_provider
from gala.errors import ExternalDependencyError, GalaError
from gala.schemas import CheckoutRequest
from gala.services.checkout_service import checkout

logger = logging.getLogger(__name__)

router = APIRouter(prefix='/api', tags=['checkout'])


@router.post('/checkout')
def create_checkout(
    payload: CheckoutRequest,
    user: CurrentUser | None = Depends(get_optional_user),
    db: Session = Depends(get_db),
    provider=Depends(get_provider),
):
    try:
        result = checkout(
            db,
            request=payload,
            current_user_id=user.id if user else None,
            provider=provider,
        )
    except ExternalDependencyError as exc:
        db.rollback()
        logger.warning('Payment provider failed during checkout for event %s: %s', payload.event_id, exc)
        raise HTTPException(status_code=exc.status_code, detail='Checkout failed') from exc
    except GalaError:
        db.rollback()
        raise
    except Exception as exc:
        db.rollback()
        logger.exception('Checkout failed for event %s product %s', payload.event_id, payload.product_id)
        raise HTTPException(status_code=500, detail='Checkout failed') from exc
    return result.as_dict()
