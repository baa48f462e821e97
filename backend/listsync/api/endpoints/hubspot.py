"""
HubSpot lookup endpoints used by the upload UI.
"""

import logging
from typing import Annotated, List

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from listsync.api.dependencies import get_crm
from listsync.core.interfaces.crm import CRMProvider
from listsync.services.pipeline.auth_guard import MISSING_TOKEN_MESSAGE, is_auth_error

router = APIRouter(prefix="/hubspot")
logger = logging.getLogger(__name__)


class OwnerResponse(BaseModel):
    id: str
    email: str
    name: str


@router.get("/owners", response_model=List[OwnerResponse])
async def list_owners(
    provider: Annotated[CRMProvider, Depends(get_crm)],
) -> List[OwnerResponse]:
    """CRM users that review tasks can be assigned to."""
    try:
        owners = await provider.get_owners()
    except Exception as e:
        if is_auth_error(e):
            logger.warning(f"⚠️ Owner lookup rejected by HubSpot: {e}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"error": MISSING_TOKEN_MESSAGE, "code": "crm_auth_expired"},
            )
        logger.error(f"❌ Owner lookup failed: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail={"error": "Failed to load HubSpot owners", "code": "crm_error"},
        )

    return [OwnerResponse(**owner) for owner in owners]
