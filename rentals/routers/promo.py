from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from rentals.db import get_session
from rentals.deps import CurrentUser, get_current_user
from rentals.promo import validate_promo_code
from rentals.schemas import PromoValidationRequest, PromoValidationResponse

router = APIRouter(prefix="/promo", tags=["promo"])


@router.post("/validate", response_model=PromoValidationResponse)
async def validate_promo(
    payload: PromoValidationRequest,
    current_user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> PromoValidationResponse:
    """
    Check a code against a candidate stay. Always 200: an unusable code comes
    back as valid=false with a reason. Only admins may check on behalf of
    another user.
    """
    user_id = current_user.id
    if current_user.is_admin and payload.user_id is not None:
        user_id = payload.user_id

    result = await validate_promo_code(
        session,
        payload.code,
        apartment_id=payload.apartment_id,
        amount=payload.amount,
        nights=payload.nights,
        user_id=user_id,
    )
    return PromoValidationResponse(
        valid=result.valid, discount=result.discount, reason=result.reason
    )
