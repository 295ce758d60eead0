import logging
import math

from fastapi import HTTPException, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from hms.auth.dependencies import get_doctor_profile, get_patient_profile
from hms.core import config
from hms.database import DATABASE_UNAVAILABLE_DETAIL
from hms.models.doctor import Doctor
from hms.models.patient import Patient
from hms.models.user import User

logger = logging.getLogger(__name__)


class MessageResponse(BaseModel):
    message: str


def database_unavailable(exc: SQLAlchemyError, db: Session | None = None) -> HTTPException:
    if db is not None:
        db.rollback()
    logger.exception('Database operation failed', exc_info=exc)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def clamp_page_size(limit: int | None) -> int:
    if not limit or limit < 1:
        return config.DEFAULT_PAGE_SIZE
    return min(limit, config.MAX_PAGE_SIZE)


def paginate(query: Query, page: int, limit: int) -> tuple[list, int, int]:
    """Return ``(items, total, total_pages)`` for a 1-based page."""
    limit = clamp_page_size(limit)
    page = max(page, 1)
    total = query.order_by(None).count()
    items = query.limit(limit).offset((page - 1) * limit).all()
    return items, total, math.ceil(total / limit) if total else 0


def apply_sort(query: Query, model, sort_by: str, sort_order: str, allowed: dict[str, str]) -> Query:
    column = getattr(model, allowed.get(sort_by, next(iter(allowed.values()))))
    if sort_order == 'desc':
        return query.order_by(column.desc(), model.id.desc())
    return query.order_by(column.asc(), model.id.asc())


def require_doctor_profile(current_user: User, db: Session) -> Doctor:
    doctor = get_doctor_profile(current_user, db)
    if doctor is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Doctor profile not found for this account.',
        )
    return doctor


def require_patient_profile(current_user: User, db: Session) -> Patient:
    patient = get_patient_profile(current_user, db)
    if patient is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Patient profile not found for this account.',
        )
    return patient


def access_denied() -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail='Access denied')
