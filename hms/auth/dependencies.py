from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from hms.auth import jwt_handler
from hms.database import get_db
from hms.models.doctor import Doctor
from hms.models.patient import Patient
from hms.models.user import User

security = HTTPBearer()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except Exception as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    email = payload.get("sub")
    if not email:
        raise HTTPException(status_code=401, detail="Invalid token subject")

    user = db.query(User).filter(User.email == email).first()
    if user is None or not user.is_active:
        raise HTTPException(status_code=401, detail="User not found")
    return user


def require_roles(*roles: str):
    def dependency(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Access denied",
            )
        return current_user

    return dependency


def get_doctor_profile(current_user: User, db: Session) -> Doctor | None:
    if current_user.role != "doctor" or not current_user.profile_id:
        return None
    return db.query(Doctor).filter(Doctor.doctor_id == current_user.profile_id).first()


def get_patient_profile(current_user: User, db: Session) -> Patient | None:
    if current_user.role != "patient" or not current_user.profile_id:
        return None
    return db.query(Patient).filter(Patient.patient_id == current_user.profile_id).first()
