import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from hms.auth import jwt_handler
from hms.auth.dependencies import get_current_user, require_roles
from hms.database import format_display_id, get_db
from hms.models.doctor import Doctor
from hms.models.patient import Patient
from hms.models.user import ROLES, User
from hms.routes.common import MessageResponse, database_unavailable
from hms.routes.patient_routes import PATIENT_ID_PREFIX, CreatePatientRequest

router = APIRouter(tags=['auth'])

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


def _normalize_email(value: str) -> str:
    normalized = value.strip().lower()
    if '@' not in normalized:
        raise ValueError('Valid email is required.')
    return normalized


def _validate_password(value: str) -> str:
    if len(value) < MIN_PASSWORD_LENGTH:
        raise ValueError(f'Password must be at least {MIN_PASSWORD_LENGTH} characters.')
    return value


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return _normalize_email(value)


class CreateUserRequest(BaseModel):
    email: str
    password: str
    name: str
    phone: str | None = None
    role: str = 'patient'
    profile_id: str | None = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return _normalize_email(value)

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _validate_password(value)

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Name is required.')
        return normalized

    @field_validator('role')
    @classmethod
    def validate_role(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in ROLES:
            raise ValueError('Role must be admin, doctor or patient.')
        return normalized

    @field_validator('profile_id')
    @classmethod
    def validate_profile_id(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().upper() or None


class RegisterRequest(CreatePatientRequest):
    email: str
    password: str

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        return _normalize_email(value)

    @field_validator('password')
    @classmethod
    def validate_password(cls, value: str) -> str:
        return _validate_password(value)


class UpdateProfileRequest(BaseModel):
    name: str | None = None
    phone: str | None = None

    @field_validator('name', 'phone')
    @classmethod
    def validate_optional_text(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            raise ValueError('Field cannot be empty.')
        return normalized


class ChangePasswordRequest(BaseModel):
    current_password: str
    new_password: str

    @field_validator('new_password')
    @classmethod
    def validate_new_password(cls, value: str) -> str:
        return _validate_password(value)


class UserResponse(BaseModel):
    id: int
    email: str
    name: str
    phone: str | None = None
    role: str
    profile_id: str | None = None

    class Config:
        from_attributes = True


class TokenResponse(BaseModel):
    access_token: str
    token_type: str
    user: UserResponse


def create_user(data: CreateUserRequest, db: Session) -> User:
    try:
        ensure_email_available(data.email, db)
        profile_id = resolve_profile_link(data, db)

        user = User(
            email=data.email,
            hashed_password=generate_password_hash(data.password),
            name=data.name,
            phone=data.phone,
            role=data.role,
            profile_id=profile_id,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info('Created %s account %s', user.role, user.email)

        return user
    except SQLAlchemyError as exc:
        raise database_unavailable(exc, db) from exc


def ensure_email_available(email: str, db: Session) -> None:
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='A user with this email already exists.',
        )


def resolve_profile_link(data: CreateUserRequest, db: Session) -> str | None:
    """Return the profile ID the new account may link to.

    Admin accounts have no profile. Doctor and patient accounts must name an
    existing profile of their own kind that no other account is linked to.
    """
    if data.role == 'admin':
        return None

    if not data.profile_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'A {data.role} account must be linked to a {data.role} profile.',
        )

    if data.role == 'doctor':
        profile = db.query(Doctor).filter(Doctor.doctor_id == data.profile_id).first()
    else:
        profile = db.query(Patient).filter(Patient.patient_id == data.profile_id).first()
    if profile is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f'{data.role.capitalize()} profile not found',
        )

    if db.query(User).filter(User.profile_id == data.profile_id).first():
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='This profile is already linked to another account.',
        )
    return data.profile_id


@router.post('/register', response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def register(data: RegisterRequest, db: Session = Depends(get_db)):
    """Self-register a patient account together with its patient profile."""
    try:
        ensure_email_available(data.email, db)

        patient = Patient(**data.model_dump(exclude={'password'}))
        db.add(patient)
        db.flush()
        patient.patient_id = format_display_id(PATIENT_ID_PREFIX, patient.id)

        user = User(
            email=data.email,
            hashed_password=generate_password_hash(data.password),
            name=data.name,
            phone=data.phone,
            role='patient',
            profile_id=patient.patient_id,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        logger.info('Registered patient %s as %s', patient.patient_id, user.email)

        return user
    except SQLAlchemyError as exc:
        raise database_unavailable(exc, db) from exc


@router.post('/users', response_model=UserResponse, status_code=status.HTTP_201_CREATED)
def create_user_as_admin(
    data: CreateUserRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin')),
):
    return create_user(data, db)


@router.get('/users', response_model=list[UserResponse])
def list_users(
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin')),
):
    try:
        return db.query(User).order_by(User.id.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('/login', response_model=TokenResponse)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    try:
        user = db.query(User).filter(User.email == data.email).first()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc

    if user is None or not user.is_active or not check_password_hash(user.hashed_password, data.password):
        logger.info('Rejected login for %s', data.email)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail='Invalid credentials',
        )

    token = jwt_handler.create_access_token(subject=user.email, role=user.role)
    return TokenResponse(
        access_token=token,
        token_type='bearer',
        user=UserResponse.model_validate(user),
    )


@router.get('/me', response_model=UserResponse)
@router.get('/profile', response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)):
    return current_user


@router.put('/profile', response_model=UserResponse)
def update_profile(
    data: UpdateProfileRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        for field_name, value in data.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(current_user, field_name, value)

        db.commit()
        db.refresh(current_user)

        return current_user
    except SQLAlchemyError as exc:
        raise database_unavailable(exc, db) from exc


@router.put('/change-password', response_model=MessageResponse)
def change_password(
    data: ChangePasswordRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if not check_password_hash(current_user.hashed_password, data.current_password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Current password is incorrect.',
        )

    try:
        current_user.hashed_password = generate_password_hash(data.new_password)
        db.commit()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc, db) from exc

    return MessageResponse(message='Password updated successfully')
