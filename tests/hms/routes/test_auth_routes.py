import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import ValidationError

from hms.auth import jwt_handler
from hms.auth.dependencies import get_current_user, get_patient_profile, require_roles
from hms.models.patient import Patient
from hms.routes.auth_routes import (
    ChangePasswordRequest,
    CreateUserRequest,
    LoginRequest,
    RegisterRequest,
    UpdateProfileRequest,
    change_password,
    create_user_as_admin,
    login,
    register,
    update_profile,
)


def _credentials(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def _signup(**overrides) -> RegisterRequest:
    payload = {
        'email': ' John.Doe@Email.com ',
        'password': 'password123',
        'name': 'John Doe',
        'phone': '+1234567893',
        'age': 35,
        'gender': 'male',
        'blood_type': 'A+',
    }
    payload.update(overrides)
    return RegisterRequest(**payload)


def _account(**overrides) -> CreateUserRequest:
    payload = {
        'email': 'john.smith@hms.com',
        'password': 'password123',
        'name': 'Dr. John Smith',
        'role': 'doctor',
    }
    payload.update(overrides)
    return CreateUserRequest(**payload)


def test_create_user_request_normalizes_fields() -> None:
    request = _account(email=' John.Smith@HMS.com ', role=' Doctor ', profile_id='d00001')

    assert request.email == 'john.smith@hms.com'
    assert request.role == 'doctor'
    assert request.profile_id == 'D00001'


@pytest.mark.parametrize(
    'overrides',
    [
        {'email': 'not-an-email'},
        {'password': '123'},
        {'name': '  '},
        {'role': 'nurse'},
    ],
)
def test_create_user_request_rejects_invalid_fields(overrides: dict) -> None:
    with pytest.raises(ValidationError):
        _account(**overrides)


@pytest.mark.parametrize('overrides', [{'email': 'nope'}, {'password': '123'}, {'age': -1}, {'gender': 'x'}])
def test_register_request_rejects_invalid_fields(overrides: dict) -> None:
    with pytest.raises(ValidationError):
        _signup(**overrides)


def test_register_creates_and_links_a_new_patient_profile(db_session) -> None:
    user = register(data=_signup(), db=db_session)
    patient = get_patient_profile(user, db_session)

    assert user.role == 'patient'
    assert user.email == 'john.doe@email.com'
    assert patient is not None
    assert user.profile_id == patient.patient_id == f'P{patient.id:05d}'
    assert patient.name == 'John Doe'
    assert patient.email == 'john.doe@email.com'


def test_register_cannot_claim_an_existing_patient(db_session, make_patient) -> None:
    victim = make_patient(name='Victim')

    user = register(data=_signup(profile_id=victim.patient_id, role='admin'), db=db_session)

    assert user.role == 'patient'
    assert user.profile_id != victim.patient_id
    assert get_patient_profile(user, db_session).id != victim.id
    assert db_session.query(Patient).count() == 2


def test_register_rejects_duplicate_email(db_session) -> None:
    register(data=_signup(), db=db_session)

    with pytest.raises(HTTPException) as exception_info:
        register(data=_signup(), db=db_session)

    assert exception_info.value.status_code == 409
    assert db_session.query(Patient).count() == 1


def test_login_returns_token_that_resolves_to_user(db_session) -> None:
    user = register(data=_signup(), db=db_session)
    assert user.hashed_password != 'password123'

    response = login(data=LoginRequest(email='JOHN.DOE@email.com', password='password123'), db=db_session)
    payload = jwt_handler.decode_access_token(response.access_token)
    current_user = get_current_user(credentials=_credentials(response.access_token), db=db_session)

    assert response.token_type == 'bearer'
    assert response.user.role == 'patient'
    assert payload['sub'] == 'john.doe@email.com'
    assert payload['role'] == 'patient'
    assert current_user.id == user.id


def test_login_rejects_wrong_password(db_session) -> None:
    register(data=_signup(), db=db_session)

    with pytest.raises(HTTPException) as exception_info:
        login(data=LoginRequest(email='john.doe@email.com', password='wrong-password'), db=db_session)

    assert exception_info.value.status_code == 401


def test_get_current_user_rejects_garbage_token(db_session) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=_credentials('not-a-jwt'), db=db_session)

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Invalid token'


def test_get_current_user_rejects_unknown_subject(db_session) -> None:
    token = jwt_handler.create_access_token(subject='ghost@hms.com', role='admin')

    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=_credentials(token), db=db_session)

    assert exception_info.value.status_code == 401


def test_require_roles_blocks_other_roles(make_user) -> None:
    admin_only = require_roles('admin')

    assert admin_only(current_user=make_user('admin')).role == 'admin'

    with pytest.raises(HTTPException) as exception_info:
        admin_only(current_user=make_user('patient'))

    assert exception_info.value.status_code == 403


def test_admin_can_create_doctor_accounts(db_session, make_doctor, make_user) -> None:
    doctor = make_doctor()
    admin = make_user('admin')

    user = create_user_as_admin(
        data=_account(profile_id=doctor.doctor_id),
        db=db_session,
        current_user=admin,
    )

    assert user.role == 'doctor'
    assert user.profile_id == doctor.doctor_id


def test_admin_accounts_never_link_a_profile(db_session, make_patient, make_user) -> None:
    patient = make_patient()
    admin = make_user('admin')

    user = create_user_as_admin(
        data=_account(email='second.admin@hms.com', role='admin', profile_id=patient.patient_id),
        db=db_session,
        current_user=admin,
    )

    assert user.profile_id is None


@pytest.mark.parametrize(
    ('role', 'profile_id', 'status_code'),
    [
        ('doctor', None, 400),
        ('doctor', 'D99999', 404),
        ('patient', 'D00001', 404),
    ],
)
def test_admin_account_must_link_an_existing_profile(
    db_session,
    make_doctor,
    make_user,
    role: str,
    profile_id: str | None,
    status_code: int,
) -> None:
    make_doctor()
    admin = make_user('admin')

    with pytest.raises(HTTPException) as exception_info:
        create_user_as_admin(
            data=_account(role=role, profile_id=profile_id),
            db=db_session,
            current_user=admin,
        )

    assert exception_info.value.status_code == status_code


def test_admin_cannot_link_a_profile_twice(db_session, make_patient, make_user) -> None:
    patient = make_patient()
    admin = make_user('admin')
    make_user('patient', email='first@email.com', profile_id=patient.patient_id)

    with pytest.raises(HTTPException) as exception_info:
        create_user_as_admin(
            data=_account(email='second@email.com', role='patient', profile_id=patient.patient_id),
            db=db_session,
            current_user=admin,
        )

    assert exception_info.value.status_code == 409


def test_update_profile_changes_name_and_phone(db_session) -> None:
    user = register(data=_signup(), db=db_session)

    updated = update_profile(
        data=UpdateProfileRequest(name=' Johnny Doe ', phone='+1999999999'),
        db=db_session,
        current_user=user,
    )

    assert updated.name == 'Johnny Doe'
    assert updated.phone == '+1999999999'
    assert updated.email == 'john.doe@email.com'


def test_change_password_requires_current_password(db_session) -> None:
    user = register(data=_signup(), db=db_session)

    with pytest.raises(HTTPException) as exception_info:
        change_password(
            data=ChangePasswordRequest(current_password='nope', new_password='new-password'),
            db=db_session,
            current_user=user,
        )
    assert exception_info.value.status_code == 400

    change_password(
        data=ChangePasswordRequest(current_password='password123', new_password='new-password'),
        db=db_session,
        current_user=user,
    )
    response = login(data=LoginRequest(email='john.doe@email.com', password='new-password'), db=db_session)
    assert response.user.id == user.id
