import pytest
from fastapi import HTTPException
from pydantic import ValidationError

from hms.routes.patient_routes import (
    AssignDoctorRequest,
    CreatePatientRequest,
    assign_doctor,
    create_patient,
    delete_patient,
    get_medical_history,
    get_patient,
    list_patients,
)


def _list(db, current_user, **filters):
    params = {'page': 1, 'limit': 10, 'search': None, 'sort_by': 'name', 'sort_order': 'asc'}
    params.update(filters)
    return list_patients(db=db, current_user=current_user, **params)


def _new_patient(**overrides) -> CreatePatientRequest:
    payload = {
        'name': 'Jane Smith',
        'age': 28,
        'gender': 'Female',
        'phone': '+1234567894',
        'blood_type': 'o+',
        'allergies': [{'allergen': 'Penicillin', 'severity': 'severe'}],
    }
    payload.update(overrides)
    return CreatePatientRequest(**payload)


def test_create_patient_request_normalizes_choices() -> None:
    request = _new_patient()

    assert request.gender == 'female'
    assert request.blood_type == 'O+'


@pytest.mark.parametrize('overrides', [{'age': 151}, {'gender': 'unknown'}, {'blood_type': 'C+'}, {'phone': ' '}])
def test_create_patient_request_rejects_invalid_fields(overrides: dict) -> None:
    with pytest.raises(ValidationError):
        _new_patient(**overrides)


def test_doctor_created_patient_is_assigned_to_that_doctor(db_session, make_doctor, make_user) -> None:
    doctor = make_doctor()
    doctor_user = make_user('doctor', profile_id=doctor.doctor_id)

    patient = create_patient(data=_new_patient(), db=db_session, current_user=doctor_user)

    assert patient.patient_id == f'P{patient.id:05d}'
    assert patient.assigned_doctor_pk == doctor.id


def test_doctor_only_lists_assigned_patients(db_session, make_doctor, make_patient, make_user) -> None:
    doctor = make_doctor()
    other_doctor = make_doctor(name='Dr. Sarah Johnson')
    mine = make_patient(name='John Doe', assigned_doctor=doctor)
    make_patient(name='Jane Smith', assigned_doctor=other_doctor)
    doctor_user = make_user('doctor', profile_id=doctor.doctor_id)

    response = _list(db_session, doctor_user)

    assert [patient.id for patient in response.patients] == [mine.id]


def test_patient_can_only_view_own_record(db_session, make_patient, make_user) -> None:
    patient = make_patient(name='John Doe')
    other = make_patient(name='Jane Smith')
    patient_user = make_user('patient', profile_id=patient.patient_id)

    assert get_patient(patient_id=patient.id, db=db_session, current_user=patient_user).id == patient.id

    with pytest.raises(HTTPException) as exception_info:
        get_patient(patient_id=other.id, db=db_session, current_user=patient_user)

    assert exception_info.value.status_code == 403


def test_medical_history_returns_allergies(db_session, make_user) -> None:
    admin = make_user('admin')
    patient = create_patient(data=_new_patient(), db=db_session, current_user=admin)

    history = get_medical_history(patient_id=patient.id, db=db_session, current_user=admin)

    assert history.allergies == [{'allergen': 'Penicillin', 'severity': 'severe'}]
    assert history.medications == []


def test_assign_doctor_by_display_id(db_session, make_doctor, make_patient, make_user) -> None:
    doctor = make_doctor()
    patient = make_patient()
    admin = make_user('admin')

    updated = assign_doctor(
        patient_id=patient.id,
        data=AssignDoctorRequest(doctor_id=doctor.doctor_id.lower()),
        db=db_session,
        current_user=admin,
    )

    assert updated.assigned_doctor_pk == doctor.id

    with pytest.raises(HTTPException) as exception_info:
        assign_doctor(
            patient_id=patient.id,
            data=AssignDoctorRequest(doctor_id='D99999'),
            db=db_session,
            current_user=admin,
        )
    assert exception_info.value.status_code == 404


def test_deleted_patient_is_soft_deleted(db_session, make_patient, make_user) -> None:
    patient = make_patient()
    admin = make_user('admin')

    delete_patient(patient_id=patient.id, db=db_session, current_user=admin)

    assert _list(db_session, admin).total == 0
    db_session.refresh(patient)
    assert patient.is_active is False
