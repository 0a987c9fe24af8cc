"""Tests for PatientRepository."""

from datetime import UTC, date, datetime

import pytest
from sqlalchemy.exc import IntegrityError

from patient_portal.repositories.patient_repository import PatientRepository
from tests.conftest import make_patient


class TestPatientRepository:
    async def test_create_normalizes_email(self, db_session):
        patient = await PatientRepository.create(
            db_session,
            email="  Mixed.Case@Example.COM ",
            hashed_password="hash",
            first_name="A",
            middle_name="B",
            last_name="C",
            username="abc",
            phone_number="0711111111",
            date_of_birth=date(2000, 1, 1),
        )

        assert patient.email == "mixed.case@example.com"
        assert patient.gender == "male"
        assert patient.confirmed_at is None
        assert patient.created_at is not None

    async def test_get_by_email_is_case_insensitive(self, db_session, patient):
        found = await PatientRepository.get_by_email(db_session, patient.email.upper())

        assert found is not None
        assert found.id == patient.id

    async def test_get_by_unknown_email(self, db_session):
        assert await PatientRepository.get_by_email(db_session, "nobody@example.com") is None

    async def test_get_by_id_username_and_phone(self, db_session, patient):
        assert (await PatientRepository.get_by_id(db_session, patient.id)) is patient
        assert (await PatientRepository.get_by_username(db_session, patient.username)).id == patient.id
        assert (
            await PatientRepository.get_by_phone_number(db_session, patient.phone_number)
        ).id == patient.id

    @pytest.mark.parametrize("field", ["email", "username", "phone_number"])
    async def test_unique_fields(self, db_session, patient, field):
        values = {
            "email": "unique@example.com",
            "username": "unique",
            "phone_number": "0700000999",
        }
        values[field] = getattr(patient, field)

        with pytest.raises(IntegrityError):
            await PatientRepository.create(
                db_session,
                hashed_password="hash",
                first_name="A",
                middle_name="B",
                last_name="C",
                date_of_birth=date(2000, 1, 1),
                **values,
            )

    async def test_update_allowed_fields(self, db_session, patient):
        confirmed_at = datetime(2026, 2, 2, tzinfo=UTC)

        updated = await PatientRepository.update(
            db_session,
            patient.id,
            email="NEW@example.com",
            confirmed_at=confirmed_at,
        )

        assert updated is not None
        assert updated.email == "new@example.com"
        assert updated.confirmed_at is not None

    async def test_update_rejects_unknown_fields(self, db_session, patient):
        with pytest.raises(ValueError, match="Unknown fields: id, username"):
            await PatientRepository.update(db_session, patient.id, username="x", id=5)

    async def test_update_missing_patient(self, db_session):
        assert await PatientRepository.update(db_session, 9999, email="x@y.z") is None

    async def test_repr_omits_password_hash(self, db_session):
        patient = await make_patient(db_session)

        assert patient.hashed_password not in repr(patient)
        assert patient.email in repr(patient)
