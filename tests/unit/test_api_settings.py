"""Tests for the account settings endpoints."""

from patient_portal.core.config import settings
from patient_portal.repositories.patient_token_repository import (
    PatientTokenRepository,
)
from patient_portal.services import accounts
from tests.conftest import TEST_PASSWORD, extract_token, make_patient

_PREFIX = "/api/v1/settings"
_NEW_PASSWORD = "brand new password"  # nosec B105


class TestEmailChange:
    async def test_request_sends_link_to_new_address(self, auth_client, patient, notifier):
        response = await auth_client.post(
            f"{_PREFIX}/email",
            json={"current_password": TEST_PASSWORD, "email": "new@example.com"},
        )

        assert response.status_code == 200
        assert notifier.last.recipient == "new@example.com"
        assert (
            f"{settings.frontend_url}/patients/settings/confirm-email/" in notifier.last.body
        )

    async def test_request_wrong_password(self, auth_client, notifier):
        response = await auth_client.post(
            f"{_PREFIX}/email",
            json={"current_password": "wrong password", "email": "new@example.com"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["details"] == [
            {"field": "current_password", "message": "is not valid"}
        ]
        assert notifier.sent == []

    async def test_request_taken_email(self, auth_client, db_session):
        other = await make_patient(db_session)

        response = await auth_client.post(
            f"{_PREFIX}/email",
            json={"current_password": TEST_PASSWORD, "email": other.email},
        )

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "EMAIL_ALREADY_EXISTS"

    async def test_request_requires_session(self, client):
        response = await client.post(
            f"{_PREFIX}/email",
            json={"current_password": TEST_PASSWORD, "email": "new@example.com"},
        )

        assert response.status_code == 401

    async def test_apply_change(self, auth_client, notifier):
        await auth_client.post(
            f"{_PREFIX}/email",
            json={"current_password": TEST_PASSWORD, "email": "new@example.com"},
        )
        token = extract_token(notifier.last)

        response = await auth_client.post(f"{_PREFIX}/email/{token}")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["email"] == "new@example.com"
        assert data["confirmed_at"] is not None

    async def test_apply_invalid_token(self, auth_client):
        response = await auth_client.post(f"{_PREFIX}/email/oops")

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_TOKEN"


class TestPhoneNumberChange:
    async def test_request_and_apply(self, auth_client, patient, notifier):
        response = await auth_client.post(
            f"{_PREFIX}/phone-number",
            json={"current_password": TEST_PASSWORD, "phone_number": "0799999999"},
        )
        assert response.status_code == 200
        assert notifier.last.recipient == patient.email
        token = extract_token(notifier.last)

        response = await auth_client.post(f"{_PREFIX}/phone-number/{token}")

        assert response.status_code == 200
        assert response.json()["data"]["phone_number"] == "0799999999"

    async def test_request_invalid_format(self, auth_client):
        response = await auth_client.post(
            f"{_PREFIX}/phone-number",
            json={"current_password": TEST_PASSWORD, "phone_number": "0812345678"},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_apply_other_patients_token(self, auth_client, db_session, notifier):
        other = await make_patient(db_session)
        await accounts.deliver_update_phone_number_instructions(
            db_session,
            other,
            "0799999999",
            lambda t: f"{settings.frontend_url}/x/{t}",
            notifier,
        )

        response = await auth_client.post(
            f"{_PREFIX}/phone-number/{extract_token(notifier.last)}"
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "INVALID_TOKEN"


class TestPasswordChange:
    async def test_rotates_sessions(self, auth_client, db_session, patient):
        """Every old session ends; the response carries a new one."""
        old_rows = await PatientTokenRepository.list_for_patient(db_session, patient.id)

        response = await auth_client.post(
            f"{_PREFIX}/password",
            json={
                "current_password": TEST_PASSWORD,
                "password": _NEW_PASSWORD,
                "password_confirmation": _NEW_PASSWORD,
            },
        )

        assert response.status_code == 200
        assert response.headers["set-cookie"].startswith(f"{settings.session_cookie_name}=")
        rows = await PatientTokenRepository.list_for_patient(db_session, patient.id)
        assert [row.context for row in rows] == ["session"]
        assert rows[0].token != old_rows[0].token
        assert await accounts.get_patient_by_email_and_password(
            db_session, patient.email, _NEW_PASSWORD
        ) is not None

    async def test_wrong_current_password(self, auth_client, db_session, patient):
        response = await auth_client.post(
            f"{_PREFIX}/password",
            json={
                "current_password": "wrong password",
                "password": _NEW_PASSWORD,
                "password_confirmation": _NEW_PASSWORD,
            },
        )

        assert response.status_code == 400
        assert len(await PatientTokenRepository.list_for_patient(db_session, patient.id)) == 1

    async def test_confirmation_mismatch(self, auth_client):
        response = await auth_client.post(
            f"{_PREFIX}/password",
            json={
                "current_password": TEST_PASSWORD,
                "password": _NEW_PASSWORD,
                "password_confirmation": "something else",
            },
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "VALIDATION_ERROR"
