from mmart.channels import ChannelSenders
from mmart.core.deps import get_verification_issuer
from mmart.main import app
from mmart.services.verification import VerificationCodeIssuer

from tests.conftest import RecordingSender, bearer


def test_send_and_verify_phone(client, senders, user, user_headers):
    resp = client.post("/verification/phone/send", headers=user_headers)
    assert resp.status_code == 200
    assert resp.json() == {
        "sent": True,
        "expires_in_minutes": 15,
        "message": "Verification code sent to your phone",
    }

    resp = client.post("/verification/phone/verify", json={"code": senders.phone.last_code}, headers=user_headers)
    assert resp.status_code == 200
    assert resp.json()["verified"] is True

    status = client.get("/verification/phone/status", headers=user_headers).json()
    assert status == {"channel": "phone", "contact": user.phone_number, "verified": True}


def test_send_email_code(client, senders, user, user_headers):
    resp = client.post("/verification/email/send", headers=user_headers)

    assert resp.status_code == 200
    assert senders.email.sent[-1]["address"] == user.email
    assert senders.phone.sent == []


def test_wrong_code_is_generic_400(client, senders, user_headers):
    client.post("/verification/phone/send", headers=user_headers)
    wrong = "100000" if senders.phone.last_code != "100000" else "100001"

    resp = client.post("/verification/phone/verify", json={"code": wrong}, headers=user_headers)

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid or expired code"


def test_code_cannot_be_reused_after_resend(client, senders, user_headers):
    client.post("/verification/phone/send", headers=user_headers)
    first = senders.phone.last_code
    client.post("/verification/phone/send", headers=user_headers)
    second = senders.phone.last_code

    if first != second:
        resp = client.post("/verification/phone/verify", json={"code": first}, headers=user_headers)
        assert resp.status_code == 400
    resp = client.post("/verification/phone/verify", json={"code": second}, headers=user_headers)
    assert resp.status_code == 200


def test_already_verified(client, senders, user_headers):
    client.post("/verification/phone/send", headers=user_headers)
    client.post("/verification/phone/verify", json={"code": senders.phone.last_code}, headers=user_headers)

    resend = client.post("/verification/phone/send", headers=user_headers)
    assert resend.status_code == 400
    assert resend.json()["detail"] == "Your phone is already verified"

    reverify = client.post("/verification/phone/verify", json={"code": "000000"}, headers=user_headers)
    assert reverify.status_code == 200
    assert reverify.json()["message"] == "Your phone is already verified"


def test_missing_phone_number(client, make_user):
    no_phone = make_user(email="nophone@example.com", phone_number=None)

    resp = client.post("/verification/phone/send", headers=bearer(no_phone.id, "user"))

    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "MISSING_CONTACT"


def test_delivery_failure_still_answers(client, db, user_headers):
    failing = ChannelSenders(phone=RecordingSender("sms", fail=True), email=RecordingSender("email"))
    app.dependency_overrides[get_verification_issuer] = lambda: VerificationCodeIssuer(failing)

    resp = client.post("/verification/phone/send", headers=user_headers)

    assert resp.status_code == 200
    assert resp.json()["sent"] is False


def test_unknown_channel(client, user_headers):
    assert client.post("/verification/fax/send", headers=user_headers).status_code == 422


def test_requires_customer_token(client, admin_headers):
    assert client.post("/verification/phone/send").status_code == 401
    assert client.post("/verification/phone/send", headers=admin_headers).status_code == 403


def test_status_before_verification(client, user, user_headers):
    status = client.get("/verification/email/status", headers=user_headers).json()

    assert status == {"channel": "email", "contact": user.email, "verified": False}
