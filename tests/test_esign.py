"""
eSign link lifecycle: creation, viewing, OTP signing, expiry and lockout.
Run: python -m pytest tests/test_esign.py -v
"""
from datetime import timedelta
from unittest.mock import patch

from sqlalchemy import select

from config import settings
from errors import (
    AlreadySigned,
    AuthorizationError,
    ExpiredResourceError,
    NotFoundError,
    StateError,
    ValidationError,
    VerificationFailed,
)
from models import ESignRequest
from services import esign
from utils.clock import utcnow
from support import DISBURSER, MANAGER, DatabaseTestCase

SEND_OTP = ("POST", "/kyc/aadhaar/okyc/otp")
VERIFY_OTP = ("POST", "/kyc/aadhaar/okyc/otp/verify")


class ESignTestCase(DatabaseTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.partners.set(*SEND_OTP, {"data": {"ref_id": 4471}})
        self.partners.set(*VERIFY_OTP, {"data": {"status": "VALID", "name": "Asha Verma"}})
        self.app = await self.make_application(stage="sanctioned", approved_amount=25000, tenure_days=30, interest_rate=1)
        self.document = await esign.generate_document(self.session, MANAGER, self.app.id, "sanction_letter")

    async def create(self, **kwargs):
        params = dict(
            document_type="sanction_letter",
            signer_name="Asha Verma",
            signer_phone="9876543210",
            signer_email="asha@example.com",
            channel="both",
            document_id=self.document.id,
        )
        params.update(kwargs)
        return await esign.create_esign_request(self.session, self.providers, MANAGER, self.app.id, **params)


class TestCreateRequest(ESignTestCase):
    async def test_create_sets_token_and_ttl(self):
        request = await self.create()
        self.assertEqual(request.status, "created")
        self.assertTrue(len(request.access_token) >= 32)
        ttl = request.token_expires_at - utcnow()
        self.assertTrue(timedelta(hours=23, minutes=59) < ttl <= timedelta(hours=settings.esign_token_ttl_hours))
        self.assertIn(request.access_token, esign.signing_url(request.access_token))

    async def test_notification_recorded_in_audit_log(self):
        request = await self.create()
        self.assertIsNotNone(request.notification_sent_at)
        self.assertEqual([e["action"] for e in request.audit_log], ["created", "notification_sent"])
        self.assertEqual(len(self.partners.calls_to("/messages/sms")), 1)
        self.assertEqual(len(self.partners.calls_to("/messages/email")), 1)

    async def test_notification_failure_does_not_block_creation(self):
        self.partners.set("POST", "/messages/sms", (500, {"message": "down"}))
        self.partners.set("POST", "/messages/email", (500, {"message": "down"}))
        request = await self.create()
        self.assertEqual(request.status, "created")
        self.assertIsNone(request.notification_sent_at)

    async def test_new_request_supersedes_open_one(self):
        first = await self.create()
        second = await self.create()
        self.assertEqual(first.status, "expired")
        self.assertEqual(first.audit_log[-1]["action"], "superseded")
        self.assertEqual(second.status, "created")

    async def test_channel_requires_matching_contact(self):
        with self.assertRaises(ValidationError):
            await self.create(channel="sms", signer_phone=None)
        with self.assertRaises(ValidationError):
            await self.create(channel="email", signer_email=None)
        with self.assertRaises(ValidationError):
            await self.create(channel="fax")

    async def test_requires_sanction_permission(self):
        with self.assertRaises(AuthorizationError):
            await esign.create_esign_request(
                self.session, self.providers, DISBURSER, self.app.id, "sanction_letter", "Asha", signer_phone="9876543210"
            )

    async def test_document_stage_rules(self):
        lead = await self.make_application(stage="lead")
        with self.assertRaises(StateError):
            await esign.generate_document(self.session, MANAGER, lead.id, "sanction_letter")
        with self.assertRaises(ValidationError):
            await esign.generate_document(self.session, MANAGER, self.app.id, "offer_letter")


class TestSigning(ESignTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.request = await self.create()
        self.token = self.request.access_token

    async def test_view_stamps_viewed_once(self):
        summary = await esign.view_esign_request(self.session, self.token)
        self.assertFalse(summary["expired"])
        self.assertEqual(summary["application_number"], self.app.application_number)
        viewed_at = self.request.viewed_at
        self.assertIsNotNone(viewed_at)
        await esign.view_esign_request(self.session, self.token)
        self.assertEqual(self.request.viewed_at, viewed_at)
        self.assertEqual([e["action"] for e in self.request.audit_log].count("viewed"), 1)

    async def test_unknown_token(self):
        with self.assertRaises(NotFoundError):
            await esign.view_esign_request(self.session, "not-a-token")

    async def test_full_signing_marks_document_signed(self):
        await esign.initiate_signing(self.session, self.providers, self.token, "1234 5678 9012", True)
        self.assertEqual(self.request.status, "otp_sent")
        self.assertEqual(self.request.provider_ref_id, "4471")
        self.assertEqual(self.request.signer_aadhaar_last4, "9012")

        await esign.complete_signing(self.session, self.providers, self.token, "123456", ip="10.0.0.7")
        self.assertEqual(self.request.status, "signed")
        self.assertEqual(self.request.signed_from_ip, "10.0.0.7")
        self.assertTrue(self.document.customer_signed)
        self.assertIsNotNone(self.document.signed_at)

        with self.assertRaises(AlreadySigned):
            await esign.initiate_signing(self.session, self.providers, self.token, "123456789012", True)
        summary = await esign.view_esign_request(self.session, self.token)
        self.assertTrue(summary["already_signed"])

    async def test_initiate_requires_consent_and_valid_aadhaar(self):
        with self.assertRaises(ValidationError):
            await esign.initiate_signing(self.session, self.providers, self.token, "123456789012", False)
        with self.assertRaises(ValidationError):
            await esign.initiate_signing(self.session, self.providers, self.token, "12345", True)
        self.assertEqual(self.partners.calls_to("/kyc/aadhaar"), [])

    async def test_complete_before_otp(self):
        with self.assertRaises(StateError):
            await esign.complete_signing(self.session, self.providers, self.token, "123456")

    async def test_valid_otp_after_expiry_is_refused(self):
        await esign.initiate_signing(self.session, self.providers, self.token, "123456789012", True)
        later = utcnow() + timedelta(hours=25)
        with patch("services.esign.utcnow", return_value=later):
            with self.assertRaises(ExpiredResourceError):
                await esign.complete_signing(self.session, self.providers, self.token, "123456")

        stored = (await self.session.execute(select(ESignRequest).where(ESignRequest.id == self.request.id))).scalar_one()
        self.assertEqual(stored.status, "expired")
        self.assertFalse(self.document.customer_signed)
        self.assertEqual(self.partners.calls_to("/kyc/aadhaar/okyc/otp/verify"), [])

    async def test_wrong_otp_counts_down_then_fails(self):
        self.partners.set(*VERIFY_OTP, {"data": {"status": "INVALID", "message": "Invalid OTP"}})
        await esign.initiate_signing(self.session, self.providers, self.token, "123456789012", True)

        for attempt in range(1, settings.esign_max_otp_attempts + 1):
            with self.assertRaises(VerificationFailed) as ctx:
                await esign.complete_signing(self.session, self.providers, self.token, "000000")
            self.assertEqual(ctx.exception.details["attempts_remaining"], settings.esign_max_otp_attempts - attempt)

        self.assertEqual(self.request.status, "failed")
        self.assertEqual(self.request.otp_failures, settings.esign_max_otp_attempts)
        with self.assertRaises(StateError):
            await esign.complete_signing(self.session, self.providers, self.token, "123456")
