"""
Verification adapters: PAN, Aadhaar OTP, bank account, manual checks.
Run: python -m pytest tests/test_verification.py -v
"""
import time
import unittest

import httpx

from errors import AuthorizationError, ConflictError, NotFoundError, StateError, ValidationError
from services import verification
from services.verification import ADAPTERS, normalize_ifsc
from support import DISBURSER, OFFICER, OUTSIDER, DatabaseTestCase, unreachable

PAN = ("POST", "/kyc/pan/verify")
SEND_OTP = ("POST", "/kyc/aadhaar/okyc/otp")
VERIFY_OTP = ("POST", "/kyc/aadhaar/okyc/otp/verify")
PENNY_DROP = ("POST", "/bank/penny-drop")


class TestIfscNormalization(unittest.TestCase):
    def test_letter_o_in_fifth_position(self):
        self.assertEqual(normalize_ifsc(" sbinO001234 "), "SBIN0001234")

    def test_other_codes_untouched(self):
        self.assertEqual(normalize_ifsc("HDFC0001234"), "HDFC0001234")
        self.assertEqual(normalize_ifsc("ABCO"), "ABCO")


class TestVerify(DatabaseTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.app = await self.make_application(stage="verification")

    async def run_check(self, verification_type, payload, actor=OFFICER):
        return await verification.verify(self.session, self.providers, actor, self.app.id, verification_type, payload)

    async def test_pan_success_then_conflict(self):
        self.partners.set(*PAN, {"data": {"status": "VALID", "name": "ASHA VERMA", "reference_id": "991"}})
        result = await self.run_check("pan", {"pan_number": "abcde1234f", "name": "Asha Verma"})
        self.assertEqual(result.status, "success")
        self.assertEqual(result.provider_data["name"], "ASHA VERMA")

        records = await verification.list_verifications(self.session, self.app.org_id, self.app.id)
        self.assertEqual(records[0].verified_by, OFFICER.user_id)
        self.assertEqual(records[0].request_data["pan_number"], "ABCDE1234F")

        with self.assertRaises(ConflictError):
            await self.run_check("pan", {"pan_number": "ABCDE1234F"})

    async def test_pan_rejected_by_provider(self):
        self.partners.set(*PAN, {"status": "INVALID", "message": "PAN does not exist"})
        result = await self.run_check("pan", {"pan_number": "ABCDE1234F"})
        self.assertEqual(result.status, "failed")
        self.assertEqual(result.error_kind, "verification_failed")
        self.assertEqual(result.message, "PAN does not exist")

    async def test_bad_pan_never_reaches_provider(self):
        with self.assertRaises(ValidationError):
            await self.run_check("pan", {"pan_number": "1234"})
        self.assertEqual(self.partners.calls_to("/kyc/pan"), [])

    async def test_provider_outage_leaves_record_pending(self):
        self.partners.set(*PAN, (503, {"message": "maintenance"}))
        result = await self.run_check("pan", {"pan_number": "ABCDE1234F"})
        self.assertEqual(result.status, "pending")
        self.assertEqual(result.error_kind, "provider_unavailable")

        self.partners.set(*PAN, unreachable)
        result = await self.run_check("pan", {"pan_number": "ABCDE1234F"})
        self.assertEqual(result.status, "pending")
        records = await verification.list_verifications(self.session, self.app.org_id, self.app.id)
        self.assertEqual(records[0].attempts, 2)

    async def test_refused_token_is_renewed_once(self):
        answers = [
            httpx.Response(401, json={"message": "Token expired"}),
            httpx.Response(200, json={"data": {"status": "VALID", "name": "ASHA VERMA"}}),
        ]
        self.partners.set(*PAN, lambda request: answers.pop(0))
        result = await self.run_check("pan", {"pan_number": "ABCDE1234F"})
        self.assertEqual(result.status, "success")
        self.assertEqual(len(self.partners.calls_to("/authenticate")), 2)

    async def test_credentials_refused_twice_is_a_provider_error(self):
        self.partners.set(*PAN, (401, {"message": "Token expired"}))
        result = await self.run_check("pan", {"pan_number": "ABCDE1234F"})
        self.assertEqual(result.status, "pending")
        self.assertEqual(result.error_kind, "provider_error")
        records = await verification.list_verifications(self.session, self.app.org_id, self.app.id)
        self.assertEqual(records[0].status, "pending")

    async def test_token_renewed_after_expiry(self):
        self.partners.set("POST", "/authenticate", {"access_token": "short-lived", "expires_in": 120})
        self.partners.set(*PAN, {"data": {"status": "VALID"}})
        self.partners.set(*PENNY_DROP, {"data": {"verified": True}})
        await self.run_check("pan", {"pan_number": "ABCDE1234F"})
        gateway = self.providers.kyc
        self.assertLessEqual(gateway._token_expires_at, time.monotonic() + 60)
        gateway._token_expires_at = time.monotonic() - 1
        await self.run_check("bank_account", {"account_number": "123456789012", "ifsc_code": "HDFC0001234"})
        self.assertEqual(len(self.partners.calls_to("/authenticate")), 2)

    async def test_aadhaar_two_steps(self):
        self.partners.set(*SEND_OTP, {"data": {"ref_id": 5521}})
        self.partners.set(*VERIFY_OTP, {"data": {"status": "VALID", "name": "Asha Verma", "dob": "1990-04-02"}})

        first = await self.run_check("aadhaar", {"aadhaar_number": "1234 5678 9012", "consent": True})
        self.assertEqual(first.status, "pending")
        self.assertEqual(first.provider_data, {"otp_sent": True, "ref_id": "5521"})

        records = await verification.list_verifications(self.session, self.app.org_id, self.app.id)
        self.assertNotIn("aadhaar_number", records[0].request_data)
        self.assertEqual(records[0].request_data["aadhaar_last4"], "9012")

        second = await self.run_check("aadhaar", {"otp": "123456"})
        self.assertEqual(second.status, "success")
        self.assertEqual(second.provider_data["date_of_birth"], "1990-04-02")
        self.assertEqual(self.partners.body(self.partners.calls_to("/kyc/aadhaar/okyc/otp/verify")[0])["ref_id"], "5521")

    async def test_aadhaar_requires_consent(self):
        with self.assertRaises(ValidationError):
            await self.run_check("aadhaar", {"aadhaar_number": "123456789012"})

    async def test_aadhaar_otp_without_session(self):
        with self.assertRaises(ValidationError):
            await self.run_check("aadhaar", {"otp": "123456"})

    async def test_bank_account_penny_drop(self):
        self.partners.set(*PENNY_DROP, {"data": {"account_exists": "true", "name_at_bank": "ASHA VERMA"}})
        result = await self.run_check("bank_account", {"account_number": "123456789012", "ifsc_code": "sbinO001234"})
        self.assertEqual(result.status, "success")
        self.assertEqual(result.provider_data["ifsc"], "SBIN0001234")
        self.assertEqual(result.provider_data["account_holder_name"], "ASHA VERMA")

    async def test_manual_checks(self):
        flagged = await self.run_check("fraud_check", {"decision": "flagged", "risk_score": 82, "signals": ["device"]})
        self.assertEqual(flagged.status, "failed")
        video = await self.run_check("video_kyc", {"recording_url": "https://files.test/v.mp4"})
        self.assertEqual(video.status, "success")

    async def test_fraud_check_rejects_non_numeric_risk_score(self):
        with self.assertRaises(ValidationError):
            await self.run_check("fraud_check", {"decision": "clear", "risk_score": "high"})
        with self.assertRaises(ValidationError):
            await self.run_check("fraud_check", {"decision": "clear", "risk_score": 140})
        cleared = await self.run_check("fraud_check", {"decision": "clear", "risk_score": "12.5"})
        self.assertEqual(cleared.status, "success")
        self.assertEqual(cleared.provider_data["risk_score"], 12.5)

    async def test_missing_verifications(self):
        self.partners.set(*PAN, {"status": "VALID"})
        await self.run_check("pan", {"pan_number": "ABCDE1234F"})
        missing = await verification.missing_verifications(self.session, self.app.id)
        self.assertEqual(missing, ["aadhaar", "bank_account"])

    async def test_guards(self):
        with self.assertRaises(ValidationError):
            await self.run_check("credit_bureau", {})
        with self.assertRaises(AuthorizationError):
            await self.run_check("pan", {"pan_number": "ABCDE1234F"}, actor=DISBURSER)
        with self.assertRaises(NotFoundError):
            await self.run_check("pan", {"pan_number": "ABCDE1234F"}, actor=OUTSIDER)
        closed = await self.make_application(stage="rejected")
        with self.assertRaises(StateError):
            await verification.verify(self.session, self.providers, OFFICER, closed.id, "pan", {"pan_number": "ABCDE1234F"})

    def test_every_type_has_an_adapter(self):
        self.assertEqual(set(ADAPTERS), {"pan", "aadhaar", "bank_account", "video_kyc", "fraud_check"})
