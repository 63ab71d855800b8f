"""
Application lifecycle: creation, stage graph, decisions, disbursement,
closure, repeat loans, assignment and cancellation.
Run: python -m pytest tests/test_applications.py -v
"""
from datetime import date
from decimal import Decimal

from sqlalchemy import select

from errors import AuthorizationError, ConflictError, NotFoundError, ProviderError, StateError, ValidationError
from models import ApprovalDecision, PaymentTransaction
from schemas.application import ApplicantSchema, ApplicationCreate
from services import applications, contacts, mandates, schedule, verification
from support import ADMIN, DISBURSER, MANAGER, OFFICER, OUTSIDER, DatabaseTestCase

TRANSFER = ("POST", "/v1/payments/transfer")


class ApplicationTestCase(DatabaseTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.partners.set("POST", "/kyc/pan/verify", {"status": "VALID"})
        self.partners.set("POST", "/kyc/aadhaar/okyc/otp", {"data": {"ref_id": "r-1"}})
        self.partners.set("POST", "/kyc/aadhaar/okyc/otp/verify", {"data": {"status": "VALID"}})
        self.partners.set("POST", "/bank/penny-drop", {"data": {"verified": True}})
        self.partners.set(*TRANSFER, {"status": "PROCESSING"})

    async def create(self, **fields):
        body = ApplicationCreate(
            requested_amount=fields.pop("requested_amount", Decimal("25000")),
            tenure_days=fields.pop("tenure_days", 30),
            interest_rate=fields.pop("interest_rate", Decimal("1")),
            applicants=[ApplicantSchema(name="Asha Verma", phone="9876543210", pan_number="ABCDE1234F")],
            **fields,
        )
        return await applications.create_application(self.session, OFFICER, body)

    async def complete_verifications(self, app):
        checks = [
            ("pan", {"pan_number": "ABCDE1234F"}),
            ("aadhaar", {"aadhaar_number": "123456789012", "consent": True}),
            ("aadhaar", {"otp": "123456"}),
            ("bank_account", {"account_number": "123456789012", "ifsc_code": "HDFC0001234"}),
        ]
        for verification_type, payload in checks:
            await verification.verify(self.session, self.providers, OFFICER, app.id, verification_type, payload)

    async def advance(self, app, *targets):
        for target in targets:
            await applications.transition(self.session, OFFICER, app.id, target)


class TestCreate(ApplicationTestCase):
    async def test_create_starts_at_lead_with_primary_applicant(self):
        app = await self.create()
        self.assertEqual(app.current_stage, "lead")
        self.assertEqual(app.status, "draft")
        self.assertTrue(app.application_number.startswith("APP-"))
        self.assertTrue(app.applicants[0].is_primary)
        history = await applications.list_stage_events(self.session, app.id)
        self.assertEqual([(e.from_stage, e.to_stage) for e in history], [(None, "lead")])

    async def test_application_numbers_are_sequential_per_org(self):
        first = await self.create()
        second = await self.create()
        self.assertTrue(first.application_number.endswith("00001"))
        self.assertTrue(second.application_number.endswith("00002"))

    async def test_numbers_keep_increasing_after_a_delete(self):
        first = await self.create()
        second = await self.create()
        third = await self.create()
        await contacts.bulk_delete(self.session, ADMIN, "applications", [second.id])
        fourth = await self.create()
        self.assertTrue(fourth.application_number.endswith("00004"))
        numbers = {first.application_number, third.application_number, fourth.application_number}
        self.assertEqual(len(numbers), 3)

    async def test_disbursement_officer_cannot_create(self):
        with self.assertRaises(AuthorizationError):
            await applications.create_application(self.session, DISBURSER, ApplicationCreate())

    async def test_other_org_sees_not_found(self):
        app = await self.create()
        with self.assertRaises(NotFoundError):
            await applications.get_application(self.session, OUTSIDER.org_id, app.id)

    async def test_list_filters(self):
        app = await self.create(assigned_to="u-officer")
        await self.create()
        assigned = await applications.list_applications(self.session, OFFICER.org_id, assigned_to="u-officer")
        self.assertEqual([a.id for a in assigned], [app.id])
        self.assertEqual(await applications.list_applications(self.session, OFFICER.org_id, stage="approval"), [])


class TestLifecycle(ApplicationTestCase):
    async def test_happy_path_to_disbursed(self):
        app = await self.create()
        await self.advance(app, "documents", "verification")
        await self.complete_verifications(app)
        await self.advance(app, "assessment", "approval")

        await applications.decide(self.session, MANAGER, app.id, "approve", approved_amount=Decimal("25000"))
        self.assertEqual(app.current_stage, "sanctioned")
        self.assertEqual(app.approved_amount, Decimal("25000.00"))
        self.assertIsNotNone(app.sanctioned_at)

        txn = await applications.initiate_disbursement(
            self.session, self.providers, DISBURSER, app.id, "123456789012", "HDFC0001234", "Asha Verma"
        )
        self.assertEqual(txn.amount, Decimal("25000.00"))
        self.assertEqual(app.current_stage, "sanctioned")

        result = await mandates.apply_bank_webhook(
            self.session, {"referenceId": txn.reference_id, "status": "SUCCESS", "utrNumber": "UTR12345"}
        )
        self.assertEqual(result["application_stage"], "disbursed")
        self.assertEqual(app.current_stage, "disbursed")
        self.assertEqual(app.disbursement_utr, "UTR12345")
        self.assertEqual(app.disbursed_amount, Decimal("25000.00"))

        history = await applications.list_stage_events(self.session, app.id)
        self.assertEqual(
            [e.to_stage for e in history],
            ["lead", "documents", "verification", "assessment", "approval", "sanctioned", "disbursed"],
        )

    async def test_verification_gate(self):
        app = await self.create()
        await self.advance(app, "documents", "verification")
        with self.assertRaises(StateError) as ctx:
            await applications.transition(self.session, OFFICER, app.id, "assessment")
        self.assertEqual(ctx.exception.details["missing_verifications"], ["pan", "aadhaar", "bank_account"])
        self.assertEqual(app.current_stage, "verification")

    async def test_rejection_is_terminal(self):
        app = await self.make_application(stage="assessment")
        await applications.decide(self.session, MANAGER, app.id, "reject", reason="insufficient income")
        self.assertEqual(app.current_stage, "rejected")
        self.assertEqual(app.rejection_reason, "insufficient income")

        decision = (await self.session.execute(select(ApprovalDecision))).scalar_one()
        self.assertEqual(decision.decision, "rejected")
        self.assertEqual(decision.comments, "insufficient income")

        for target in ("approval", "assessment", "cancelled"):
            with self.assertRaises(StateError):
                await applications.transition(self.session, OFFICER, app.id, target)
        with self.assertRaises(StateError):
            await applications.decide(self.session, MANAGER, app.id, "reject", reason="again")
        self.assertEqual(app.current_stage, "rejected")

    async def test_off_graph_transition_leaves_stage_unchanged(self):
        app = await self.make_application(stage="lead")
        with self.assertRaises(StateError):
            await applications.transition(self.session, OFFICER, app.id, "approval")
        with self.assertRaises(StateError):
            await applications.transition(self.session, OFFICER, app.id, "nowhere")
        self.assertEqual(app.current_stage, "lead")
        self.assertEqual(await applications.list_stage_events(self.session, app.id), [])

    async def test_guarded_stages_need_their_own_operation(self):
        app = await self.make_application(stage="approval", requested_amount=Decimal("5000"))
        with self.assertRaises(StateError):
            await applications.transition(self.session, OFFICER, app.id, "sanctioned")
        self.assertEqual(app.current_stage, "approval")

    async def test_approval_requires_amount_and_stage(self):
        app = await self.make_application(stage="assessment")
        with self.assertRaises(ValidationError):
            await applications.transition(self.session, OFFICER, app.id, "approval")
        with self.assertRaises(StateError):
            await applications.decide(self.session, MANAGER, app.id, "approve", approved_amount=Decimal("1000"))

        ready = await self.make_application(stage="approval", requested_amount=Decimal("5000"))
        with self.assertRaises(ValidationError):
            await applications.decide(self.session, MANAGER, ready.id, "approve", approved_amount=Decimal("0"))
        with self.assertRaises(AuthorizationError):
            await applications.decide(self.session, OFFICER, ready.id, "approve", approved_amount=Decimal("1000"))
        with self.assertRaises(ValidationError):
            await applications.decide(self.session, MANAGER, ready.id, "reject", reason="  ")

    async def test_cancel_only_early(self):
        app = await self.make_application(stage="documents")
        await applications.cancel(self.session, OFFICER, app.id, "duplicate lead")
        self.assertEqual(app.current_stage, "cancelled")
        self.assertEqual(app.status, "cancelled")

        late = await self.make_application(stage="assessment")
        with self.assertRaises(StateError):
            await applications.cancel(self.session, OFFICER, late.id, "changed mind")


class TestDisbursement(ApplicationTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.app = await self.make_application(
            stage="sanctioned", approved_amount=Decimal("25000"), tenure_days=30, interest_rate=Decimal("1")
        )

    async def test_amount_cannot_exceed_approval(self):
        with self.assertRaises(ValidationError):
            await applications.initiate_disbursement(
                self.session, self.providers, DISBURSER, self.app.id,
                "123456789012", "HDFC0001234", "Asha", amount=Decimal("25000.01"),
            )
        with self.assertRaises(ValidationError):
            await applications.record_disbursement(self.session, DISBURSER, self.app.id, Decimal("30000"), "UTR1")
        self.assertEqual(self.partners.calls_to("/v1/payments"), [])

    async def test_bank_rejection_stores_nothing(self):
        self.partners.set(*TRANSFER, {"status": "FAILED", "message": "Beneficiary bank offline"})
        with self.assertRaises(ProviderError):
            await applications.initiate_disbursement(
                self.session, self.providers, DISBURSER, self.app.id, "123456789012", "HDFC0001234", "Asha"
            )
        stored = (await self.session.execute(select(PaymentTransaction))).scalars().all()
        self.assertEqual(stored, [])

    async def test_manual_record_requires_utr(self):
        with self.assertRaises(ValidationError):
            await applications.record_disbursement(self.session, DISBURSER, self.app.id, Decimal("25000"), " ")
        await applications.record_disbursement(self.session, DISBURSER, self.app.id, Decimal("20000"), "UTR777")
        self.assertEqual(self.app.current_stage, "disbursed")
        self.assertEqual(self.app.disbursed_amount, Decimal("20000.00"))
        with self.assertRaises(StateError):
            await applications.record_disbursement(self.session, DISBURSER, self.app.id, Decimal("20000"), "UTR778")

    async def test_late_bank_confirmation_does_not_fail(self):
        txn = await applications.initiate_disbursement(
            self.session, self.providers, DISBURSER, self.app.id, "123456789012", "HDFC0001234", "Asha"
        )
        await applications.record_disbursement(self.session, DISBURSER, self.app.id, Decimal("25000"), "UTR-MANUAL")
        result = await mandates.apply_bank_webhook(self.session, {"reference_id": txn.reference_id, "status": "SUCCESS"})
        self.assertEqual(result["application_stage"], "disbursed")
        self.assertEqual(self.app.disbursement_utr, "UTR-MANUAL")


class TestScheduleAndClosure(ApplicationTestCase):
    async def test_schedule_for_disbursed_loan(self):
        app = await self.make_application(
            stage="disbursed", disbursed_amount=Decimal("10000"), tenure_days=30, interest_rate=Decimal("1")
        )
        entries = await schedule.generate_schedule(self.session, app, disbursement_date=date(2026, 1, 1), installments=3)
        self.assertEqual([e.emi_number for e in entries], [1, 2, 3])
        self.assertEqual(sum(e.principal_amount for e in entries), Decimal("10000.00"))
        self.assertEqual(sum(e.interest_amount for e in entries), Decimal("3000.00"))
        self.assertEqual(entries[-1].due_date, date(2026, 1, 31))

        with self.assertRaises(ConflictError):
            await schedule.generate_schedule(self.session, app)

    async def test_close_needs_every_installment_paid(self):
        app = await self.make_application(stage="disbursed", disbursed_amount=Decimal("10000"))
        entry = await self.make_schedule_entry(app)
        with self.assertRaises(StateError):
            await applications.close_application(self.session, DISBURSER, app.id)

        entry.status = "paid"
        await self.session.flush()
        await applications.close_application(self.session, DISBURSER, app.id)
        self.assertEqual(app.current_stage, "closed")
        self.assertIsNotNone(app.closed_at)

    async def test_overdue_marking(self):
        app = await self.make_application(stage="disbursed")
        late = await self.make_schedule_entry(app, emi_number=1, due=date(2026, 1, 1))
        await self.make_schedule_entry(app, emi_number=2, due=date(2026, 3, 1))
        self.assertEqual(schedule.effective_status(late, on=date(2026, 2, 1)), "overdue")
        marked = await schedule.mark_overdue(self.session, on=date(2026, 2, 1))
        self.assertEqual(marked, 1)


class TestRepeatAndAssign(ApplicationTestCase):
    async def test_repeat_loan_copies_applicants(self):
        parent = await self.make_application(stage="disbursed", interest_rate=Decimal("0.5"), assigned_to="u-officer")
        child = await applications.create_repeat_loan(self.session, OFFICER, parent.id, Decimal("30000"), 45)
        self.assertEqual(child.current_stage, "assessment")
        self.assertEqual(child.parent_application_id, parent.id)
        self.assertEqual(child.source, "repeat_loan")
        self.assertEqual(child.interest_rate, Decimal("0.5"))
        self.assertEqual(child.assigned_to, "u-officer")
        self.assertEqual(len(child.applicants), 1)
        copied, original = child.applicants[0], parent.applicants[0]
        self.assertNotEqual(copied.id, original.id)
        self.assertEqual((copied.name, copied.pan_number, copied.address), (original.name, original.pan_number, original.address))

    async def test_repeat_loan_needs_disbursed_parent(self):
        parent = await self.make_application(stage="approval")
        with self.assertRaises(StateError):
            await applications.create_repeat_loan(self.session, OFFICER, parent.id, Decimal("1000"), 30)

    async def test_assign_is_idempotent(self):
        app = await self.make_application()
        first = await applications.assign(self.session, MANAGER, app.id, "u-officer")
        again = await applications.assign(self.session, ADMIN, app.id, "u-officer")
        self.assertTrue(first.changed)
        self.assertFalse(again.changed)
        with self.assertRaises(AuthorizationError):
            await applications.assign(self.session, OFFICER, app.id, "u-manager")
