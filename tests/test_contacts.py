"""
Contact import jobs, import revert and admin bulk delete.
Run: python -m pytest tests/test_contacts.py -v
"""
from decimal import Decimal

from sqlalchemy import func, select

from errors import AuthorizationError, NotFoundError, StateError, ValidationError
from models import Contact, LoanApplication
from services import contacts, jobs
from utils.identifiers import new_id
from support import ADMIN, DISBURSER, MANAGER, OFFICER, OTHER_ORG, DatabaseTestCase

CSV = (
    "name,phone,company,city\n"
    "Asha Verma,9876543210,Acme, Inc, Retail, Pune Branch, Unit 4,Pune\n"
    "Ravi Kumar,9123456780,Globex,Mumbai\n"
    "No Phone,,Initech,Delhi\n"
)


class ImportTestCase(DatabaseTestCase):
    async def start(self, text=CSV, actor=OFFICER, **kwargs):
        job = await contacts.start_contact_import(self.session, actor, text, **kwargs)
        await self.session.commit()
        return job

    async def run_job(self, job):
        await contacts.run_contact_import(job.id, session_factory=self.session_factory)
        await self.session.refresh(job)
        return job

    async def count(self, model):
        return (await self.session.execute(select(func.count(model.id)))).scalar_one()


class TestContactImport(ImportTestCase):
    async def test_start_records_parse_errors_and_queues(self):
        job = await self.start()
        self.assertEqual(job.status, "queued")
        self.assertEqual(job.total_rows, 2)
        self.assertEqual(job.errors, ["Row 4: Missing phone"])
        self.assertEqual(job.payload["repaired_lines"], [2])

    async def test_run_creates_contacts_with_repaired_company(self):
        job = await self.run_job(await self.start())
        self.assertEqual(job.status, "succeeded")
        self.assertEqual((job.processed_rows, job.succeeded_rows, job.failed_rows), (2, 2, 0))
        self.assertEqual([r["row"] for r in job.result["rows"]], [2, 3])

        stored = (await self.session.execute(select(Contact).order_by(Contact.phone))).scalars().all()
        self.assertEqual([c.phone for c in stored], ["9123456780", "9876543210"])
        asha = stored[1]
        self.assertEqual(asha.company, "Acme, Inc, Retail, Pune Branch, Unit 4")
        self.assertEqual(asha.extra, {"city": "Pune"})
        self.assertEqual(asha.import_job_id, job.id)

    async def test_run_can_open_applications(self):
        job = await self.start(create_applications=True, requested_amount=Decimal("20000"), tenure_days=30)
        job = await self.run_job(job)
        self.assertEqual(job.result["applications_created"], 2)
        apps = (await self.session.execute(select(LoanApplication))).scalars().all()
        self.assertEqual({a.source for a in apps}, {"bulk_import"})
        self.assertEqual({a.current_stage for a in apps}, {"lead"})
        self.assertEqual({a.requested_amount for a in apps}, {Decimal("20000.00")})

    async def test_application_failure_keeps_contact(self):
        job = await self.start(create_applications=True)
        job.payload = {**job.payload, "actor_role": "disbursement_officer"}
        await self.session.commit()

        job = await self.run_job(job)
        self.assertEqual(job.status, "succeeded")
        self.assertEqual({r["status"] for r in job.result["rows"]}, {"partial"})
        self.assertEqual(await self.count(Contact), 2)
        self.assertEqual(await self.count(LoanApplication), 0)

    async def test_cancel_queued_job(self):
        job = await self.start()
        await jobs.request_cancel(self.session, OFFICER, job.id)
        await self.session.commit()
        job = await self.run_job(job)
        self.assertEqual(job.status, "cancelled")
        self.assertEqual(await self.count(Contact), 0)
        with self.assertRaises(StateError):
            await jobs.request_cancel(self.session, OFFICER, job.id)

    async def test_cancel_requested_stops_before_next_row(self):
        job = await self.start()
        job.cancel_requested = True
        await self.session.commit()
        job = await self.run_job(job)
        self.assertEqual(job.status, "cancelled")
        self.assertEqual(job.processed_rows, 0)

    async def test_missing_identifier_column(self):
        with self.assertRaises(ValidationError):
            await self.start("name,company\nAsha,Acme\n")
        with self.assertRaises(AuthorizationError):
            await contacts.start_contact_import(self.session, DISBURSER, CSV)

    async def test_revert_removes_imported_records(self):
        job = await self.run_job(await self.start(create_applications=True, requested_amount=Decimal("5000")))
        counts = await contacts.revert_import(self.session, OFFICER, job.id)
        self.assertEqual(counts, {"contacts_deleted": 2, "applications_deleted": 2})
        self.assertEqual(await self.count(Contact), 0)
        self.assertEqual(await self.count(LoanApplication), 0)
        self.assertTrue(job.result["reverted"])

    async def test_revert_refuses_active_job(self):
        job = await self.start()
        with self.assertRaises(StateError):
            await contacts.revert_import(self.session, OFFICER, job.id)

    async def test_jobs_are_scoped_by_org(self):
        job = await self.start()
        self.assertEqual([j.id for j in await jobs.list_jobs(self.session, OFFICER.org_id)], [job.id])
        with self.assertRaises(NotFoundError):
            await jobs.get_job(self.session, OTHER_ORG, job.id)


class TestBulkDelete(ImportTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.ours = [self.contact(ADMIN.org_id, "9000000001"), self.contact(ADMIN.org_id, "9000000002")]
        self.theirs = self.contact(OTHER_ORG, "9000000003")
        await self.session.flush()

    def contact(self, org_id, phone):
        contact = Contact(id=new_id("cnt"), org_id=org_id, phone=phone)
        self.session.add(contact)
        return contact

    async def test_admin_deletes_own_records(self):
        deleted = await contacts.bulk_delete(self.session, ADMIN, "contacts", [c.id for c in self.ours])
        self.assertEqual(deleted, 2)
        self.assertEqual(await self.count(Contact), 1)

    async def test_cross_org_target_blocks_whole_request(self):
        ids = [self.ours[0].id, self.theirs.id]
        with self.assertLogs("services.contacts", level="WARNING") as logs:
            with self.assertRaises(AuthorizationError):
                await contacts.bulk_delete(self.session, ADMIN, "contacts", ids)
        self.assertIn("SECURITY", logs.output[0])
        self.assertEqual(await self.count(Contact), 3)

    async def test_only_admins(self):
        with self.assertRaises(AuthorizationError):
            await contacts.bulk_delete(self.session, MANAGER, "contacts", [self.ours[0].id])

    async def test_unknown_ids_and_types(self):
        with self.assertRaises(NotFoundError):
            await contacts.bulk_delete(self.session, ADMIN, "contacts", ["cnt-missing"])
        with self.assertRaises(ValidationError):
            await contacts.bulk_delete(self.session, ADMIN, "mandates", [self.ours[0].id])
        with self.assertRaises(ValidationError):
            await contacts.bulk_delete(self.session, ADMIN, "contacts", [])
