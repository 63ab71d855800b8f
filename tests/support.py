"""
Shared fixtures: an in-memory database per test and partner gateways backed
by httpx.MockTransport.
"""
from __future__ import annotations

import json
import unittest
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Optional, Union

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from database import Base
from models import Applicant, LoanApplication, RepaymentScheduleEntry
from providers import Providers
from providers.kyc import KycGateway
from providers.notifications import Notifier
from providers.payments import CollectionGateway, NachGateway
from services.permissions import Actor
from utils.identifiers import new_id

ORG = "org-1"
OTHER_ORG = "org-2"

ADMIN = Actor(user_id="u-admin", org_id=ORG, role="admin")
MANAGER = Actor(user_id="u-manager", org_id=ORG, role="credit_manager")
OFFICER = Actor(user_id="u-officer", org_id=ORG, role="credit_officer")
DISBURSER = Actor(user_id="u-disburser", org_id=ORG, role="disbursement_officer")
OUTSIDER = Actor(user_id="u-outsider", org_id=OTHER_ORG, role="admin")

Route = Union[dict[str, Any], tuple[int, dict[str, Any]], Callable[[httpx.Request], httpx.Response]]

DEFAULT_ROUTES: dict[tuple[str, str], Route] = {
    ("POST", "/authenticate"): {"access_token": "test-token"},
    ("POST", "/messages/sms"): {"status": "queued"},
    ("POST", "/messages/email"): {"status": "queued"},
}


class FakePartners:
    """Routes every gateway call through one MockTransport and records the requests."""

    def __init__(self, routes: Optional[dict[tuple[str, str], Route]] = None):
        self.routes: dict[tuple[str, str], Route] = {**DEFAULT_ROUTES, **(routes or {})}
        self.calls: list[httpx.Request] = []
        self.transport = httpx.MockTransport(self._handle)

    def set(self, method: str, path: str, route: Route) -> None:
        self.routes[(method, path)] = route

    def calls_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.calls if r.url.path.startswith(path)]

    def body(self, request: httpx.Request) -> dict[str, Any]:
        return json.loads(request.content or b"{}")

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        route = self.routes.get((request.method, request.url.path))
        if route is None:
            for (method, path), candidate in self.routes.items():
                if method == request.method and path.endswith("*") and request.url.path.startswith(path[:-1]):
                    route = candidate
                    break
        if route is None:
            return httpx.Response(404, json={"message": f"no route for {request.method} {request.url.path}"})
        if callable(route):
            return route(request)
        if isinstance(route, tuple):
            status, body = route
            return httpx.Response(status, json=body)
        return httpx.Response(200, json=route)

    def providers(self, notifications: bool = True) -> Providers:
        return Providers(
            kyc=KycGateway("https://kyc.test", "key", "secret", transport=self.transport),
            nach=NachGateway("https://bank.test", "key", transport=self.transport),
            collection=CollectionGateway("https://collect.test", "key", transport=self.transport),
            notifier=Notifier("https://notify.test" if notifications else "", "key", transport=self.transport),
        )


def unreachable(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("connection refused", request=request)


class DatabaseTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.engine = create_async_engine(
            "sqlite+aiosqlite:///:memory:",
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.session_factory = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)
        self.session: AsyncSession = self.session_factory()
        self.partners = FakePartners()
        self.providers = self.partners.providers()

    async def asyncTearDown(self):
        await self.session.close()
        await self.engine.dispose()

    async def make_application(
        self,
        stage: str = "lead",
        org_id: str = ORG,
        applicant_name: str = "Asha Verma",
        **fields: Any,
    ) -> LoanApplication:
        from services.stages import status_for_stage

        app_id = new_id("app")
        app = LoanApplication(
            id=app_id,
            org_id=org_id,
            application_number=fields.pop("application_number", f"APP-202601-{app_id[-5:]}"),
            current_stage=stage,
            status=status_for_stage(stage),
            source=fields.pop("source", "direct"),
            **fields,
        )
        app.applicants = [
            Applicant(
                id=new_id("apl"),
                org_id=org_id,
                is_primary=True,
                name=applicant_name,
                phone="9876543210",
                email="asha@example.com",
                pan_number="ABCDE1234F",
                address={"city": "Pune", "pincode": "411001"},
            )
        ]
        self.session.add(app)
        await self.session.flush()
        return app

    async def make_schedule_entry(
        self,
        app: LoanApplication,
        principal: str = "10000.00",
        interest: str = "2000.00",
        emi_number: int = 1,
        due: Optional[date] = None,
    ) -> RepaymentScheduleEntry:
        p, i = Decimal(principal), Decimal(interest)
        entry = RepaymentScheduleEntry(
            id=new_id("emi"),
            application_id=app.id,
            org_id=app.org_id,
            emi_number=emi_number,
            due_date=due or date(2030, 1, 1),
            principal_amount=p,
            interest_amount=i,
            total_emi=p + i,
            amount_paid=Decimal("0"),
            principal_paid=Decimal("0"),
            interest_paid=Decimal("0"),
            status="pending",
        )
        self.session.add(entry)
        await self.session.flush()
        return entry
