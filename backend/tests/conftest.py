"""
Test fixtures
=============

Tests run against a throwaway SQLite database (aiosqlite), with Redis and the
Pterodactyl panel disabled. Environment must be set before hostpanel is
imported because settings and the engine are created at import time.
"""

import asyncio
import os
import tempfile
from decimal import Decimal
from typing import List, Optional

_TEST_DIR = tempfile.mkdtemp(prefix="hostpanel-test-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DIR, 'test.db')}"
os.environ["REDIS_URL"] = ""
os.environ["PTERO_PANEL_URL"] = ""
os.environ["PTERO_API_KEY"] = ""
os.environ["AUDIT_LOG_ENABLED"] = "true"
os.environ["LOG_FILE"] = os.path.join(_TEST_DIR, "app.log")

import httpx
import pytest

import hostpanel.models  # noqa: F401
from hostpanel.core.database import AsyncSessionLocal, Base, engine
from hostpanel.core.errors import ProvisioningError
from hostpanel.models.plan import Plan
from hostpanel.models.user import User
from hostpanel.services.auth_service import AuthService
from hostpanel.services.order_lifecycle import Actor, OrderLifecycleService
from hostpanel.services.provisioning import ProvisioningResult


# ============================================
# FAKE PROVISIONER
# ============================================

class FakeProvisioner:
    """Records every provisioning call; can fail, stall or wait on a gate."""

    def __init__(
        self,
        server_id: int = 4242,
        identifier: Optional[str] = "a1b2c3d4",
        error: Optional[Exception] = None,
        delay: float = 0,
        gate: Optional[asyncio.Event] = None,
    ):
        self.server_id = server_id
        self.identifier = identifier
        self.error = error
        self.delay = delay
        self.gate = gate
        self.started = asyncio.Event()
        self.calls: List[dict] = []

    async def provision(self, order, plan, owner_id=None):
        self.calls.append({"order_id": order.id, "plan_id": plan.id, "owner_id": owner_id})
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return ProvisioningResult(server_id=self.server_id, identifier=self.identifier, simulated=False)


def failing_panel_transport(status_code: int = 500, body: Optional[dict] = None) -> httpx.MockTransport:
    """Panel stand-in that answers every request with an error."""
    payload = body or {"errors": [{"code": "InternalServerError", "detail": "panel exploded"}]}

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=payload)

    return httpx.MockTransport(handler)


@pytest.fixture
def fake_provisioner():
    return FakeProvisioner()


@pytest.fixture
def provisioning_error():
    return ProvisioningError("面板返回 HTTP 500: InternalServerError panel exploded")


# ============================================
# DATABASE
# ============================================

@pytest.fixture
async def db_engine():
    """Fresh schema for every test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def db(db_engine):
    async with AsyncSessionLocal() as session:
        yield session


@pytest.fixture
def session_factory(db_engine):
    return AsyncSessionLocal


# ============================================
# CATALOG & USERS
# ============================================

@pytest.fixture
async def plan(db):
    """Starter plan: 1024 MB / 10 GB / 100 % CPU at 9.99."""
    plan = Plan(name="Starter", memory=1024, disk=10, cpu=100, price=Decimal("9.99"), is_active=True)
    db.add(plan)
    await db.commit()
    await db.refresh(plan)
    return plan


@pytest.fixture
async def inactive_plan(db):
    plan = Plan(name="Legacy", memory=512, disk=5, cpu=50, price=Decimal("4.99"), is_active=False)
    db.add(plan)
    await db.commit()
    await db.refresh(plan)
    return plan


async def _make_user(db, username: str, role: str, panel_user_id: Optional[int] = None) -> User:
    user = User(
        username=username,
        email=f"{username}@example.com",
        password_hash=AuthService(db).get_password_hash("secret123"),
        role=role,
        panel_user_id=panel_user_id,
        is_active=True,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest.fixture
async def customer(db):
    return await _make_user(db, "alice", "user", panel_user_id=7)


@pytest.fixture
async def other_customer(db):
    return await _make_user(db, "bob", "user")


@pytest.fixture
async def admin_user(db):
    return await _make_user(db, "root", "admin")


@pytest.fixture
def customer_actor(customer):
    return Actor.from_user(customer)


@pytest.fixture
def admin_actor(admin_user):
    return Actor.from_user(admin_user)


# ============================================
# SERVICE
# ============================================

@pytest.fixture
def service(db, fake_provisioner):
    """Lifecycle service with Redis disabled and a recording provisioner."""
    return OrderLifecycleService(db, provisioner=fake_provisioner)


@pytest.fixture
async def pending_order(service, customer_actor, plan):
    """Order in pending/pending with one recorded 9.99 payment."""
    order = await service.submit_order(customer_actor, plan.id, "My Server")
    await service.record_payment(order.id, "paypal", "PAYID-123", 9.99, "USD", actor=customer_actor)
    return order
