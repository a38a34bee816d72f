"""
Pytest configuration and fixtures for backend tests.

The app runs against an in-memory SQLite database (the application engine
itself, so background helpers share it). Stripe, WEB-SRM and Redis are
replaced by in-process fakes.
"""

import os

# Must be set before the application settings are imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "test"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["WEBSRM_ENABLED"] = "false"

import itertools
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from rest_api.main import app
from rest_api.models import (
    Base, Chain, Branch, User, BranchUser,
    MenuCategory, MenuItem, Order, OrderItem,
)
from rest_api.services.domain import compute_totals
from rest_api.services.fiscal import get_fiscal_client
from rest_api.services.jobs import JobQueue, get_job_queue
from rest_api.services.payments import PaymentIntentInfo, RefundResult, get_payment_gateway
from rest_api.services.permissions import Principal
from shared.config.constants import (
    ROLE_PERMISSIONS, OrderStatus, PaymentMethod, PaymentStatus, Roles,
)
from shared.infrastructure.db import SessionLocal, engine, get_db
from shared.security.auth import sign_jwt
from shared.security.password import hash_password


STAFF_PASSWORD = "plateau-pass-2024"
_STAFF_PASSWORD_HASH = hash_password(STAFF_PASSWORD)

_order_numbers = itertools.count(1)


# =============================================================================
# Fakes
# =============================================================================


class FakePaymentGateway:
    """Records refund calls; raises `error` when set."""

    def __init__(self):
        self.calls = []
        self.error = None
        self.intents = {}

    def mark_paid(self, payment_intent_id, amount):
        self.intents[payment_intent_id] = PaymentIntentInfo(
            payment_intent_id=payment_intent_id, status="succeeded", amount_received=Decimal(str(amount))
        )

    def retrieve_payment(self, payment_intent_id):
        if self.error is not None:
            raise self.error
        return self.intents.get(payment_intent_id) or PaymentIntentInfo(
            payment_intent_id=payment_intent_id, status="requires_payment_method", amount_received=Decimal("0")
        )

    def refund(self, *, payment_intent_id, amount, reason, idempotency_key, metadata=None):
        if self.error is not None:
            raise self.error
        self.calls.append({
            "payment_intent_id": payment_intent_id,
            "amount": amount,
            "reason": reason,
            "idempotency_key": idempotency_key,
            "metadata": metadata or {},
        })
        return RefundResult(refund_id=f"re_test_{len(self.calls)}", status="succeeded")


class FakeFiscalClient:
    """Records submitted closings; raises `error` when set."""

    def __init__(self):
        self.submissions = []
        self.error = None

    def submit_closing(self, closing, branch):
        if self.error is not None:
            raise self.error
        self.submissions.append({"closing_id": closing.id, "net_sales": closing.net_sales})
        return f"FER-TX-{len(self.submissions):04d}"


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    Tables are created and dropped around every test.
    """
    Base.metadata.create_all(bind=engine)

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def redis_client():
    """Stand-in for the Redis client behind the job queue."""
    return MagicMock()


@pytest.fixture
def jobs(redis_client):
    return JobQueue(client=redis_client)


@pytest.fixture
def payments():
    return FakePaymentGateway()


@pytest.fixture
def fiscal():
    return FakeFiscalClient()


@pytest.fixture(scope="function")
def client(db_session, jobs, payments, fiscal):
    """
    Create a test client with the database session and external services
    overridden.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_job_queue] = lambda: jobs
    app.dependency_overrides[get_payment_gateway] = lambda: payments
    app.dependency_overrides[get_fiscal_client] = lambda: fiscal

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


# =============================================================================
# Seed data
# =============================================================================


@pytest.fixture
def seed_chain(db_session):
    """Create a test restaurant chain."""
    chain = Chain(name="Bistro Laurier", slug="bistro-laurier")
    db_session.add(chain)
    db_session.commit()
    db_session.refresh(chain)
    return chain


@pytest.fixture
def seed_branch(db_session, seed_chain):
    """Create the main test branch (Montreal time, GST/QST registered)."""
    branch = Branch(
        chain_id=seed_chain.id,
        name="Plateau",
        slug="plateau",
        address="123 Avenue Laurier",
        timezone="America/Toronto",
        base_delay=20,
        auto_ready=True,
        gst_number="123456789RT0001",
        qst_number="1234567890TQ0001",
    )
    db_session.add(branch)
    db_session.commit()
    db_session.refresh(branch)
    return branch


@pytest.fixture
def other_branch(db_session, seed_chain):
    """A second branch of the same chain."""
    branch = Branch(chain_id=seed_chain.id, name="Mile End", slug="mile-end")
    db_session.add(branch)
    db_session.commit()
    db_session.refresh(branch)
    return branch


@pytest.fixture
def foreign_branch(db_session):
    """A branch belonging to another chain."""
    chain = Chain(name="Casse-Croute", slug="casse-croute")
    db_session.add(chain)
    db_session.flush()
    branch = Branch(chain_id=chain.id, name="Verdun", slug="verdun")
    db_session.add(branch)
    db_session.commit()
    db_session.refresh(branch)
    return branch


def _principal(user, branch, role):
    return Principal(
        user_id=user.id,
        email=user.email,
        chain_id=branch.chain_id,
        branch_id=branch.id,
        role=role,
        permissions=tuple(ROLE_PERMISSIONS[role]),
        branch_name=branch.name,
    )


@pytest.fixture
def seed_staff(db_session, seed_chain, seed_branch):
    """One user per role on the main branch, keyed by role."""
    users = {}
    for role in Roles.ALL:
        user = User(
            chain_id=seed_chain.id,
            email=f"{role.replace('_', '.')}@bistro.ca",
            password=_STAFF_PASSWORD_HASH,
            full_name=role.replace("_", " ").title(),
        )
        db_session.add(user)
        db_session.flush()
        db_session.add(
            BranchUser(user_id=user.id, branch_id=seed_branch.id, chain_id=seed_chain.id, role=role)
        )
        users[role] = user
    db_session.commit()
    return users


@pytest.fixture
def owner(seed_staff, seed_branch):
    return _principal(seed_staff[Roles.CHAIN_OWNER], seed_branch, Roles.CHAIN_OWNER)


@pytest.fixture
def manager(seed_staff, seed_branch):
    return _principal(seed_staff[Roles.BRANCH_MANAGER], seed_branch, Roles.BRANCH_MANAGER)


@pytest.fixture
def staff(seed_staff, seed_branch):
    return _principal(seed_staff[Roles.BRANCH_STAFF], seed_branch, Roles.BRANCH_STAFF)


@pytest.fixture
def cashier(seed_staff, seed_branch):
    return _principal(seed_staff[Roles.BRANCH_CASHIER], seed_branch, Roles.BRANCH_CASHIER)


@pytest.fixture
def other_manager(db_session, seed_chain, other_branch):
    """Manager of the second branch."""
    user = User(chain_id=seed_chain.id, email="manager.mileend@bistro.ca", password=_STAFF_PASSWORD_HASH)
    db_session.add(user)
    db_session.flush()
    db_session.add(
        BranchUser(
            user_id=user.id, branch_id=other_branch.id, chain_id=seed_chain.id,
            role=Roles.BRANCH_MANAGER,
        )
    )
    db_session.commit()
    return _principal(user, other_branch, Roles.BRANCH_MANAGER)


@pytest.fixture
def seed_menu(db_session, seed_branch):
    """Mains (burger $25, fries $5) and drinks (soda $2.50)."""
    mains = MenuCategory(
        chain_id=seed_branch.chain_id, branch_id=seed_branch.id, name="Mains", display_order=1
    )
    drinks = MenuCategory(
        chain_id=seed_branch.chain_id, branch_id=seed_branch.id, name="Drinks", display_order=2
    )
    db_session.add_all([mains, drinks])
    db_session.flush()

    def item(category, name, price):
        return MenuItem(
            chain_id=seed_branch.chain_id,
            branch_id=seed_branch.id,
            category_id=category.id,
            name=name,
            price=Decimal(price),
        )

    burger = item(mains, "Burger", "25.00")
    fries = item(mains, "Fries", "5.00")
    soda = item(drinks, "Soda", "2.50")
    db_session.add_all([burger, fries, soda])
    db_session.commit()
    return SimpleNamespace(mains=mains, drinks=drinks, burger=burger, fries=fries, soda=soda)


@pytest.fixture
def order_factory(db_session):
    """
    Build orders directly in the database.

    Usage:
        order = order_factory(seed_branch, [(seed_menu.burger, 2)])
    """
    def make_order(
        branch,
        lines,
        status=OrderStatus.PREPARING,
        payment_method=PaymentMethod.ONLINE,
        payment_status=None,
        source="web",
        created_at=None,
        preparing_started_at=None,
        customer_email=None,
        **amounts,
    ):
        subtotal = sum((Decimal(str(menu_item.price)) * qty for menu_item, qty in lines), Decimal(0))
        items_subtotal, gst, qst, total = compute_totals(subtotal)
        if payment_status is None:
            payment_status = (
                PaymentStatus.SUCCEEDED if payment_method == PaymentMethod.ONLINE else PaymentStatus.PENDING
            )

        order = Order(
            chain_id=branch.chain_id,
            branch_id=branch.id,
            order_number=f"261017-{next(_order_numbers):06X}",
            status=status,
            source=source,
            customer_email=customer_email,
            customer_name="Camille" if customer_email else None,
            items_subtotal=amounts.get("items_subtotal", items_subtotal),
            gst_amount=amounts.get("gst_amount", gst),
            qst_amount=amounts.get("qst_amount", qst),
            total_amount=amounts.get("total_amount", total),
            payment_method=payment_method,
            payment_status=payment_status,
            payment_intent_id="pi_test_123" if payment_method == PaymentMethod.ONLINE else None,
            preparing_started_at=preparing_started_at,
            items=[
                OrderItem(
                    menu_item_id=menu_item.id,
                    name=menu_item.name,
                    unit_price=menu_item.price,
                    quantity=qty,
                )
                for menu_item, qty in lines
            ],
        )
        if created_at is not None:
            order.created_at = created_at
        db_session.add(order)
        db_session.commit()
        db_session.refresh(order)
        return order

    return make_order


@pytest.fixture
def auth_headers():
    """Authorization header for a principal."""
    def make_headers(principal):
        return {"Authorization": f"Bearer {sign_jwt(principal.to_claims())}"}
    return make_headers


@pytest.fixture
def staff_password():
    """Plain password of every seeded staff user."""
    return STAFF_PASSWORD
