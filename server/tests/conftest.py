"""Test configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from uuid import UUID, uuid4

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.exc import OperationalError

from booking_engine.core.config import settings
from booking_engine.core.database import Database
from booking_engine.core.exceptions import PaymentError, UnavailableError
from booking_engine.gateways import PaymentGateway, PaymentIntent, PaymentIntentState, RefundOutcome
from booking_engine.main import create_app
from booking_engine.models import (
    Athlete,
    AthleteGuardian,
    EntitlementRule,
    EventTemplate,
    Membership,
    MembershipType,
    Organization,
    Package,
    PackageType,
    RestrictionTag,
    RuleScope,
    ScheduledEvent,
    SchedulingCategory,
    SignatureType,
    Waiver,
    WaiverSignature,
)
from booking_engine.schemas.catalog import EventDetails

# Test database URL (in-memory SQLite for speed)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


class FakePaymentGateway(PaymentGateway):
    """In-memory stand-in for Stripe."""

    def __init__(self):
        self.intents: Dict[str, PaymentIntent] = {}
        self.refunds: list[dict] = []
        self._intent_keys: Dict[str, str] = {}
        self._refund_keys: Dict[str, RefundOutcome] = {}
        self.fail_refunds_with: Optional[Exception] = None

    @property
    def name(self) -> str:
        return "fake"

    async def create_payment_intent(self, amount_cents, currency, metadata, idempotency_key, description=None):
        if idempotency_key in self._intent_keys:
            return self.intents[self._intent_keys[idempotency_key]]

        intent_id = f"pi_{uuid4().hex[:16]}"
        intent = PaymentIntent(
            intent_id=intent_id,
            client_secret=f"{intent_id}_secret",
            status=PaymentIntentState.REQUIRES_PAYMENT_METHOD,
            amount_cents=amount_cents,
            currency=currency,
            metadata=dict(metadata),
        )
        self.intents[intent_id] = intent
        self._intent_keys[idempotency_key] = intent_id
        return intent

    async def retrieve_payment_intent(self, intent_id):
        if intent_id not in self.intents:
            raise PaymentError("Payment could not be processed", provider_code="resource_missing")
        return self.intents[intent_id]

    async def refund(self, intent_id, amount_cents, idempotency_key, reason=None):
        if self.fail_refunds_with is not None:
            raise self.fail_refunds_with
        if idempotency_key in self._refund_keys:
            return self._refund_keys[idempotency_key]

        intent = self.intents.get(intent_id)
        amount = amount_cents if amount_cents is not None else (intent.amount_received_cents if intent else 0)
        outcome = RefundOutcome(
            refund_id=f"re_{uuid4().hex[:16]}",
            status="succeeded",
            amount_cents=amount,
            currency=intent.currency if intent else "usd",
        )
        self._refund_keys[idempotency_key] = outcome
        self.refunds.append({"intent_id": intent_id, "amount_cents": amount, "idempotency_key": idempotency_key})
        return outcome

    def complete(self, intent_id: str, amount_received_cents: Optional[int] = None) -> PaymentIntent:
        """Simulate the athlete finishing the hosted payment sheet."""
        intent = self.intents[intent_id]
        intent.status = PaymentIntentState.SUCCEEDED
        intent.amount_received_cents = intent.amount_cents if amount_received_cents is None else amount_received_cents
        return intent

    def add_succeeded_intent(self, amount_cents: int, metadata: Dict[str, str]) -> PaymentIntent:
        intent_id = f"pi_{uuid4().hex[:16]}"
        self.intents[intent_id] = PaymentIntent(
            intent_id=intent_id,
            client_secret=f"{intent_id}_secret",
            status=PaymentIntentState.SUCCEEDED,
            amount_cents=amount_cents,
            currency="usd",
            metadata=dict(metadata),
            amount_received_cents=amount_cents,
        )
        return self.intents[intent_id]


class Factory:
    """Creates catalog and entitlement rows with sensible defaults."""

    def __init__(self, database: Database):
        self.database = database

    async def _save(self, *rows):
        async with self.database.session() as session:
            session.add_all(rows)
            await session.commit()
        return rows[0] if len(rows) == 1 else rows

    async def org(self, refund_window_hours: Optional[int] = None) -> Organization:
        return await self._save(
            Organization(name="Test Academy", slug=f"academy-{uuid4().hex[:8]}", refund_window_hours=refund_window_hours)
        )

    async def tag(self, org: Organization, name: str = "Medical clearance", description: Optional[str] = None) -> RestrictionTag:
        return await self._save(RestrictionTag(org_id=org.id, name=name, description=description))

    async def category(self, org: Organization, name: str = "Hitting") -> SchedulingCategory:
        return await self._save(SchedulingCategory(org_id=org.id, name=name))

    async def template(
        self,
        org: Organization,
        category: Optional[SchedulingCategory] = None,
        required_tags: tuple = (),
        drop_in_price_cents: Optional[int] = None,
        hours_before_cutoff: int = 0,
        max_days_ahead_open: Optional[int] = None,
        name: str = "Hitting Lab",
    ) -> EventTemplate:
        return await self._save(
            EventTemplate(
                org_id=org.id,
                name=name,
                category_id=category.id if category else None,
                required_restriction_tag_ids=[str(tag.id) for tag in required_tags],
                drop_in_price_cents=drop_in_price_cents,
                hours_before_cutoff=hours_before_cutoff,
                max_days_ahead_open=max_days_ahead_open,
            )
        )

    async def event(
        self,
        org: Organization,
        template: EventTemplate,
        capacity: int = 10,
        starts_in: timedelta = timedelta(days=2),
        status: str = "scheduled",
        start_time: Optional[datetime] = None,
        category: Optional[SchedulingCategory] = None,
    ) -> ScheduledEvent:
        start = start_time or datetime.now(timezone.utc) + starts_in
        return await self._save(
            ScheduledEvent(
                org_id=org.id,
                template_id=template.id,
                category_id=category.id if category else None,
                title=template.name,
                start_time=start,
                end_time=start + timedelta(hours=1),
                capacity=capacity,
                status=status,
            )
        )

    async def athlete(
        self,
        org: Organization,
        user_id: Optional[str] = None,
        tags: tuple = (),
        first_name: str = "Sam",
        last_name: str = "Rivera",
    ) -> Athlete:
        return await self._save(
            Athlete(
                org_id=org.id,
                user_id=user_id,
                first_name=first_name,
                last_name=last_name,
                restriction_tag_ids=[str(tag.id) for tag in tags],
            )
        )

    async def guardian(self, guardian_user_id: str, athlete: Athlete, label: str = "parent") -> AthleteGuardian:
        return await self._save(
            AthleteGuardian(guardian_user_id=guardian_user_id, athlete_id=athlete.id, relationship_label=label)
        )

    async def membership(
        self,
        athlete: Athlete,
        category: Optional[SchedulingCategory] = None,
        template: Optional[EventTemplate] = None,
        status: str = "active",
        period_end: Optional[datetime] = None,
        scope: Optional[RuleScope] = None,
        name: str = "Unlimited Hitting",
    ) -> Membership:
        membership_type = await self._save(MembershipType(org_id=athlete.org_id, name=name))
        await self._save(self._rule(scope, category, template, membership_type_id=membership_type.id))
        return await self._save(
            Membership(
                athlete_id=athlete.id,
                membership_type_id=membership_type.id,
                status=status,
                current_period_end=period_end,
            )
        )

    async def package(
        self,
        athlete: Athlete,
        uses_remaining: Optional[int] = 5,
        category: Optional[SchedulingCategory] = None,
        template: Optional[EventTemplate] = None,
        scope: Optional[RuleScope] = RuleScope.ANY,
        expiry_date: Optional[datetime] = None,
        status: str = "active",
        name: str = "10 Session Pack",
    ) -> Package:
        package_type = await self._save(
            PackageType(org_id=athlete.org_id, name=name, uses=None if uses_remaining is None else 10)
        )
        await self._save(self._rule(scope, category, template, package_type_id=package_type.id))
        return await self._save(
            Package(
                athlete_id=athlete.id,
                package_type_id=package_type.id,
                status=status,
                uses_remaining=uses_remaining,
                uses_total=None if uses_remaining is None else 10,
                expiry_date=expiry_date,
            )
        )

    @staticmethod
    def _rule(scope, category, template, **owner) -> EntitlementRule:
        if scope is None:
            scope = RuleScope.TEMPLATE if template is not None else RuleScope.CATEGORY
        return EntitlementRule(
            scope=scope.value,
            category_id=category.id if scope == RuleScope.CATEGORY and category else None,
            template_id=template.id if scope == RuleScope.TEMPLATE and template else None,
            **owner,
        )

    async def waiver(
        self,
        org: Organization,
        name: str = "Liability Waiver",
        version: int = 1,
        signature_type: SignatureType = SignatureType.CHECKBOX,
        required_for_booking: bool = True,
        required_for_signup: bool = False,
        is_active: bool = True,
    ) -> Waiver:
        return await self._save(
            Waiver(
                org_id=org.id,
                name=name,
                content="<p>I accept the risks of training.</p>",
                version=version,
                signature_type=signature_type.value,
                required_for_booking=required_for_booking,
                required_for_signup=required_for_signup,
                is_active=is_active,
            )
        )

    async def signature(self, waiver: Waiver, athlete: Athlete, version: Optional[int] = None) -> WaiverSignature:
        return await self._save(
            WaiverSignature(
                waiver_id=waiver.id,
                athlete_id=athlete.id,
                waiver_version=version or waiver.version,
                signature_type=SignatureType.CHECKBOX.value,
                signature_data={"agreed": True},
                signed_by_user_id=athlete.user_id or "staff-1",
                signed_by_relationship="self",
            )
        )

    async def reload(self, model, row_id: UUID):
        """Read a row back through a fresh session."""
        async with self.database.session() as session:
            return await session.get(model, row_id)


@pytest_asyncio.fixture(scope="function")
async def test_database():
    """Create an in-memory database with all tables."""
    database = Database(TEST_DATABASE_URL)
    database.open()
    await database.create_all()

    yield database

    await database.drop_all()
    await database.close()


@pytest_asyncio.fixture(scope="function")
async def file_database(tmp_path):
    """A file-backed database so concurrent sessions get their own connections."""
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'booking.db'}", timeout_seconds=30)
    database.open()
    await database.create_all()

    yield database

    await database.close()


@pytest_asyncio.fixture(scope="function")
async def test_session(test_database):
    """Create a test database session."""
    async with test_database.session() as session:
        yield session


@pytest.fixture
def factory(test_database) -> Factory:
    return Factory(test_database)


@pytest.fixture
def file_factory(file_database) -> Factory:
    return Factory(file_database)


@pytest.fixture
def payment_gateway() -> FakePaymentGateway:
    return FakePaymentGateway()


@pytest.fixture
def make_event_details():
    """Build detached event details for the pure booking-window and refund-window rules."""

    def build(**overrides) -> EventDetails:
        start = datetime(2026, 11, 2, 18, tzinfo=timezone.utc)
        values = dict(
            event_id=uuid4(),
            org_id=uuid4(),
            template_id=uuid4(),
            template_name="Hitting Lab",
            start_time=start,
            end_time=start + timedelta(hours=1),
            capacity=10,
            booked_count=0,
            status="scheduled",
        )
        values.update(overrides)
        return EventDetails(**values)

    return build


@pytest.fixture
def datastore_down(test_session, monkeypatch):
    """Make every read on ``test_session`` fail as if the connection dropped."""

    async def refuse(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("connection refused"))

    monkeypatch.setattr(test_session, "execute", refuse)
    monkeypatch.setattr(test_session, "get", refuse)
    return test_session


@pytest.fixture
def unavailable_gateway_error() -> UnavailableError:
    return UnavailableError(service="payment gateway", operation="refund", timed_out=True)


def make_token(user_id: str, roles: Optional[list] = None, expires_in: timedelta = timedelta(hours=1)) -> str:
    payload = {"sub": user_id, "roles": roles or [], "exp": int((datetime.now(timezone.utc) + expires_in).timestamp())}
    return jwt.encode(payload, settings.bearer_token_secret, algorithm="HS256")


@pytest.fixture
def auth_headers():
    """Build an Authorization header for a user id and optional roles."""

    def build(user_id: str, roles: Optional[list] = None) -> dict:
        return {"Authorization": f"Bearer {make_token(user_id, roles)}"}

    return build


@pytest.fixture
def test_app(test_database, payment_gateway):
    """Create the application against the test database and fake gateway."""
    return create_app(database=test_database, payment_gateway=payment_gateway, start_workers=False)


@pytest_asyncio.fixture(scope="function")
async def test_client(test_app):
    """Create a test HTTP client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
