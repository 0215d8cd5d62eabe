import os
import uuid
from typing import AsyncGenerator

import orjson
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from mongomock_motor import AsyncMongoMockClient

os.environ.setdefault("MONGODB_DB_NAME", "bluecarbon_test")
os.environ.setdefault("SECRET_KEY", "test-secret-key-min-32-characters-long")
os.environ["RAZORPAY_KEY_ID"] = "rzp_test_key"
os.environ["RAZORPAY_KEY_SECRET"] = "rzp_test_secret"
os.environ["RAZORPAY_WEBHOOK_SECRET"] = "whsec_test"

from bluecarbon.anchoring.base import Anchor, DigestAnchor  # noqa: E402
from bluecarbon.core.config import get_settings  # noqa: E402
from bluecarbon.core.security import create_access_token, sign_webhook_payload  # noqa: E402
from bluecarbon.db.init import init_db  # noqa: E402
from bluecarbon.models.report import MonitoringData, ScoringResult  # noqa: E402
from bluecarbon.models.user import Role, User  # noqa: E402
from bluecarbon.payments.base import GatewayOrder, PaymentGateway  # noqa: E402
from bluecarbon.scoring.base import Scorer, ScoringError  # noqa: E402

WEBHOOK_SECRET = "whsec_test"


class FakeScorer(Scorer):
    def __init__(self, tonnage: float = 80, quality: float = 0.9, error: Exception | None = None):
        self.result = ScoringResult(tonnage_estimate=tonnage, quality_score=quality, evidence_reference="ev://test")
        self.error = error
        self.calls = 0

    async def score(self, report):
        self.calls += 1
        if self.error:
            raise self.error
        return self.result


class FailingScorer(FakeScorer):
    def __init__(self):
        super().__init__(error=ScoringError("scorer unavailable"))


class FailingAnchor(Anchor):
    async def anchor(self, record):
        raise RuntimeError("anchor unavailable")


class RecordingAnchor(DigestAnchor):
    def __init__(self):
        self.records: list[dict] = []

    async def anchor(self, record):
        self.records.append(record)
        return await super().anchor(record)


class FakeGateway(PaymentGateway):
    key_id = "rzp_test_key"

    def __init__(self):
        self.created: list[dict] = []

    async def create_order(self, amount_minor, currency, receipt, notes=None):
        order_id = f"order_{uuid.uuid4().hex[:14]}"
        self.created.append({"order_id": order_id, "amount": amount_minor, "receipt": receipt, "notes": notes})
        return GatewayOrder(order_id=order_id, amount=amount_minor, currency=currency)


@pytest.fixture(autouse=True)
def _settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture(autouse=True)
async def db():
    database = AsyncMongoMockClient()[f"bluecarbon_test_{uuid.uuid4().hex[:8]}"]
    await init_db(database)
    yield database


async def make_user(role: Role, organization: str | None = "Sundarbans Trust") -> User:
    user = User(email=f"{role.value}-{uuid.uuid4().hex[:8]}@example.com", name=role.value.title(), role=role, organization=organization)
    await user.insert()
    return user


def auth_headers(user: User) -> dict[str, str]:
    token = create_access_token({"user_id": str(user.id), "session_version": user.session_version})
    return {"Authorization": f"Bearer {token}"}


def sample_raw_data() -> MonitoringData:
    return MonitoringData(
        satellite_data="NDVI 0.71 over 120 ha",
        sensor_readings="soil carbon 42 t/ha",
        notes="quarterly survey",
    )


def sample_project_data() -> dict:
    return {
        "name": "Pichavaram Mangrove Restoration",
        "location": "Tamil Nadu, India",
        "ecosystem_type": "mangrove",
        "area": 120.5,
        "description": "Replanting Rhizophora along tidal creeks",
    }


def captured_event(order_id: str, amount: int, payment_id: str = "pay_test_1", event: str = "payment.captured") -> bytes:
    return orjson.dumps(
        {
            "event": event,
            "payload": {"payment": {"entity": {"id": payment_id, "order_id": order_id, "amount": amount}}},
        }
    )


def sign(body: bytes) -> str:
    return sign_webhook_payload(body, WEBHOOK_SECRET)


@pytest.fixture
def scorer() -> FakeScorer:
    return FakeScorer()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest_asyncio.fixture
async def manager() -> User:
    return await make_user(Role.MANAGER)


@pytest_asyncio.fixture
async def verifier() -> User:
    return await make_user(Role.VERIFIER, organization="NCCR")


@pytest_asyncio.fixture
async def buyer() -> User:
    return await make_user(Role.BUYER, organization="Acme Shipping")


@pytest_asyncio.fixture
async def approved_batch(manager, verifier, scorer):
    """Project -> scored report (80 t, 0.9) -> approved; returns the minted batch."""
    from bluecarbon.services import projects as projects_service
    from bluecarbon.services import reports as reports_service
    from bluecarbon.services import verification as verification_service

    project = await projects_service.create_project(manager, sample_project_data())
    report = await reports_service.submit_report(project.id, sample_raw_data(), manager, scorer=scorer)
    _, batch = await verification_service.decide(report.id, verifier, True, anchor=DigestAnchor())
    return batch


@pytest_asyncio.fixture
async def client(scorer, gateway, tmp_path) -> AsyncGenerator[AsyncClient, None]:
    from bluecarbon.anchoring.base import get_anchor
    from bluecarbon.main import app
    from bluecarbon.payments.base import get_payment_gateway
    from bluecarbon.scoring.base import get_scorer
    from bluecarbon.storage.base import get_storage
    from bluecarbon.storage.local import LocalStorage

    app.dependency_overrides[get_scorer] = lambda: scorer
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_anchor] = lambda: DigestAnchor()
    app.dependency_overrides[get_storage] = lambda: LocalStorage(tmp_path)
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()
