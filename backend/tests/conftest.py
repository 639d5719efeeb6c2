"""
Pytest fixtures for the payments backend tests.

Provides the test database, gym and plan fixtures, a fake payment provider
and a recording notification sink injected through app.extensions.
"""

import pytest

from fitsuite import create_app
from fitsuite.config import Config
from fitsuite.extensions import db
from fitsuite.models import Gym, Product, ProductVariant
from fitsuite.services import plan_catalog
from fitsuite.services.external_reference import build_license_reference, build_order_reference
from fitsuite.services.payment_processing import PaymentProcessor, PaymentSettings
from fitsuite.services.payment_provider import ProviderError, ProviderPayment


TZ = "America/Argentina/Buenos_Aires"
SERVICE_TOKEN = "test-service-token"


class PaymentsTestConfig(Config):
    TESTING = True
    SECRET_KEY = "test"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    MP_ACCESS_TOKEN = "TEST-ACCESS-TOKEN"
    MP_RETRY_ATTEMPTS = 1
    MP_RETRY_BACKOFF = 0.0
    PUBLIC_BASE_URL = "https://pay.example.test"
    BUSINESS_TIMEZONE = TZ
    DEFAULT_GRACE_HOURS = 72
    DEFAULT_PLAN_DURATION_DAYS = 30
    REFERRAL_TIER_STEP = 4
    REFERRAL_POINTS_PER_REFERRAL = 100
    SERVICE_API_TOKEN = SERVICE_TOKEN


class FakePaymentProvider:
    """In-memory stand-in for the provider client."""

    def __init__(self):
        self.payments = {}
        self.merchant_orders = {}
        self.preferences = []
        self.lookups = []
        self.fail_with = None

    def add_payment(self, payment_id, *, reference, amount_cents, status="approved",
                    payment_type="account_money", merchant_order_id=None):
        payment = ProviderPayment(
            id=str(payment_id),
            status=status,
            amount_cents=amount_cents,
            external_reference=reference,
            payment_type=payment_type,
            merchant_order_id=merchant_order_id,
        )
        self.payments[str(payment_id)] = payment
        return payment

    def get_payment(self, payment_id):
        self.lookups.append(str(payment_id))
        if self.fail_with is not None:
            raise self.fail_with
        if str(payment_id) not in self.payments:
            raise ProviderError(f"payment {payment_id} not found", status_code=404, retryable=False)
        return self.payments[str(payment_id)]

    def get_merchant_order(self, order_id):
        if str(order_id) not in self.merchant_orders:
            raise ProviderError(f"merchant order {order_id} not found", status_code=404, retryable=False)
        return self.merchant_orders[str(order_id)]

    def create_preference(self, payload):
        if self.fail_with is not None:
            raise self.fail_with
        self.preferences.append(payload)
        n = len(self.preferences)
        return {
            "id": f"pref-{n}",
            "init_point": f"https://checkout.example.test/pref-{n}",
            "sandbox_init_point": f"https://sandbox.example.test/pref-{n}",
        }


class RecordingSink:
    """Notification sink that records calls and can be told to fail."""

    def __init__(self):
        self.calls = []
        self.fail = False

    def notify(self, event_type, gym_id, details, *, message_key):
        if self.fail:
            raise RuntimeError("notification backend down")
        self.calls.append({
            "event_type": event_type,
            "gym_id": gym_id,
            "details": details,
            "message_key": message_key,
        })


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(PaymentsTestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def fake_provider(app):
    provider = FakePaymentProvider()
    app.extensions["payment_provider"] = provider
    return provider


@pytest.fixture(scope='function')
def sink(app):
    recording = RecordingSink()
    app.extensions["notification_sink"] = recording
    return recording


@pytest.fixture(scope='function')
def settings(app):
    return PaymentSettings.from_config(app.config)


@pytest.fixture(scope='function')
def processor(db_session, fake_provider, sink, settings):
    return PaymentProcessor(fake_provider, sink, settings)


@pytest.fixture(scope='function')
def client(app, fake_provider, sink):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def plans(db_session):
    """basic/pro in the primary catalog, legacy 'clasico' in the legacy one."""
    plan_catalog.upsert_plan("basic", {
        "name": "Basic",
        "price": 1000,
        "durationDays": 30,
        "tier": "basic",
        "modules": ["members", "payments"],
        "limits": {"maxMembers": 100, "maxDevices": 2, "maxBranches": 1, "maxOfflineHours": 72},
    })
    plan_catalog.upsert_plan("pro", {
        "name": "Pro",
        "price": 2000,
        "durationDays": 60,
        "tier": "pro",
        "modules": {"members": True, "store": True, "reports": True},
        "limits": {"maxMembers": 500, "maxDevices": 3},
    })
    plan_catalog.upsert_plan("clasico", {
        "nombre": "Clasico",
        "precio": "750.50",
        "duracion": 15,
        "modulosPlan": ["members"],
        "maxUsuarios": 40,
    }, legacy=True)
    db_session.commit()


@pytest.fixture(scope='function')
def gym_a(db_session):
    gym = Gym(id="gym-a", name="Gym A", timezone=TZ)
    db_session.add(gym)
    db_session.commit()
    return gym


@pytest.fixture(scope='function')
def gym_b(db_session):
    gym = Gym(id="gym-b", name="Gym B", timezone=TZ)
    db_session.add(gym)
    db_session.commit()
    return gym


@pytest.fixture(scope='function')
def products(db_session, gym_a):
    """A flat-stock product (stock 5) and a variant product (Red/M stock 1)."""
    flat = Product(gym_id=gym_a.id, name="Water bottle", price_cents=500, stock=5)
    shirt = Product(gym_id=gym_a.id, name="Shirt", price_cents=1500, stock=None)
    db_session.add_all([flat, shirt])
    db_session.flush()
    db_session.add_all([
        ProductVariant(product_id=shirt.id, color="Red", size="M", stock=1),
        ProductVariant(product_id=shirt.id, color="Blue", size="L", stock=4),
    ])
    db_session.commit()
    return {"flat": flat, "shirt": shirt}


def license_ref(gym_id, plan_id, ref=None, disc=0):
    return build_license_reference(gym_id, plan_id, ref, disc)


def order_ref(gym_id, order_id):
    return build_order_reference(gym_id, order_id)


def auth_headers(token: str = SERVICE_TOKEN) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
