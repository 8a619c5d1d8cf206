"""
Pytest fixtures for HerbTrace backend tests.

Provides test database setup, one user per supply-chain role, and test client.
"""

import math

import pytest
from herbtrace import create_app
from herbtrace.extensions import db
from herbtrace.geo_utils import EARTH_RADIUS_METERS
from herbtrace.services.auth_service import create_user
from herbtrace.services.ledger_service import init_ledger
from herbtrace.time_utils import parse_iso_datetime
from herbtrace.validation import validate_batch_create


PASSWORD = "Password123!"

# (user_id, username, role, organization)
ROLE_USERS = [
    ("farmer001", "farmer", "farmer", "Green Valley Farms"),
    ("farmer002", "farmer2", "farmer", "Hill Top Farms"),
    ("processor001", "processor", "processor", "Ayur Processing Co"),
    ("lab001", "laboratory", "laboratory", "Certified Herb Labs"),
    ("regulator001", "regulator", "regulator", "AYUSH Regulatory Authority"),
    ("retailer001", "retailer", "retailer", "Herbal Retail Store"),
    ("consumer001", "consumer", "consumer", "Public"),
    ("admin001", "admin", "admin", "HerbTrace"),
]

# Bangalore approved-zone center
BANGALORE = (12.9716, 77.5946)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_MODE': 'offline',
        'STATUS_TRANSITION_POLICY': 'permissive',
        'CLIENT_URL': 'http://localhost:3000',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        # Tests may swap the ledger client or tweak policy; restore defaults
        app.config['STATUS_TRANSITION_POLICY'] = 'permissive'
        init_ledger(app)

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def users(db_session):
    """One active user per role (plus a second farmer), keyed by username."""
    created = {}
    for user_id, username, role, organization in ROLE_USERS:
        created[username] = create_user(
            user_id=user_id,
            username=username,
            email=f"{username}@herbtrace.test",
            password=PASSWORD,
            role=role,
            organization=organization,
            bcrypt_rounds=4,
        )
    return created


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


def batch_payload(batch_id: str = "BATCH001", **overrides) -> dict:
    """POST /api/batches body inside the Bangalore zone, harvested in June."""
    payload = {
        "batchId": batch_id,
        "species": "Ashwagandha",
        "quantity": 50,
        "unit": "kg",
        "latitude": BANGALORE[0],
        "longitude": BANGALORE[1],
        "address": "Bangalore, Karnataka",
        "harvestDate": "2024-06-15T08:00:00Z",
    }
    payload.update(overrides)
    return payload


def make_batch(actor, batch_id: str = "BATCH001", **overrides):
    """Create a batch through the service layer."""
    from herbtrace.services import batch_service

    return batch_service.create_batch(validate_batch_create(batch_payload(batch_id, **overrides)), actor)


def at(value: str):
    return parse_iso_datetime(value)


def north_of(lat: float, meters: float) -> float:
    """Latitude of the point `meters` due north (negative: south)."""
    return lat + math.degrees(meters / EARTH_RADIUS_METERS)


@pytest.fixture
def farmer_headers(client, users):
    return auth_headers(get_auth_token(client, "farmer"))


@pytest.fixture
def farmer2_headers(client, users):
    return auth_headers(get_auth_token(client, "farmer2"))


@pytest.fixture
def processor_headers(client, users):
    return auth_headers(get_auth_token(client, "processor"))


@pytest.fixture
def lab_headers(client, users):
    return auth_headers(get_auth_token(client, "laboratory"))


@pytest.fixture
def regulator_headers(client, users):
    return auth_headers(get_auth_token(client, "regulator"))


@pytest.fixture
def retailer_headers(client, users):
    return auth_headers(get_auth_token(client, "retailer"))


@pytest.fixture
def consumer_headers(client, users):
    return auth_headers(get_auth_token(client, "consumer"))


@pytest.fixture
def admin_headers(client, users):
    return auth_headers(get_auth_token(client, "admin"))
