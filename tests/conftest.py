from decimal import Decimal

import pytest

from groupsplit.app import create_app
from groupsplit.models import Member


@pytest.fixture
def members():
    return [
        Member(id=1, name="Alice"),
        Member(id=2, name="Bob"),
        Member(id=3, name="Carol"),
    ]


@pytest.fixture
def earners():
    return [
        Member(id=1, name="Alice", income=Decimal("5000")),
        Member(id=2, name="Bob", income=Decimal("1000")),
        Member(id=3, name="Carol", income=Decimal("3000")),
    ]


@pytest.fixture
def app():
    return create_app({"TESTING": True, "REMAINDER_RULE": "first"})


@pytest.fixture
def client(app):
    return app.test_client()
