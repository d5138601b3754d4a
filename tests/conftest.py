import os

# Credential fields have no defaults (services must fail without secrets).
# Provide test values so Settings() can be constructed in tests.
os.environ.setdefault("API_KEY", "test-api-key")

import pytest

from tests.factories import StraightLineProvider, TripFactory
from trip import Trip


@pytest.fixture
def trip_factory() -> TripFactory:
    return TripFactory()


@pytest.fixture
def straight_line_provider() -> StraightLineProvider:
    """Path provider returning fallback geometry without touching the network."""
    return StraightLineProvider()


@pytest.fixture
def sample_trip(trip_factory: TripFactory) -> Trip:
    """Two participants north of the city centre heading to the beach."""
    return trip_factory.create(
        homes=[(13.09, 80.28), (13.07, 80.26)],
        destination=(13.10, 80.30),
    )


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"X-API-Key": "test-api-key"}
