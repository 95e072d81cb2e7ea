import pytest
from datetime import datetime, timedelta

from app.core.session_manager import SessionManager
from app.services.metrics_service import MetricsService

class FakeClock:
    """Relógio controlado manualmente nos testes"""

    def __init__(self, start: datetime = datetime(2024, 6, 1, 9, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)

@pytest.fixture
def clock():
    return FakeClock()

@pytest.fixture
def metrics():
    return MetricsService()

@pytest.fixture
def session_manager(clock, metrics):
    return SessionManager(clock=clock, metrics=metrics)

@pytest.fixture
def phone_number():
    return "+2348011111111"
