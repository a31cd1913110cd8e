"""
Shared pytest fixtures for the complaint lifecycle test suite.

Provides an in-memory store, callers for each role, and stub analysis /
extraction services so nothing leaves the process.
"""

import asyncio
import os

# Must be set before railmadad.config is imported
os.environ["JWT_SECRET"] = "test-secret-for-the-complaint-suite-0123456789"
os.environ["STORE_BACKEND"] = "memory"
os.environ["ENRICHMENT_DELAY_SECONDS"] = "0"
os.environ["OPENAI_API_KEY"] = ""

import httpx
import pytest
import pytest_asyncio

from railmadad import api
from railmadad.enrichment import EnrichmentPipeline
from railmadad.errors import AnalysisError
from railmadad.lifecycle import ComplaintLifecycle
from railmadad.models import AnalysisOutcome, Caller, Role
from railmadad.store import ComplaintRepository, MemoryBackend

PASSENGER_EMAIL = "ravi@example.com"
OTHER_EMAIL = "meera@example.com"
ADMIN_EMAIL = "official@railways.example"


class StubAnalysis:
    """Analysis service that answers immediately with a fixed outcome."""

    def __init__(self, outcome=None):
        self.outcome = outcome or AnalysisOutcome(
            category="Cleaning", urgency_score=4, summary="Platform needs cleaning.",
            keywords=["platform", "litter", "platform"], suggested_department="Cleaning")
        self.calls = []

    async def analyze(self, complaint):
        self.calls.append(complaint)
        return self.outcome


class FailingAnalysis:
    def __init__(self):
        self.calls = 0

    async def analyze(self, complaint):
        self.calls += 1
        raise AnalysisError("model unavailable")


class GatedAnalysis(StubAnalysis):
    """Blocks inside analyze() until the test opens the gate."""

    def __init__(self, outcome=None):
        super().__init__(outcome)
        self.gate = asyncio.Event()
        self.entered = asyncio.Event()

    async def analyze(self, complaint):
        self.calls.append(complaint)
        self.entered.set()
        await self.gate.wait()
        return self.outcome


class StubExtraction:
    def __init__(self, result):
        self.result = result
        self.calls = []

    async def extract(self, summary, bot_response=""):
        self.calls.append((summary, bot_response))
        return self.result


@pytest.fixture
def backend():
    return MemoryBackend()


@pytest.fixture
def repository(backend):
    return ComplaintRepository(backend)


@pytest.fixture
def passenger():
    return Caller(email=PASSENGER_EMAIL, role=Role.PASSENGER)


@pytest.fixture
def other_passenger():
    return Caller(email=OTHER_EMAIL, role=Role.PASSENGER)


@pytest.fixture
def admin():
    return Caller(email=ADMIN_EMAIL, role=Role.OFFICIAL)


@pytest.fixture
def guest():
    return Caller()


@pytest.fixture
def analysis():
    return StubAnalysis()


@pytest.fixture
def pipeline(repository, analysis):
    return EnrichmentPipeline(repository, analysis, delay=0)


@pytest.fixture
def make_lifecycle(repository):
    """Factory: a lifecycle controller for ``caller`` on the shared repository."""
    made = []

    def _make(caller, enrichment=None, extraction=None, repo=None):
        lifecycle = ComplaintLifecycle(repo or repository, caller,
                                       enrichment=enrichment, extraction=extraction)
        made.append(lifecycle)
        return lifecycle

    yield _make
    for lifecycle in made:
        lifecycle.close()


STATION_FIELDS = {
    "complaint_area": "STATION",
    "complaint_type": "Cleanliness",
    "complaint_sub_type": "Platform",
    "description": "dirty platform",
}

TRAIN_FIELDS = {
    "complaint_area": "TRAIN",
    "complaint_type": "Coach - Maintenance",
    "complaint_sub_type": "AC/Heating",
    "description": "AC not working in B2",
    "pnr": "4521789630",
    "train_number": "12951",
    "coach_number": "B2",
}


# ---------------------------------------------------------------------------
# HTTP surface
# ---------------------------------------------------------------------------
@pytest_asyncio.fixture
async def client():
    """In-process httpx AsyncClient over a fresh in-memory store."""
    # Disable rate limiting so repeated submissions aren't throttled
    api.limiter.enabled = False

    async with api.lifespan(api.app):
        api.enrichment.analysis = StubAnalysis()
        transport = httpx.ASGITransport(app=api.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
            yield c


def _headers(email, role):
    return {"Authorization": f"Bearer {api.create_access_token(email, role)}"}


@pytest.fixture
def passenger_headers():
    return _headers(PASSENGER_EMAIL, Role.PASSENGER)


@pytest.fixture
def other_headers():
    return _headers(OTHER_EMAIL, Role.PASSENGER)


@pytest.fixture
def admin_headers():
    return _headers(ADMIN_EMAIL, Role.OFFICIAL)
