"""
Shared fixtures for the card program test suite.

  - fake_db: in-memory Supabase replacement, installed for every test
  - admin / system actors and a clinic factory
  - default_perks: two active default perk templates
  - make_cards: generates a batch of N auto-mode cards
  - admin_client / clinic_client: HTTP clients with the actor dependency
    overridden, so requests skip JWT verification

The fake is patched in where database.connection.get_db looks the client up,
so repositories and services run unchanged.
"""

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

from app.core.config import settings
from app.core.permissions import get_actor
from app.domain.actor import Actor
from app.domain.statuses import ActorType
from app.main import app
from app.repositories.card import CardRepository
from app.services.card_generation import generate_card_batch
from app.services.clinics import create_clinic
from app.services.perk_mirroring import create_perk_template

from .fake_supabase import FakeSupabase


ADMIN = Actor(user_id="admin-1", actor_type=ActorType.ADMIN)


@pytest.fixture(autouse=True)
def fake_db(monkeypatch):
    """Fresh in-memory database for each test."""
    db = FakeSupabase()
    monkeypatch.setattr("database.supabase_client.get_supabase_client", lambda: db)
    monkeypatch.setattr(settings, "insert_chunk_delay", 0)
    monkeypatch.setattr(settings, "run_background_tasks", False)
    return db


@pytest.fixture
def admin():
    return ADMIN


@pytest.fixture
def make_clinic():
    """Create clinics through the service so perk mirroring runs as in production."""
    def factory(clinic_code="CVT001", region_code="01", clinic_name=None):
        clinic, _ = create_clinic(clinic_name or f"Clinic {clinic_code}", clinic_code, ADMIN, region_code=region_code)
        return clinic
    return factory


@pytest.fixture
def clinic(make_clinic):
    return make_clinic()


@pytest.fixture
def clinic_actor(clinic):
    return Actor(user_id="staff-1", actor_type=ActorType.CLINIC, clinic_id=clinic["id"])


@pytest.fixture
def default_perks():
    templates = []
    for name, perk_type, value in (("Free cleaning", "cleaning", 500), ("Free consultation", "consultation", 300)):
        template, _ = create_perk_template(name, perk_type, ADMIN, default_value=value, is_default=True)
        templates.append(template)
    return templates


@pytest.fixture
def make_cards():
    """Generate an auto-mode batch and return its card rows in sequence order."""
    async def factory(total=3, **kwargs):
        batch = await generate_card_batch(total, "auto", actor=ADMIN, **kwargs)
        first = batch["batch_metadata"]["first_sequence"]
        return CardRepository.list_in_range(first, first + total - 1)
    return factory


def _client_for(actor):
    app.dependency_overrides[get_actor] = lambda: actor
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest_asyncio.fixture
async def admin_client():
    async with _client_for(ADMIN) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def clinic_client(clinic_actor):
    async with _client_for(clinic_actor) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def anonymous_client():
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
