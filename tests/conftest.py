"""Shared fixtures for the RezKyoo test suite."""

import os

import pytest

os.environ.setdefault("OPENAI_API_KEY", "sk-test")

from fakes import (  # noqa: E402
    FakeClassifier,
    FakeNavigator,
    FakePlaces,
    FakeTelephony,
    FakeTranscriber,
    ManualScheduler,
)
from rezkyoo.config import Config  # noqa: E402
from rezkyoo.services.batch_coordinator import BatchCoordinator  # noqa: E402
from rezkyoo.services.call_machine import CallContext, CallStateMachine  # noqa: E402
from rezkyoo.services.dnc import DoNotCallRegistry  # noqa: E402
from rezkyoo.services.scheduling import KeyedLocks  # noqa: E402
from rezkyoo.services.storage import InMemoryDocumentStore, ReservationStore  # noqa: E402


@pytest.fixture
def config():
    """Configuration that ignores the environment and any .env file."""
    return Config(
        _env_file=None,
        openai_api_key="sk-test",
        calls_per_batch=3,
        max_calls_per_batch=10,
        min_candidates=1,
        radius_steps=3,
        callback_number="+14155550100",
    )


@pytest.fixture
def documents():
    return InMemoryDocumentStore()


@pytest.fixture
def store(documents):
    return ReservationStore(documents)


@pytest.fixture
def dnc(documents):
    return DoNotCallRegistry(documents)


@pytest.fixture
def telephony():
    return FakeTelephony()


@pytest.fixture
def transcriber():
    return FakeTranscriber()


@pytest.fixture
def classifier():
    return FakeClassifier()


@pytest.fixture
def navigator():
    return FakeNavigator()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def places():
    return FakePlaces()


@pytest.fixture
def locks():
    return KeyedLocks()


@pytest.fixture
def machine(config, store, telephony, transcriber, classifier, navigator, dnc, scheduler, locks):
    """Call state machine wired to fakes."""
    return CallStateMachine(
        store=store,
        telephony=telephony,
        transcriber=transcriber,
        classifier=classifier,
        navigator=navigator,
        dnc=dnc,
        scheduler=scheduler,
        context=CallContext.from_config(config),
        locks=locks,
    )


@pytest.fixture
def coordinator(config, store, places, telephony, machine, dnc, locks):
    """Batch coordinator wired to fakes."""
    return BatchCoordinator(
        config=config,
        store=store,
        places=places,
        telephony=telephony,
        calls=machine,
        dnc=dnc,
        locks=locks,
    )
