from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from multivote.accounts import AccountLinker
from multivote.models import ElectionStatus
from multivote.otp import OtpEngine
from multivote.store.memory import MemoryStore


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class RecordingMailer:
    """Stands in for the SMTP sender; keeps every code it was asked to send."""

    def __init__(self):
        self.sent = []
        self.fail = False

    async def __call__(self, to_email, full_name, code, instance_name, ttl_hours=5):
        if self.fail:
            raise ConnectionError("SMTP server unavailable")
        self.sent.append(SimpleNamespace(to=to_email, full_name=full_name, code=code,
                                         instance_name=instance_name, ttl_hours=ttl_hours))

    def last_code(self, email):
        return next(m.code for m in reversed(self.sent) if m.to == email)


class RecordingInviter:
    def __init__(self):
        self.sent = []
        self.fail = False

    async def __call__(self, to_email, password, role, instance_name=None):
        if self.fail:
            raise ConnectionError("SMTP server unavailable")
        self.sent.append(SimpleNamespace(to=to_email, password=password, role=role,
                                         instance_name=instance_name))


def set_status(store, instance_id, status):
    """Force an instance into ``status`` without going through transitions."""
    instance = store.instances[instance_id]
    store.instances[instance_id] = instance.model_copy(update={"status": ElectionStatus(status)})


async def seed_election(store, name="Student Council", status=ElectionStatus.DRAFT,
                        voters=("ada@example.com",)):
    instance = await store.create_instance(name)
    category = await store.add_category(instance.id, "President", None, 0)
    first = await store.add_candidate(category.id, "Grace Hopper", None, None, None)
    second = await store.add_candidate(category.id, "Alan Turing", None, None, None)
    roll = [await store.add_voter(instance.id, f"Voter {i}", email)
            for i, email in enumerate(voters)]
    set_status(store, instance.id, status)
    return SimpleNamespace(
        instance=store.instances[instance.id],
        category=category,
        candidates=[first, second],
        voters=roll,
        voter=roll[0] if roll else None,
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def inviter():
    return RecordingInviter()


@pytest.fixture
def engine(store, clock, mailer):
    return OtpEngine(store, linker=AccountLinker(store, clock=clock), send_code=mailer,
                     clock=clock)
