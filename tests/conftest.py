"""
Shared pytest fixtures and configuration for StateSync tests.
"""

import pytest

from statesync import ManualScheduler, SyncProvider, SyncReceiver


@pytest.fixture
def scheduler():
    """Scheduler that only flushes when the test calls run_pending()."""
    return ManualScheduler()


@pytest.fixture
def provider(scheduler):
    """Provide a fresh SyncProvider driven by the manual scheduler."""
    return SyncProvider(scheduler=scheduler)


@pytest.fixture
def published(provider):
    """Collect every (namespace, patches) batch the provider publishes."""
    batches = []
    provider.bus.on("update", lambda namespace, patches: batches.append((namespace, patches)))
    return batches


@pytest.fixture
def receiver(provider):
    """Receiver bootstrapping from the provider and following its update stream."""
    receiver = SyncReceiver(provider.get_state_snapshot)
    receiver.attach(provider.bus)
    return receiver


@pytest.fixture
def recorder():
    """Plain list usable as an observer emit callback."""
    return []
