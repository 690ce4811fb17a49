"""Shared fixtures: the workflow wired to in-memory stores."""

import pytest

from catatbot.services.approval import ApprovalScorer
from catatbot.services.processor import TransactionProcessor
from catatbot.services.recovery import RecoveryManager
from catatbot.services.transitions import ApprovalTransitionManager
from catatbot.services.workflow import WorkflowEngine
from tests.fakes import (
    InMemoryCategoryDirectory,
    InMemoryPartialDataStore,
    InMemorySessionStore,
    InMemoryTransactionRepository,
    RecordingNotifier,
)

USER_ID = 1001
APPROVER_ID = 9001


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def partial_store():
    return InMemoryPartialDataStore()


@pytest.fixture
def categories():
    return InMemoryCategoryDirectory()


@pytest.fixture
def repository():
    return InMemoryTransactionRepository()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def recovery(session_store, partial_store):
    return RecoveryManager(session_store, partial_store)


@pytest.fixture
def processor(repository, notifier):
    return TransactionProcessor(
        repository,
        ApprovalScorer(repository),
        notifier,
        approver_ids={APPROVER_ID},
        timeout=1.0,
    )


@pytest.fixture
def workflow(session_store, categories, processor, recovery):
    return WorkflowEngine(session_store, categories, processor, recovery)


@pytest.fixture
def transitions(repository, notifier):
    return ApprovalTransitionManager(repository, notifier)
