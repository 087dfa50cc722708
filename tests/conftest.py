"""Shared fixtures: temporary healing store, model catalog, scripted executor."""

import os
import tempfile

import pytest

from skillheal.healing_db import HealingDB
from skillheal.routing.catalog import ModelCatalog
from skillheal.routing.executor import CallAttempt, FailureReason


@pytest.fixture
def temp_db():
    """Path of a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name
    yield db_path
    for path in (db_path, db_path + "-wal", db_path + "-shm"):
        if os.path.exists(path):
            os.unlink(path)


@pytest.fixture
async def healing_db(temp_db):
    """Initialized HealingDB on a temporary file."""
    db = HealingDB(temp_db)
    await db.init()
    yield db
    await db.close()


@pytest.fixture
def catalog():
    return ModelCatalog.default()


class ScriptedExecutor:
    """Stands in for CallExecutor: answers per model id from a script.

    ``script`` maps model id to either a string (success with that content)
    or a FailureReason (failure). Unscripted models fail with a transport error.
    """

    def __init__(self, script=None, tokens=(100, 50)):
        self.script = dict(script or {})
        self.tokens = tokens
        self.calls = []

    async def execute(self, model_id, messages, options=None):
        self.calls.append(model_id)
        outcome = self.script.get(model_id, FailureReason.TRANSPORT_ERROR)
        if isinstance(outcome, FailureReason):
            return CallAttempt(
                model_id=model_id,
                messages=list(messages),
                reason=outcome,
                status_code=503 if outcome == FailureReason.PROVIDER_ERROR else None,
                error=f"scripted {outcome.value}",
            )
        return CallAttempt(
            model_id=model_id,
            messages=list(messages),
            content=outcome,
            input_tokens=self.tokens[0],
            output_tokens=self.tokens[1],
            cost=0.001,
        )


@pytest.fixture
def scripted_executor():
    return ScriptedExecutor
