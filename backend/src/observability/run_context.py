"""Run ID management for log correlation.

Every retention cycle and partition rotation carries a run ID. It is stored in
a context variable so log records emitted anywhere below the run can be
correlated without threading the ID through every call.
"""

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Generator, Optional

run_id_var: ContextVar[Optional[str]] = ContextVar("run_id", default=None)


def generate_run_id() -> str:
    """Generate a new unique run ID (UUID v4)."""
    return str(uuid.uuid4())


def get_run_id() -> str:
    """Get current run ID from context, or "no-run-id" if not set."""
    return run_id_var.get() or "no-run-id"


@contextmanager
def bind_run_id(run_id: str) -> Generator[str, None, None]:
    """Bind ``run_id`` to the current context for the duration of the block."""
    token = run_id_var.set(run_id)
    try:
        yield run_id
    finally:
        run_id_var.reset(token)
