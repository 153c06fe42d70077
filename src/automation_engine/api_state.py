"""Shared mutable state for API modules.

Route modules import this *module* so they see the engine installed by
``create_app``:

    from automation_engine import api_state as state
    state.engine.get_run(run_id)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from slowapi import Limiter
from slowapi.util import get_remote_address

if TYPE_CHECKING:
    from automation_engine.engine import AutomationEngine

limiter = Limiter(key_func=get_remote_address)

engine: AutomationEngine | None = None
