"""Cascade and loop protection across chained rule executions.

A chain starts at an event that no rule produced. Every run carries the
chain it belongs to in ``chain_metadata``; while the executor drives that run
the chain is installed in a context variable, so events emitted by its
actions are dispatched one level deeper.
"""

from __future__ import annotations

import logging
from collections.abc import Generator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any

from automation_engine.models import Event, Rule

logger = logging.getLogger(__name__)

MAX_CHAIN_DEPTH = 3
MAX_RULES_PER_CHAIN = 10


@dataclass
class ChainState:
    depth: int = 0
    executed_rule_ids: list[str] = field(default_factory=list)
    origin_event_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "depth": self.depth,
            "executed_rule_ids": list(self.executed_rule_ids),
            "origin_event_id": self.origin_event_id,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> ChainState:
        data = data or {}
        return cls(
            depth=int(data.get("depth") or 0),
            executed_rule_ids=list(data.get("executed_rule_ids") or []),
            origin_event_id=data.get("origin_event_id"),
        )


_current_chain: ContextVar[ChainState | None] = ContextVar("automation_chain", default=None)


class AutomationChain:
    """Decides whether a rule may run within the current chain."""

    def __init__(
        self,
        max_depth: int = MAX_CHAIN_DEPTH,
        max_rules: int = MAX_RULES_PER_CHAIN,
    ):
        self.max_depth = max_depth
        self.max_rules = max_rules

    def current(self) -> ChainState | None:
        """The chain installed by an executing run, if any."""
        return _current_chain.get()

    def begin(self, event: Event | None = None) -> ChainState:
        """Working chain for one dispatch pass.

        Returns a copy, so recording rules during the pass never leaks into
        the installed chain.
        """
        installed = _current_chain.get()
        if installed is None:
            return ChainState(origin_event_id=event.id if event else None)
        return ChainState.from_dict(installed.to_dict())

    def can_execute(self, chain: ChainState, rule: Rule) -> bool:
        if chain.depth >= self.max_depth:
            logger.info(
                f"Chain depth limit reached ({chain.depth} >= {self.max_depth}) for rule {rule.id}"
            )
            return False

        if rule.id in chain.executed_rule_ids:
            logger.info(f"Loop detected: rule {rule.id} already executed in this chain")
            return False

        if len(chain.executed_rule_ids) >= self.max_rules:
            logger.info(
                f"Max rules per chain reached "
                f"({len(chain.executed_rule_ids)} >= {self.max_rules}) for rule {rule.id}"
            )
            return False

        return True

    def record(self, chain: ChainState, rule: Rule) -> dict[str, Any]:
        """Record ``rule`` in the chain and return the metadata for its run."""
        chain.executed_rule_ids.append(rule.id)
        return {
            "depth": chain.depth + 1,
            "executed_rule_ids": list(chain.executed_rule_ids),
            "origin_event_id": chain.origin_event_id,
        }

    @contextmanager
    def restored(self, chain_metadata: dict[str, Any] | None) -> Generator[ChainState, None, None]:
        """Install a run's chain for the duration of its execution."""
        state = ChainState.from_dict(chain_metadata)
        token = _current_chain.set(state)
        try:
            yield state
        finally:
            _current_chain.reset(token)
