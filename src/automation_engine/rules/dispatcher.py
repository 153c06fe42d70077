"""Match events against enabled rules and enqueue runs."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from automation_engine.collaborators import MentionResolver
from automation_engine.models import Event, Rule, Run, TriggerSource
from automation_engine.utils import utc_now

from . import mentions
from .chain import AutomationChain, ChainState
from .conditions import evaluate_all

if TYPE_CHECKING:
    from automation_engine.stores import RuleStore, RunStore, UserDirectory

logger = logging.getLogger(__name__)


class Dispatcher:
    """Creates one pending run per matching rule.

    Rules are skipped silently when the event's actor is the rule's own
    agent, when the mention filter or conditions do not pass, when chain
    protection refuses the rule, or when the rule is rate limited.
    """

    def __init__(
        self,
        rules: RuleStore,
        runs: RunStore,
        users: UserDirectory,
        resolver: MentionResolver | None = None,
        chain: AutomationChain | None = None,
        agent_rule_max_runs: int = 3,
        general_rule_max_runs: int = 10,
        rate_window_seconds: int = 60,
        enqueue_run: Callable[[str], Any] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.rules = rules
        self.runs = runs
        self.users = users
        self.resolver = resolver or users
        self.chain = chain or AutomationChain()
        self.agent_rule_max_runs = agent_rule_max_runs
        self.general_rule_max_runs = general_rule_max_runs
        self.rate_window_seconds = rate_window_seconds
        self.enqueue_run = enqueue_run
        self.clock = clock

    def dispatch(self, event: Event) -> list[Run]:
        """Create and enqueue a run for every rule the event triggers."""
        candidates = self.rules.enabled_event_rules(
            event.tenant_id, event.event_type, event.studio_id
        )
        if not candidates:
            return []

        chain = self.chain.begin(event)
        created: list[Run] = []
        for rule in candidates:
            try:
                run = self._dispatch_rule(rule, event, chain)
            except Exception as e:
                logger.error(f"Failed to dispatch rule {rule.id} for event {event.id}: {e}")
                continue
            if run is not None:
                created.append(run)

        if created:
            logger.info(
                f"Event {event.id} ({event.event_type}) triggered {len(created)} rule(s)",
                extra={"event_id": event.id, "tenant_id": event.tenant_id},
            )
        if self.enqueue_run is not None:
            for run in created:
                self.enqueue_run(run.id)
        return created

    def matches_rule(self, rule: Rule, event: Event) -> bool:
        if rule.target_agent_id and event.actor and event.actor.id == rule.target_agent_id:
            return False

        if rule.mention_filter:
            agent = self.users.get_agent(rule.target_agent_id) if rule.target_agent_id else None
            if not mentions.matches(event, agent, rule.mention_filter, self.resolver):
                return False

        return evaluate_all(rule.conditions, event)

    def is_rate_limited(self, rule: Rule) -> bool:
        ceiling = self.agent_rule_max_runs if rule.is_agent_rule else self.general_rule_max_runs
        since = None
        if self.rate_window_seconds > 0:
            since = self.clock() - timedelta(seconds=self.rate_window_seconds)

        recent = self.runs.count_recent(rule.id, since)
        if recent >= ceiling:
            logger.info(
                f"Rate limiting rule {rule.id} ({recent} runs, limit: {ceiling})",
                extra={"rule_id": rule.id},
            )
            return True
        return False

    def _dispatch_rule(self, rule: Rule, event: Event, chain: ChainState) -> Run | None:
        if not self.matches_rule(rule, event):
            return None
        if not self.chain.can_execute(chain, rule):
            return None

        # Rate-limited rules still count toward the chain
        chain_metadata = self.chain.record(chain, rule)
        if self.is_rate_limited(rule):
            return None

        run = Run(
            rule_id=rule.id,
            tenant_id=event.tenant_id,
            studio_id=event.studio_id,
            triggered_by_event_id=event.id,
            trigger_source=TriggerSource.EVENT,
            trigger_data={
                "event_type": event.event_type,
                "event_id": event.id,
                "actor_id": event.actor.id if event.actor else None,
                "subject_type": event.subject.kind if event.subject else None,
                "subject_id": event.subject.id if event.subject else None,
            },
            chain_metadata=chain_metadata,
            created_at=self.clock(),
        )
        return self.runs.create(run)
