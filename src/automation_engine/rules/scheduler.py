"""Cron evaluation for schedule-triggered rules."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from apscheduler.triggers.cron import CronTrigger

from automation_engine.models import Rule, Run, TriggerSource
from automation_engine.utils import to_iso, utc_now

from .chain import AutomationChain

if TYPE_CHECKING:
    from automation_engine.stores import RuleStore, RunStore

logger = logging.getLogger(__name__)


def minute_start(moment: datetime) -> datetime:
    return moment.replace(second=0, microsecond=0)


def build_trigger(rule: Rule) -> CronTrigger:
    """Parse the rule's crontab expression in the rule's timezone.

    Raises:
        ValueError: If the expression or timezone is invalid.
    """
    if not rule.cron:
        raise ValueError("Schedule rule has no cron expression")
    try:
        return CronTrigger.from_crontab(rule.cron, timezone=rule.timezone)
    except KeyError as e:
        # Unknown zone names raise KeyError subclasses
        raise ValueError(f"Unknown timezone {rule.timezone!r} for rule {rule.id}") from e


def fires_at(rule: Rule, slot: datetime) -> bool:
    """True if the rule's cron expression fires at the start of ``slot``'s minute."""
    trigger = build_trigger(rule)
    slot = minute_start(slot)
    local_slot = slot.astimezone(trigger.timezone)
    next_fire = trigger.get_next_fire_time(None, local_slot)
    return next_fire is not None and next_fire == slot


class ScheduleRunner:
    """Creates schedule runs for rules whose cron fires this minute."""

    def __init__(
        self,
        rules: RuleStore,
        runs: RunStore,
        chain: AutomationChain | None = None,
        enqueue_run: Callable[[str], Any] | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.rules = rules
        self.runs = runs
        self.chain = chain or AutomationChain()
        self.enqueue_run = enqueue_run
        self.clock = clock

    def tick(self, now: datetime | None = None) -> list[Run]:
        """Evaluate every enabled schedule rule once for the current minute.

        A rule fires at most once per minute even if ticks overlap, because
        the slot is claimed by stamping ``last_executed_at`` first.
        """
        now = now or self.clock()
        slot = minute_start(now)
        created: list[Run] = []

        for rule in self.rules.enabled_schedule_rules():
            try:
                if not fires_at(rule, slot):
                    continue
                if not self.rules.claim_schedule_slot(rule.id, slot, now):
                    logger.debug(f"Rule {rule.id} already ran this minute")
                    continue
                created.append(self._create_run(rule, slot, now))
            except Exception as e:
                logger.error(f"Failed to process schedule rule {rule.id}: {e}")

        if self.enqueue_run is not None:
            for run in created:
                self.enqueue_run(run.id)
        return created

    def next_fire_time(self, rule: Rule, after: datetime | None = None) -> datetime | None:
        trigger = build_trigger(rule)
        after = (after or self.clock()) + timedelta(seconds=1)
        return trigger.get_next_fire_time(None, after.astimezone(trigger.timezone))

    def _create_run(self, rule: Rule, slot: datetime, now: datetime) -> Run:
        chain_metadata = self.chain.record(self.chain.begin(), rule)
        run = Run(
            rule_id=rule.id,
            tenant_id=rule.tenant_id,
            studio_id=rule.studio_id,
            trigger_source=TriggerSource.SCHEDULE,
            trigger_data={"scheduled_at": to_iso(slot)},
            chain_metadata=chain_metadata,
            created_at=now,
        )
        self.runs.create(run)
        logger.info(f"Queued schedule run for rule {rule.id} ({rule.name})")
        return run
