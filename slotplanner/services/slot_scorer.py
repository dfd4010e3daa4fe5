"""Turns analytics into an ordered candidate slot list per demand target."""

from __future__ import annotations

from typing import Optional

from slotplanner.domain.constraints import ConstraintSet
from slotplanner.domain.models import DemandTarget, ShiftTemplate, SlotCandidate
from slotplanner.services.analytics_service import AnalyticsSnapshot
from slotplanner.utils.config import Settings, get_settings
from slotplanner.utils.logger import get_logger


logger = get_logger(__name__)


def rank_candidates(candidates: list[SlotCandidate]) -> list[SlotCandidate]:
    """Descending mean score; ties keep first-seen order."""
    return sorted(candidates, key=lambda candidate: candidate.mean_score, reverse=True)


class SlotScorer:
    def __init__(self, settings: Optional[Settings] = None) -> None:
        self._settings = settings or get_settings()

    def _synthetic(self, demand_key: str, weekday: str, time: str, title: str) -> SlotCandidate:
        return SlotCandidate(
            weekday=weekday,
            time=time,
            demand_key=demand_key,
            score=self._settings.scoring_neutral_score,
            sample_count=1,
            label=f"{weekday.title()} {time}",
            title=title,
        )

    def candidates_for(
        self,
        target: DemandTarget,
        snapshot: AnalyticsSnapshot,
        constraint_set: ConstraintSet,
    ) -> list[SlotCandidate]:
        if target.template is not None:
            return self._template_candidates(target, target.template, snapshot, constraint_set)

        historical = [
            candidate
            for candidate in snapshot.slots_for(target.demand_key)
            if constraint_set.allows_weekday(candidate.weekday)
        ]
        window_start = constraint_set.constraints.preferred_window.start
        title = historical[0].title if historical else target.demand_key.title()

        if not historical:
            synthetic = [
                self._synthetic(target.demand_key, weekday, window_start, title)
                for weekday in constraint_set.constraints.allowed_weekdays
            ]
            logger.debug(
                "No history for demand, using synthetic slots | demand_key=%s | slots=%s",
                target.demand_key,
                len(synthetic),
            )
            return synthetic

        candidates = list(historical)
        if self._settings.scoring_supplement_history_slots:
            seen = {candidate.slot_key for candidate in historical}
            for weekday in constraint_set.constraints.allowed_weekdays:
                if f"{weekday}@{window_start}" not in seen:
                    candidates.append(
                        self._synthetic(target.demand_key, weekday, window_start, title)
                    )
        return rank_candidates(candidates)

    def _template_candidates(
        self,
        target: DemandTarget,
        template: ShiftTemplate,
        snapshot: AnalyticsSnapshot,
        constraint_set: ConstraintSet,
    ) -> list[SlotCandidate]:
        # shift outcomes are usually imported under the role or the template id
        history_by_slot: dict[str, SlotCandidate] = {}
        for key in (target.demand_key, target.role, template.template_id):
            if not key:
                continue
            for candidate in snapshot.slots_for(key):
                history_by_slot.setdefault(candidate.slot_key, candidate)
        candidates: list[SlotCandidate] = []
        for weekday in template.days:
            if not constraint_set.allows_weekday(weekday):
                continue
            known = history_by_slot.get(f"{weekday}@{template.start}")
            if known is not None:
                candidates.append(
                    SlotCandidate(
                        weekday=weekday,
                        time=template.start,
                        demand_key=target.demand_key,
                        score=known.score,
                        sample_count=known.sample_count,
                        location=known.location,
                        label=known.label,
                        title=template.label,
                    )
                )
            else:
                candidates.append(
                    self._synthetic(target.demand_key, weekday, template.start, template.label)
                )
        return rank_candidates(candidates)
