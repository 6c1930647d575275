"""Rule surfacing the drop detector's combined verdict."""

from __future__ import annotations

from velocity.detector import combined_intervention
from velocity.models import Intervention
from velocity.rules.base import SuggestionContext, SuggestionRule


class DetectorRule(SuggestionRule):
    """Fires SWITCH_TASK on an error spike, else TAKE_BREAK on a sustained drop."""

    def evaluate(self, context: SuggestionContext) -> list[Intervention]:
        intervention = combined_intervention(context.drop_check, context.error_check)
        return [intervention] if intervention is not None else []
