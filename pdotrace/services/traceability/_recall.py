from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ...errors import InvalidStatusForRecall, RecallWindowExpired, Unauthorized
from ...models import TreatmentStatus, VirtualCodeStatus
from ...rules import TraceabilityRules
from ...utils.error_messages import ErrorMessages as EM
from ...utils.timezone_utils import TimezoneUtils


@dataclass(frozen=True)
class RecallEligibility:
    """Whether a treatment can still be recalled, and for how long."""
    treatment_id: int
    eligible: bool
    deadline: datetime
    remaining: timedelta
    reason: Optional[str] = None


class RecallEligibilityChecker:
    """Role, ownership, status and time gate for recalling a treatment."""

    def __init__(self, rules: TraceabilityRules, clock=None):
        self.rules = rules
        self._clock = clock or TimezoneUtils.utc_now

    @property
    def window(self) -> timedelta:
        return timedelta(hours=self.rules.recall_window_hours)

    def deadline_for(self, treatment) -> datetime:
        return TimezoneUtils.ensure_timezone_aware(treatment.treatment_date) + self.window

    def check(self, hospital, treatment) -> None:
        """Raise the first failing condition; return None when the recall may proceed."""
        if hospital.role not in self.rules.recall_roles:
            expected = "/".join(sorted(role.value for role in self.rules.recall_roles))
            raise Unauthorized(EM.ROLE_REQUIRED.format(role=expected, org_id=hospital.id, actual=hospital.role.value))
        if treatment.organization_id != hospital.id:
            raise Unauthorized(
                EM.NOT_RECORD_OWNER.format(org_id=hospital.id, entity="TreatmentRecord", entity_id=treatment.id)
            )
        if treatment.status != TreatmentStatus.COMPLETED or any(
            code.status != VirtualCodeStatus.USED for code in treatment.codes
        ):
            raise InvalidStatusForRecall(EM.RECALL_STATUS_INVALID.format(treatment_id=treatment.id))

        elapsed = TimezoneUtils.elapsed_since(treatment.treatment_date, self._clock())
        if elapsed > self.window:
            raise RecallWindowExpired(
                EM.RECALL_WINDOW_EXPIRED.format(hours=self.rules.recall_window_hours, treatment_id=treatment.id),
                details={"treatment_id": treatment.id, "elapsed_seconds": int(elapsed.total_seconds())},
            )

    def eligibility(self, hospital, treatment) -> RecallEligibility:
        deadline = self.deadline_for(treatment)
        remaining = max(deadline - TimezoneUtils.ensure_timezone_aware(self._clock()), timedelta(0))
        try:
            self.check(hospital, treatment)
        except (Unauthorized, InvalidStatusForRecall, RecallWindowExpired) as exc:
            return RecallEligibility(treatment.id, False, deadline, remaining, exc.code)
        return RecallEligibility(treatment.id, True, deadline, remaining)
