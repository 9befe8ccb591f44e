"""
Recurring allocation patterns and lazy instance generation.

Occurrence dates come from dateutil's rrule:

- weekly: every `interval` weeks on one weekday, starting with the first such
  weekday on or after the template anchor;
- monthly/date: day N of every `interval`-th month; months without day N are
  skipped (rrule never clamps BYMONTHDAY);
- monthly/weekday: the k-th given weekday of every `interval`-th month.

Coverage windows are half-open: `ensure covered through H` guarantees an
instance for every occurrence on or after the anchor and strictly before H.
"""

from __future__ import annotations

import datetime as _dt
import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable

from dateutil.rrule import FR, MO, MONTHLY, SA, SU, TH, TU, WE, WEEKLY, rrule

from .allocation_models import PlainMilestone, RecurringInstance, RecurringPattern, RecurringTemplate
from .dates import add_days, days_between
from .errors import PatternValidationError
from .records import occurrence_from_name
from .settings import DEFAULT_SETTINGS, EngineSettings

logger = logging.getLogger(__name__)

# Indexed by day-of-week number, 0 = Sunday.
RRULE_WEEKDAYS = (SU, MO, TU, WE, TH, FR, SA)
DAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")
WEEK_NAMES = ("1st", "2nd", "3rd", "4th")


@dataclass(frozen=True)
class PatternValidation:
    errors: tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors


class CoverageStatus(str, Enum):
    NONE = "none"
    PARTIAL = "partial"
    COVERED = "covered"


@dataclass(frozen=True)
class CoverageState:
    """Where a template's generated instances currently reach."""

    status: CoverageStatus
    covered_through: _dt.date | None = None
    instance_count: int = 0


def day_of_week(value: _dt.date) -> int:
    """Day-of-week number with 0 = Sunday."""
    return (value.weekday() + 1) % 7


def validate_pattern(pattern: RecurringPattern, time_allocation: float | None = None) -> PatternValidation:
    """Collect every problem with a pattern instead of stopping at the first."""

    errors: list[str] = []
    if pattern.recurring_type not in ("weekly", "monthly"):
        errors.append(f"Invalid recurrence type: {pattern.recurring_type!r}; must be weekly or monthly")
    if not isinstance(pattern.interval, int) or pattern.interval < 1:
        errors.append("Recurrence interval must be at least 1")

    if pattern.recurring_type == "weekly":
        if pattern.weekly_day_of_week is None:
            errors.append("Weekly recurrence must specify a day of week (0-6)")
        elif not 0 <= pattern.weekly_day_of_week <= 6:
            errors.append("Weekly day of week must be between 0 (Sunday) and 6 (Saturday)")

    if pattern.recurring_type == "monthly":
        if pattern.monthly_pattern is None:
            errors.append("Monthly recurrence must specify a pattern (date or weekday)")
        elif pattern.monthly_pattern == "date":
            if pattern.monthly_date is None:
                errors.append("Monthly date pattern must specify a date (1-31)")
            elif not 1 <= pattern.monthly_date <= 31:
                errors.append("Monthly date must be between 1 and 31")
        elif pattern.monthly_pattern == "weekday":
            if pattern.monthly_week_of_month is None or pattern.monthly_day_of_week is None:
                errors.append("Monthly weekday pattern must specify week of month and day of week")
            else:
                if not 1 <= pattern.monthly_week_of_month <= 4:
                    errors.append("Monthly week of month must be between 1 and 4")
                if not 0 <= pattern.monthly_day_of_week <= 6:
                    errors.append("Monthly day of week must be between 0 (Sunday) and 6 (Saturday)")
        else:
            errors.append(f"Invalid monthly pattern: {pattern.monthly_pattern!r}; must be date or weekday")

    if time_allocation is not None and time_allocation < 0:
        errors.append("Hours per occurrence must not be negative")

    return PatternValidation(tuple(errors))


def require_valid_pattern(pattern: RecurringPattern, time_allocation: float | None = None) -> None:
    validation = validate_pattern(pattern, time_allocation)
    if not validation.is_valid:
        raise PatternValidationError(validation.errors)


def _build_rule(pattern: RecurringPattern, anchor: _dt.date, until: _dt.date) -> rrule:
    until_dt = _dt.datetime.combine(until, _dt.time())
    if pattern.recurring_type == "weekly":
        first = add_days(anchor, (pattern.weekly_day_of_week - day_of_week(anchor)) % 7)
        return rrule(WEEKLY, interval=pattern.interval, dtstart=_dt.datetime.combine(first, _dt.time()), until=until_dt)

    dtstart = _dt.datetime.combine(anchor, _dt.time())
    if pattern.monthly_pattern == "date":
        return rrule(MONTHLY, interval=pattern.interval, dtstart=dtstart, bymonthday=pattern.monthly_date, until=until_dt)
    weekday = RRULE_WEEKDAYS[pattern.monthly_day_of_week](pattern.monthly_week_of_month)
    return rrule(MONTHLY, interval=pattern.interval, dtstart=dtstart, byweekday=weekday, until=until_dt)


def occurrence_dates(
    pattern: RecurringPattern,
    anchor: _dt.date,
    horizon: _dt.date,
    limit: int | None = None,
) -> list[_dt.date]:
    """Occurrence dates in [anchor, horizon), at most `limit` of them."""

    require_valid_pattern(pattern)
    if horizon <= anchor:
        return []
    rule = _build_rule(pattern, anchor, add_days(horizon, -1))
    return [occurrence.date() for occurrence in itertools.islice(rule, limit)]


def instance_name(template: RecurringTemplate, occurrence: int) -> str:
    return f"{template.name} {occurrence}"


class RecurringGenerator:
    """
    Lazily extends a template's instances up to a requested horizon.

    Coverage already reached is remembered per template, so repeated calls
    with a covered horizon return immediately without computing occurrences.
    """

    def __init__(self, settings: EngineSettings = DEFAULT_SETTINGS):
        self.settings = settings
        self._covered_through: dict[str, _dt.date] = {}

    def coverage_state(self, template: RecurringTemplate, instances: Iterable[RecurringInstance]) -> CoverageState:
        own = self._own_instances(template, instances)
        covered = self._covered_through.get(self._key(template))
        if covered is not None:
            return CoverageState(CoverageStatus.COVERED, covered, len(own))
        if not own:
            return CoverageState(CoverageStatus.NONE, None, 0)
        return CoverageState(CoverageStatus.PARTIAL, max(i.due_date for i in own), len(own))

    def plan_coverage(
        self,
        template: RecurringTemplate,
        instances: Iterable[RecurringInstance],
        horizon: _dt.date,
    ) -> list[RecurringInstance]:
        """
        Return the instances that must be created so every occurrence before
        `horizon` exists. Existing occurrence dates are never duplicated and
        new instances are numbered by their position in the full series.
        """

        key = self._key(template)
        covered = self._covered_through.get(key)
        if covered is not None and horizon <= covered:
            logger.debug("template %s already covered through %s", key, covered)
            return []

        own = self._own_instances(template, instances)
        limit = self.settings.max_recurring_instances
        dates = occurrence_dates(template.pattern, template.anchor_date, horizon, limit=limit)
        if len(dates) >= limit:
            logger.warning("template %s reached the %d instance limit before %s", key, limit, horizon)

        existing_dates = {i.due_date for i in own}
        missing = [
            RecurringInstance(
                project_id=template.project_id,
                name=instance_name(template, number),
                due_date=occurrence,
                time_allocation=template.time_allocation,
                template_id=template.id,
                occurrence=number,
            )
            for number, occurrence in enumerate(dates, start=1)
            if occurrence not in existing_dates
        ]
        room = max(limit - len(own), 0)
        if len(missing) > room:
            logger.warning("template %s: dropping %d instance(s) over the limit", key, len(missing) - room)
            missing = missing[:room]

        if not missing:
            self.mark_covered(template, horizon)
        logger.debug("template %s: %d instance(s) missing before %s", key, len(missing), horizon)
        return missing

    def mark_covered(self, template: RecurringTemplate, horizon: _dt.date) -> None:
        key = self._key(template)
        current = self._covered_through.get(key)
        if current is None or horizon > current:
            self._covered_through[key] = horizon

    def forget(self, template: RecurringTemplate | str) -> None:
        key = template if isinstance(template, str) else self._key(template)
        self._covered_through.pop(key, None)

    @staticmethod
    def _key(template: RecurringTemplate) -> str:
        return template.id or f"{template.project_id}:{template.name}"

    @staticmethod
    def _own_instances(template: RecurringTemplate, instances: Iterable[RecurringInstance]) -> list[RecurringInstance]:
        return [i for i in instances if i.template_id is None or i.template_id == template.id]


def describe_pattern(pattern: RecurringPattern) -> str:
    """Human-readable summary, e.g. 'Every 2 weeks on Monday'."""

    interval = pattern.interval
    count = "" if interval == 1 else f"{interval} "
    plural = "s" if interval > 1 else ""

    if pattern.recurring_type == "weekly":
        day = DAY_NAMES[pattern.weekly_day_of_week] if pattern.weekly_day_of_week is not None else "week"
        return f"Every {count}week{plural} on {day}"

    if pattern.monthly_pattern == "date" and pattern.monthly_date:
        return f"Every {count}month{plural} on the {pattern.monthly_date}{_ordinal_suffix(pattern.monthly_date)}"
    if (
        pattern.monthly_pattern == "weekday"
        and pattern.monthly_week_of_month is not None
        and pattern.monthly_day_of_week is not None
    ):
        week = WEEK_NAMES[pattern.monthly_week_of_month - 1]
        return f"Every {count}month{plural} on the {week} {DAY_NAMES[pattern.monthly_day_of_week]}"
    return f"Every {count}month{plural}"


def _ordinal_suffix(num: int) -> str:
    if num % 10 == 1 and num % 100 != 11:
        return "st"
    if num % 10 == 2 and num % 100 != 12:
        return "nd"
    if num % 10 == 3 and num % 100 != 13:
        return "rd"
    return "th"


def estimate_occurrence_count(pattern: RecurringPattern, duration_days: int) -> int:
    """Cheap estimate without generating dates (30-day months)."""

    period = 7 if pattern.recurring_type == "weekly" else 30
    return max(duration_days, 0) // (period * max(pattern.interval, 1))


@dataclass
class LegacySeries:
    """Template rebuilt from numbered milestones written before templates existed."""

    template: RecurringTemplate
    instances: list[RecurringInstance] = field(default_factory=list)


def detect_legacy_template(milestones: Iterable[PlainMilestone]) -> LegacySeries | None:
    """
    Rebuild a template from plain milestones named '<name> <n>'.

    The recurrence is inferred from the first two dates: multiples of seven
    days are weekly, roughly 30-day steps are monthly on the first date's day.
    A single numbered milestone is treated as weekly.
    """

    numbered = sorted(
        (m for m in milestones if occurrence_from_name(m.name) is not None),
        key=lambda m: m.due_date,
    )
    if not numbered:
        return None

    first = numbered[0]
    pattern = RecurringPattern.weekly(day_of_week(first.due_date))
    if len(numbered) > 1:
        step = days_between(first.due_date, numbered[1].due_date)
        if step > 0 and step % 7 == 0:
            pattern = RecurringPattern.weekly(day_of_week(first.due_date), interval=step // 7)
        elif step >= 28:
            pattern = RecurringPattern.monthly_on_date(first.due_date.day, interval=max(round(step / 30), 1))

    base_name = first.name[: -len(str(occurrence_from_name(first.name)))].rstrip() or "Recurring allocation"
    template = RecurringTemplate(
        project_id=first.project_id,
        name=base_name,
        time_allocation=first.time_allocation,
        pattern=pattern,
        anchor_date=first.due_date,
    )
    instances = [
        RecurringInstance(
            id=m.id,
            project_id=m.project_id,
            name=m.name,
            due_date=m.due_date,
            time_allocation=m.time_allocation,
            occurrence=occurrence_from_name(m.name),
        )
        for m in numbered
    ]
    logger.info("rebuilt legacy recurring series '%s' from %d milestone(s)", base_name, len(instances))
    return LegacySeries(template=template, instances=instances)
