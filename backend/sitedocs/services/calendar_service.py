from dataclasses import dataclass
from datetime import date, timedelta

from icalendar import Alarm, Calendar, Event


@dataclass(frozen=True)
class Deadline:
    code: str
    title: str
    due_date: str
    status: str
    notes: str | None = None
    is_required: bool = True


def _deadline_event(deadline: Deadline, principal_id: str) -> Event:
    event = Event()
    summary = f"Due: {deadline.title}"
    if not deadline.is_required:
        summary += " (optional)"
    event.add("summary", summary)
    event.add("uid", f"{principal_id}-{deadline.code}@sitedocs")

    day = date.fromisoformat(deadline.due_date)
    event.add("dtstart", day)
    event.add("dtend", day + timedelta(days=1))

    description_parts = [f"Status: {deadline.status}"]
    if deadline.notes:
        description_parts.append(f"Notes: {deadline.notes}")
    event.add("description", "\n".join(description_parts))

    # Reminders: 7 days, 2 days, morning of
    for delta in [timedelta(days=7), timedelta(days=2), timedelta(hours=0)]:
        alarm = Alarm()
        alarm.add("action", "DISPLAY")
        alarm.add("trigger", -delta)
        alarm.add("description", f"Document due: {deadline.title}")
        event.add_component(alarm)
    return event


def generate_deadlines_ics(principal_id: str, deadlines: list[Deadline]) -> bytes:
    cal = Calendar()
    cal.add("prodid", "-//SiteDocs//EN")
    cal.add("version", "2.0")
    for deadline in sorted(deadlines, key=lambda d: (d.due_date, d.code)):
        cal.add_component(_deadline_event(deadline, principal_id))
    return cal.to_ical()
