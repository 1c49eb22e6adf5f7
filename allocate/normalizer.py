"""
Scale a day's provisional hours so they sum to exactly the target, in quarter hours.
"""
import math
from typing import List

from normalize.models import TimesheetDay, TimesheetEntry

QUANTUM = 0.25
TARGET_HOURS = 8.0


def quantize(hours: float) -> float:
    """Nearest multiple of 0.25, halves rounded up (2.125 -> 2.25)."""
    return math.floor(hours / QUANTUM + 0.5) * QUANTUM


def quantize_entry_hours(hours: float) -> float:
    return max(QUANTUM, quantize(hours))


def _by_size(entries: List[TimesheetEntry]) -> List[TimesheetEntry]:
    # sorted() is stable, so the first entry wins among equal hours
    return sorted(entries, key=lambda e: -e.hours)


def _absorb(entries: List[TimesheetEntry], diff: float) -> float:
    """Apply diff to the largest entries in turn; returns what could not be applied."""
    for entry in _by_size(entries):
        if abs(diff) < QUANTUM:
            break
        new_hours = max(QUANTUM, entry.hours + diff)
        diff -= new_hours - entry.hours
        entry.hours = new_hours
    return diff


def normalize_day(day: TimesheetDay, target: float = TARGET_HOURS) -> TimesheetDay:
    """
    Rescale day.entries in place so total_hours == target.

    Every entry is scaled by target / total and quantized (minimum 0.25). The residual goes to
    the largest entry not flagged as a fixed meeting; if flooring stops one entry from taking
    all of it, the next largest takes the rest. When every entry is a fixed meeting they all
    become adjustable. Days without entries are returned unchanged.
    """
    if not day.entries:
        return day
    total = day.total_hours
    if total <= 0:
        return day

    factor = target / total
    for entry in day.entries:
        entry.hours = quantize_entry_hours(entry.hours * factor)

    diff = quantize(target - day.total_hours)
    if abs(diff) >= QUANTUM:
        adjustable = [e for e in day.entries if not e.is_fixed_meeting] or list(day.entries)
        _absorb(adjustable, diff)
    return day
