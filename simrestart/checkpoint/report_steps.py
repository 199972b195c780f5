"""Parsing of report-step dataset names.

Names are parsed like C ``atoi``: leading whitespace is skipped, an
optional sign is accepted, then the longest run of decimal digits is read.
A name with no leading digits parses as 0. Names never raise; callers that
want to reject odd names use the ``parsed`` flag of :func:`parse_entry`.
"""

import re
from typing import Iterable, List

from .models import NO_REPORT_STEP, ReportStepEntry

_PREFIX = re.compile(r"[ \t\n\v\f\r]*([+-]?[0-9]+)")
_STRICT = re.compile(r"[0-9]+")


def parse_report_step(name: str) -> int:
    """Best-effort numeric prefix of a dataset name (0 when there is none)."""
    match = _PREFIX.match(name)
    if match is None:
        return 0
    return int(match.group(1))


def parse_entry(name: str) -> ReportStepEntry:
    return ReportStepEntry(
        name=name,
        step=parse_report_step(name),
        parsed=_STRICT.fullmatch(name) is not None,
    )


def last_step(names: Iterable[str]) -> int:
    """Largest parsed step, or ``NO_REPORT_STEP`` when there are no names.

    Steps below ``NO_REPORT_STEP`` never win, so negative names are ignored.
    """
    return max([NO_REPORT_STEP, *(parse_report_step(n) for n in names)])


def sorted_steps(names: Iterable[str]) -> List[int]:
    return sorted(parse_report_step(n) for n in names)
