"""Dialect-specific bits of sql generation.

the two stores disagree on placeholders ($1 vs ?), on how dates are bound
and on case-insensitive matching. everything else the builders emit is
plain ansi-ish sql shared by both.
"""

from datetime import date

from drillforge.models.catalog import Dialect


class Placeholders:
    """Numbers placeholders in the order they're emitted.

    values never go through here - they come from assemble_params - so the
    builders compare `count` against the param list before returning.
    """

    def __init__(self, dialect: Dialect) -> None:
        self.dialect = dialect
        self.count = 0

    def next(self) -> str:
        self.count += 1
        if self.dialect is Dialect.POSTGRES:
            return f"${self.count}"
        return "?"


def date_params(dialect: Dialect, start: date, end: date) -> list[str]:
    """The two leading params, formatted the way each store compares dates."""
    if dialect is Dialect.POSTGRES:
        return [start.isoformat(), end.isoformat()]
    # mariadb compares datetimes, so cover the whole end day
    return [f"{start.isoformat()} 00:00:00", f"{end.isoformat()} 23:59:59"]


def date_predicate(dialect: Dialect, column: str, start_ph: str, end_ph: str) -> str:
    if dialect is Dialect.POSTGRES:
        return f"{column}::date BETWEEN {start_ph}::date AND {end_ph}::date"
    return f"{column} BETWEEN {start_ph} AND {end_ph}"


def as_text(dialect: Dialect, expr: str) -> str:
    # postgres won't LOWER() or ILIKE a date or an int, mariadb coerces
    if dialect is Dialect.POSTGRES and not expr.endswith("::text"):
        return f"{expr}::text"
    return expr


def pattern_match(dialect: Dialect, expr: str, placeholder: str, negate: bool = False) -> str:
    """Case-insensitive LIKE, value already wrapped in %...%."""
    if dialect is Dialect.POSTGRES:
        op = "NOT ILIKE" if negate else "ILIKE"
        return f"{as_text(dialect, expr)} {op} {placeholder}"
    op = "NOT LIKE" if negate else "LIKE"
    return f"LOWER({expr}) {op} LOWER({placeholder})"
