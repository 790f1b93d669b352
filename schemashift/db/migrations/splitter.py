"""Split a SQL block into individually executable statements.

A line-oriented scan: standalone statements end at a line whose trimmed
text ends with ``;``. A ``BEGIN;`` line opens a transaction block that is
kept together, including every semicolon inside it, until the matching
``COMMIT;`` or ``ROLLBACK;`` line.
"""

from enum import Enum

BEGIN_MARKER = "BEGIN;"
END_MARKERS = ("COMMIT;", "ROLLBACK;")


class SplitState(str, Enum):
    """State of the splitter scan."""

    NORMAL = "normal"
    IN_TRANSACTION_BLOCK = "in_transaction_block"


def split_statements(sql: str) -> list[str]:
    """Split cleaned SQL text into statements.

    Args:
        sql: SQL block with meta-commands already stripped

    Returns:
        Ordered, non-empty, trimmed statements. A ``BEGIN;`` ... ``COMMIT;``
        span is always returned as a single statement.

    Examples:
        >>> split_statements("CREATE TABLE a (id int);\\nDROP TABLE b;")
        ['CREATE TABLE a (id int);', 'DROP TABLE b;']
    """
    statements: list[str] = []
    current = ""
    state = SplitState.NORMAL

    def flush() -> None:
        nonlocal current
        statements.append(current.strip())
        current = ""

    for line in sql.split("\n"):
        marker = line.strip().upper()

        if marker == BEGIN_MARKER:
            current += line + "\n"
            state = SplitState.IN_TRANSACTION_BLOCK
        elif marker in END_MARKERS:
            current += line + "\n"
            if state == SplitState.IN_TRANSACTION_BLOCK:
                flush()
                state = SplitState.NORMAL
        elif marker.endswith(";") and state == SplitState.NORMAL:
            current += line
            flush()
        else:
            current += line + "\n"

    # Trailing statement without a terminator
    if current.strip():
        flush()

    return [stmt for stmt in statements if stmt.strip()]
