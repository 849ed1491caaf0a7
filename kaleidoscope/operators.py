"""
Kaleidoscope - Operator Table
Binary operator precedences and the set of user-defined unary operators,
shared by every unit parsed in one session.
"""

from contextlib import contextmanager
from typing import Dict, Set

# Built-in binary operators. '=' is assignment to a var/for/parameter slot.
BUILTIN_PRECEDENCE = {
    '=': 2,
    '<': 10,
    '+': 20,
    '-': 20,
    '*': 40,
}

DEFAULT_BINARY_PRECEDENCE = 30
MAX_PRECEDENCE = 100


class OperatorTable:
    def __init__(self):
        self._precedence: Dict[str, int] = dict(BUILTIN_PRECEDENCE)
        self._unary: Set[str] = set()

    def precedence(self, op: str) -> int:
        """Binding strength of a binary operator, or -1 if it is not one."""
        return self._precedence.get(op, -1)

    def is_binary(self, op: str) -> bool:
        return op in self._precedence

    def is_unary(self, op: str) -> bool:
        return op in self._unary

    def add_binary(self, op: str, precedence: int) -> None:
        if precedence <= 0:
            raise ValueError(f"Operator precedence must be positive, got {precedence}")
        self._precedence[op] = precedence

    def add_unary(self, op: str) -> None:
        self._unary.add(op)

    @contextmanager
    def transaction(self):
        """Undo every registration made inside the block if it raises."""
        saved_precedence = dict(self._precedence)
        saved_unary = set(self._unary)
        try:
            yield self
        except BaseException:
            self._precedence = saved_precedence
            self._unary = saved_unary
            raise

    def __contains__(self, op: str) -> bool:
        return op in self._precedence or op in self._unary
