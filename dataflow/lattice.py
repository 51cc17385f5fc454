"""Lattice contracts for abstract values and stores.

The engine only ever joins, compares and copies; it never looks inside a
value or a store.  Clients subclass these and supply structural equality.
Equality is ordinary ``__eq__``; the engine relies on it to detect change.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TypeVar

V = TypeVar("V", bound="AbstractValue")
S = TypeVar("S", bound="Store")


class AbstractValue(ABC):
    """An element of the value lattice attached to a node."""

    @abstractmethod
    def least_upper_bound(self: V, other: V) -> V:
        """Associative, commutative and idempotent join."""
        ...


class Store(ABC):
    """An element of the store lattice attached to a program point."""

    @abstractmethod
    def least_upper_bound(self: S, other: S) -> S:
        """Join; must return a new store and leave both operands untouched."""
        ...

    @abstractmethod
    def copy(self: S) -> S:
        """Deep copy: equal to ``self`` but independently mutable."""
        ...

    def widened_upper_bound(self: S, other: S) -> S:
        """Widening of ``self`` (the previous store) by ``other``.

        Stores of finite-height lattices leave this alone and get the join.
        """
        return self.least_upper_bound(other)

    def supports_widening(self) -> bool:
        return type(self).widened_upper_bound is not Store.widened_upper_bound
