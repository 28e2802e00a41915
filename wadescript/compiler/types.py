"""WadeScript type system.

Primitive types: int, float, bool, str, void
Compound types: T[N] (fixed array), list[T], dict[K, V], T? (optional) and
class types. ``Exception`` is the type of a name bound by ``except ... as``.

Compatibility is structural equality with one widening: an int is accepted
wherever a float is expected. Containers are compatible when their element
types are (recursively), and arrays also need matching sizes. An optional
accepts None and anything its inner type accepts.
"""

from __future__ import annotations

from dataclasses import dataclass


# ---------------------------------------------------------------------------
# Type Representations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class WadeType:
    """Base type."""

    def __str__(self) -> str:
        return "unknown"

    def is_assignable_from(self, other: WadeType) -> bool:
        return self == other


@dataclass(frozen=True)
class PrimitiveType(WadeType):
    name: str = ""

    def __str__(self) -> str:
        return self.name

    def is_assignable_from(self, other: WadeType) -> bool:
        if self == other:
            return True
        return self.name == "float" and other == INT


@dataclass(frozen=True)
class ArrayType(WadeType):
    element_type: WadeType = WadeType()
    size: int = 0

    def __str__(self) -> str:
        return f"{self.element_type}[{self.size}]"

    def is_assignable_from(self, other: WadeType) -> bool:
        if isinstance(other, ArrayType):
            return self.size == other.size and is_compatible(self.element_type, other.element_type)
        return False


@dataclass(frozen=True)
class ListType(WadeType):
    element_type: WadeType = WadeType()

    def __str__(self) -> str:
        return f"list[{self.element_type}]"

    def is_assignable_from(self, other: WadeType) -> bool:
        if isinstance(other, ListType):
            return is_compatible(self.element_type, other.element_type)
        return False


@dataclass(frozen=True)
class DictType(WadeType):
    key_type: WadeType = WadeType()
    value_type: WadeType = WadeType()

    def __str__(self) -> str:
        return f"dict[{self.key_type}, {self.value_type}]"

    def is_assignable_from(self, other: WadeType) -> bool:
        if isinstance(other, DictType):
            return (is_compatible(self.key_type, other.key_type)
                    and is_compatible(self.value_type, other.value_type))
        return False


@dataclass(frozen=True)
class OptionalType(WadeType):
    """``T?`` / ``Optional[T]``: a handle that may be None (a null pointer)."""
    inner: WadeType = WadeType()

    def __str__(self) -> str:
        return f"{self.inner}?"

    def is_assignable_from(self, other: WadeType) -> bool:
        if other == VOID:
            return True
        if isinstance(other, OptionalType):
            return is_compatible(self.inner, other.inner)
        return is_compatible(self.inner, other)


@dataclass(frozen=True)
class CustomType(WadeType):
    """A user-defined class, referenced by name."""
    name: str = ""

    def __str__(self) -> str:
        return self.name


# ---------------------------------------------------------------------------
# Built-in Types
# ---------------------------------------------------------------------------

INT = PrimitiveType("int")
FLOAT = PrimitiveType("float")
BOOL = PrimitiveType("bool")
STR = PrimitiveType("str")
VOID = PrimitiveType("void")
EXCEPTION = PrimitiveType("Exception")


def is_compatible(expected: WadeType, actual: WadeType) -> bool:
    """True if a value of type ``actual`` may be used where ``expected`` is required."""
    return expected.is_assignable_from(actual)


def is_numeric(t: WadeType) -> bool:
    return t == INT or t == FLOAT


def is_reference(t: WadeType) -> bool:
    """Types represented at runtime by a reference-counted heap handle."""
    if isinstance(t, OptionalType):
        return is_reference(t.inner)
    return isinstance(t, (ListType, DictType, CustomType))


def is_pointer(t: WadeType) -> bool:
    """Types lowered to a pointer, so None can stand for them."""
    return t == STR or t == EXCEPTION or is_reference(t) or isinstance(t, OptionalType)


def unwrap_optional(t: WadeType) -> WadeType:
    return t.inner if isinstance(t, OptionalType) else t
