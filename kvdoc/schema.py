"""
Per-kind schema descriptors.

A DocumentKind is plain data: a discriminator name, an ordered list of
attributes, the indexes over them and any extra validators. Documents read
and write attributes through generic functions that consult these tables;
nothing is generated per kind.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Sequence

from .errors import UnknownAttributeError

# Names that travel outside the attribute map
RESERVED_ATTRIBUTES = frozenset({"id", "type"})

# Kind and index names end up inside store keys, so keep them simple
_NAME_RE = re.compile(r'^[A-Za-z_][A-Za-z0-9_.]*$')


def validate_name(name: str, what: str = "name") -> None:
    """Validate a kind or index name is safe for key derivation."""
    if not name or not _NAME_RE.match(name):
        raise ValueError(
            f"Invalid {what} {name!r} (allowed: letters, digits, _, ., not starting with a digit)"
        )


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in ("true", "yes", "on", "1"):
            return True
        if lowered in ("false", "no", "off", "0", ""):
            return False
        raise ValueError(f"Cannot interpret {value!r} as a boolean")
    return bool(value)


def _to_list(value: Any) -> list:
    if isinstance(value, (str, bytes, dict)):
        return [value]
    return list(value)


# Coercion for the common attribute types; any other callable is used as-is
COERCIONS: dict[Any, Callable[[Any], Any]] = {
    str: str,
    int: int,
    float: float,
    bool: _to_bool,
    list: _to_list,
    dict: dict,
}


@dataclass(frozen=True)
class Attribute:
    """
    One declared attribute.

    Args:
        name: Attribute name (not ``id`` or ``type``)
        type: Optional coercion target; a key of COERCIONS or a callable
        default: Constant, or zero-argument callable evaluated per document
    """
    name: str
    type: Any = None
    default: Any = None

    def __post_init__(self):
        if self.name in RESERVED_ATTRIBUTES:
            raise ValueError(f"Attribute name {self.name!r} is reserved")
        if not self.name:
            raise ValueError("Attribute name must not be empty")

    def initial(self) -> Any:
        if callable(self.default):
            return self.default()
        return self.default

    def coerce(self, value: Any) -> Any:
        """Coerce a non-null value through the declared type."""
        if value is None or self.type is None:
            return value
        return COERCIONS.get(self.type, self.type)(value)

    def before_write(self, value: Any) -> Any:
        """Final adjustment applied to the stored value before each write."""
        return value


class EnumAttribute(Attribute):
    """
    An attribute restricted to a list of named choices, stored as 1-based integers.

    Assignment accepts a choice name or its number. Before every write an
    out-of-range number is reset to the default.
    """

    def __init__(self, name: str, choices: Sequence[str], default: Optional[str] = None):
        choices = tuple(str(c) for c in choices)
        if not choices:
            raise ValueError(f"Enum {name!r} needs at least one choice")
        if default is None:
            default_value = 1
        elif default in choices:
            default_value = choices.index(default) + 1
        else:
            raise ValueError(f"Unknown default value {default!r} for enum {name!r}")
        super().__init__(name, int, default_value)
        object.__setattr__(self, "choices", choices)

    def value_of(self, choice: str) -> int:
        """Number stored for a choice name."""
        try:
            return self.choices.index(choice) + 1
        except ValueError:
            raise ValueError(f"{choice!r} is not a choice of {self.name!r}") from None

    def name_of(self, number: int) -> Optional[str]:
        if 1 <= number <= len(self.choices):
            return self.choices[number - 1]
        return None

    def coerce(self, value: Any) -> Any:
        if value is None:
            return None
        if isinstance(value, str) and value in self.choices:
            return self.value_of(value)
        return int(value)

    def before_write(self, value: Any) -> Any:
        try:
            number = int(value)
        except (TypeError, ValueError):
            return self.default
        return number if 1 <= number <= len(self.choices) else self.default


@dataclass(frozen=True)
class Index:
    """
    A lookup index over one or more attributes.

    Args:
        attrs: Attribute names, in key order
        name: Index name; defaults to the attribute names joined with ``_``
        unique: Refuse saves that would take over another document's pointer
        normalizer: Optional callable applied to the value tuple before the
            key is derived; returns a value or a sequence of values. Never
            sees a null: a tuple with any null component is used as is.
    """
    attrs: tuple
    name: str = ""
    unique: bool = False
    normalizer: Optional[Callable[..., Any]] = None

    def __post_init__(self):
        attrs = (self.attrs,) if isinstance(self.attrs, str) else tuple(self.attrs)
        if not attrs:
            raise ValueError("An index needs at least one attribute")
        object.__setattr__(self, "attrs", attrs)
        if not self.name:
            object.__setattr__(self, "name", "_".join(attrs))
        validate_name(self.name, "index name")

    def normalize(self, values: Sequence[Any]) -> tuple:
        """Apply the normalizer (if any) and return the key components."""
        values = tuple(values)
        # Null components stay null
        if self.normalizer is None or any(v is None for v in values):
            return values
        processed = self.normalizer(*values)
        if len(self.attrs) == 1 and not isinstance(processed, (list, tuple)):
            return (processed,)
        return tuple(processed)


def unique(attrs, name: str = "", normalizer=None) -> Index:
    """Shorthand for a unique Index."""
    return Index(attrs, name=name, unique=True, normalizer=normalizer)


@dataclass(eq=False)
class DocumentKind:
    """
    Schema for one kind of document.

    ``name`` is the discriminator stored in every document's ``type`` field
    and the prefix of generated ids. ``validators`` are callables taking a
    Document and returning an iterable of (attribute, message) pairs.
    """
    name: str
    attributes: list = field(default_factory=list)
    indexes: list = field(default_factory=list)
    validators: list = field(default_factory=list)

    def __post_init__(self):
        validate_name(self.name, "kind name")
        attrs = [a if isinstance(a, Attribute) else Attribute(a) for a in self.attributes]
        self._by_name = {}
        for attr in attrs:
            if attr.name in self._by_name:
                raise ValueError(f"Duplicate attribute {attr.name!r} in {self.name}")
            self._by_name[attr.name] = attr
        self.attributes = attrs

        seen = set()
        for index in self.indexes:
            if index.name in seen:
                raise ValueError(f"Duplicate index {index.name!r} in {self.name}")
            seen.add(index.name)
            for attr_name in index.attrs:
                if attr_name not in self._by_name:
                    raise ValueError(
                        f"Index {index.name!r} refers to undeclared attribute {attr_name!r}"
                    )

    def __hash__(self):
        return hash(self.name)

    def __eq__(self, other):
        if not isinstance(other, DocumentKind):
            return NotImplemented
        return self.name == other.name

    def attribute(self, name: str) -> Attribute:
        try:
            return self._by_name[name]
        except KeyError:
            raise UnknownAttributeError(self.name, name) from None

    def has_attribute(self, name: str) -> bool:
        return name in self._by_name

    @property
    def attribute_names(self) -> list[str]:
        return [a.name for a in self.attributes]

    def index(self, name: str) -> Index:
        for index in self.indexes:
            if index.name == name:
                return index
        raise KeyError(f"{self.name} has no index {name!r}")

    def indexes_over(self, names: Iterable[str]) -> list[Index]:
        """Indexes that include any of the given attribute names."""
        names = set(names)
        return [i for i in self.indexes if names.intersection(i.attrs)]

    def defaults(self) -> dict[str, Any]:
        return {a.name: a.initial() for a in self.attributes}

    def new(self, **attributes):
        """Build a new, unsaved Document of this kind."""
        from .document import Document
        return Document(self, **attributes)


def required(*names: str) -> Callable[[Any], list]:
    """Validator that reports each named attribute that is None or empty."""
    def check(document) -> list:
        return [
            (name, "can't be blank")
            for name in names
            if document.read_attribute(name) in (None, "", [], {})
        ]
    return check
