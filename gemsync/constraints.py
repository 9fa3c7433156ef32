"""
Evaluation of RubyGems version requirements.

Parsing and matching follow ``Gem::Requirement`` through :mod:`univers.gem`;
this module maps its constraints onto gemsync's own models.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Iterable, Optional, Tuple

from univers.gem import GemRequirement, InvalidRequirementError, InvalidVersionError

from .errors import MalformedVersion, UnsupportedRequirement
from .models import Constraint, ConstraintKind, Version


_OPERATORS = {kind.value: kind for kind in ConstraintKind}


def parse_constraint(text: str) -> Optional[Constraint]:
    """Parse one requirement term such as ``~> 2.1`` or ``= 1.0``.

    Returns None for the default requirement ``>= 0``.
    """
    try:
        gem_constraint = GemRequirement.parse((text or "").strip())
    except InvalidRequirementError as e:
        raise UnsupportedRequirement(f"Cannot parse requirement: {text!r}") from e
    except InvalidVersionError as e:
        raise MalformedVersion(f"Malformed version in requirement: {text!r}") from e

    kind = _OPERATORS.get(gem_constraint.op)
    if kind is None:
        raise UnsupportedRequirement(f"Unknown operator in requirement: {text!r}")
    version = Version.parse(str(gem_constraint.version))
    if kind is ConstraintKind.GREATER_EQUAL and not any(version.components):
        return None
    return Constraint(kind, version)


def parse_requirement(text: str) -> Tuple[Constraint, ...]:
    """Parse a compound requirement joined by ``&`` or ``,``."""
    terms = []
    for part in re.split(r"[&,]", text or ""):
        if not part.strip():
            continue
        constraint = parse_constraint(part)
        if constraint is not None:
            terms.append(constraint)
    return tuple(terms)


@lru_cache(maxsize=4096)
def _requirement(constraint: Constraint) -> GemRequirement:
    return GemRequirement(str(constraint))


def satisfies(constraint: Optional[Constraint], version: Version) -> bool:
    """Return whether ``version`` meets ``constraint``."""
    if constraint is None:
        return True
    return _requirement(constraint).satisfied_by(version.gem_version)


def satisfies_all(constraints: Iterable[Constraint], version: Version) -> bool:
    return all(satisfies(c, version) for c in constraints)


def slot_constraint(slot: Optional[str]) -> Tuple[Constraint, ...]:
    """Requirement pinning a slot family, ``~> <slot>.0``."""
    if not slot:
        return ()
    return (Constraint(ConstraintKind.PESSIMISTIC, Version.parse(slot + ".0")),)
