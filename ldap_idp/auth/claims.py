"""
Attribute to claim mapping.

Turns directory attributes into OIDC claims and records which scope
discloses which claim. Everything here is pure: the same attributes and
rules always produce the same ClaimSet.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

AttributeRule = Tuple[str, str]  # (directory attribute, claim)
ScopeRule = Tuple[str, str]  # (claim, scope)


@dataclass
class ClaimSet:
    """
    Claims derived from a directory entry.

    Attributes:
        claims: claim name -> value (scalar string or list of strings)
        scopes: scope name -> claim names it discloses, in rule order
    """

    claims: Dict[str, Any] = field(default_factory=dict)
    scopes: Dict[str, List[str]] = field(default_factory=dict)

    def claims_for_scope(self, scope: str) -> List[str]:
        """Claims present in this set that ``scope`` discloses."""
        return [name for name in self.scopes.get(scope, []) if name in self.claims]

    def restrict(self, granted_scopes: Iterable[str]) -> Dict[str, Any]:
        """
        Return only the claims disclosed by at least one granted scope.

        A claim that no scope discloses is never returned.
        """
        visible = set()
        for scope in granted_scopes:
            visible.update(self.scopes.get(scope, []))

        return {name: value for name, value in self.claims.items() if name in visible}


def _lookup(attributes: Mapping[str, Sequence[str]], name: str) -> Optional[Sequence[str]]:
    """Case-insensitive attribute lookup (LDAP attribute names are case-insensitive)."""
    if name in attributes:
        return attributes[name]

    lowered = name.lower()
    for key, values in attributes.items():
        if key.lower() == lowered:
            return values

    return None


def map_claims(
    attributes: Mapping[str, Sequence[str]],
    attribute_rules: Sequence[AttributeRule],
    scope_rules: Sequence[ScopeRule],
    scalar_claims: FrozenSet[str] = frozenset(),
) -> ClaimSet:
    """
    Build a ClaimSet from directory attributes.

    Args:
        attributes: attribute name -> values in the order the directory returned them
        attribute_rules: ``(attribute, claim)`` pairs, many-to-many
        scope_rules: ``(claim, scope)`` pairs, many-to-many
        scalar_claims: claims that take only the first attribute value

    Returns:
        ClaimSet with every claim whose source attribute is present

    Missing or empty attributes simply omit the claim. When several rules
    feed the same claim, the first rule whose attribute is present wins.

    Example:
        >>> cs = map_claims(
        ...     {"cn": ["Jane Doe"], "mail": ["jane@example.org"]},
        ...     [("cn", "name"), ("mail", "email")],
        ...     [("name", "profile"), ("email", "email")],
        ...     frozenset({"name", "email"}),
        ... )
        >>> cs.restrict(["profile"])
        {'name': 'Jane Doe'}
    """
    claims: Dict[str, Any] = {}

    for attribute, claim in attribute_rules:
        if claim in claims:
            continue

        values = _lookup(attributes, attribute)
        if not values:
            logger.debug(f"Skipping claim '{claim}', attribute '{attribute}' is not set")
            continue

        if claim in scalar_claims:
            claims[claim] = values[0]
        else:
            claims[claim] = list(values)

    scopes: Dict[str, List[str]] = {}
    for claim, scope in scope_rules:
        names = scopes.setdefault(scope, [])
        if claim not in names:
            names.append(claim)

    return ClaimSet(claims=claims, scopes=scopes)
