"""Identifier-to-address resolution through alias rules."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from hapticctl.core.model import DeviceRule, Resolution, parse_resolution

LOGGER = logging.getLogger(__name__)


def _matches(rules: Iterable[DeviceRule], identifier: str) -> list[Resolution]:
    matches: list[Resolution] = []
    for rule in rules:
        target = rule.match(identifier)
        if target is not None:
            matches.append(target)
    return matches


class DeviceResolver:
    def __init__(self, rules: Iterable[DeviceRule] = ()) -> None:
        self.rules: tuple[DeviceRule, ...] = tuple(rules)

    def resolve(self, identifier: str) -> Resolution | None:
        """Resolve a user-typed device identifier.

        A single matching rule wins outright. With no match the identifier is
        read as an address on its own (``@1``, an index, or a name). When
        several rules match, a unique non-wildcard match is preferred;
        otherwise the first match in rule order is used.
        """
        matches = _matches(self.rules, identifier)

        if not matches:
            return parse_resolution(identifier)
        if len(matches) == 1:
            return matches[0]

        narrowed = _matches((rule for rule in self.rules if not rule.is_wildcard), identifier)
        if len(narrowed) == 1:
            return narrowed[0]

        LOGGER.warning(
            "Ambiguous device name '%s' matches %d rules, sending to first match %s",
            identifier,
            len(matches),
            matches[0],
        )
        return matches[0]
