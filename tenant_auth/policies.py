"""
Per-route authorization policies.

A route declares one RoutePolicy. Authorization runs once, after the
request is authenticated, by evaluating every rule of that policy in order.
Rules are plain values built from small functions and combined with all_of().
"""

from dataclasses import dataclass
from typing import Callable, Tuple

from tenant_auth.exceptions import ForbiddenError
from tenant_auth.models import User


@dataclass(frozen=True)
class Rule:
    description: str
    check: Callable[[User], bool]

    def __call__(self, user: User) -> bool:
        return self.check(user)


def any_role(*roles: str) -> Rule:
    """Passes when no roles are required or the user holds at least one of them."""
    required = frozenset(roles)

    def check(user: User) -> bool:
        return not required or bool(required.intersection(user.roles or []))

    return Rule(f"any_role({', '.join(sorted(required))})", check)


def any_permission(*permissions: str) -> Rule:
    """Passes when the user holds at least one of the permissions."""
    required = frozenset(permissions)

    def check(user: User) -> bool:
        return not required or bool(required.intersection(user.permissions or []))

    return Rule(f"any_permission({', '.join(sorted(required))})", check)


def verified_email() -> Rule:
    return Rule("verified_email", lambda user: bool(user.email_verified))


def all_of(*rules: Rule) -> Rule:
    """Passes when every rule passes."""
    def check(user: User) -> bool:
        return all(rule(user) for rule in rules)

    return Rule(f"all_of({', '.join(rule.description for rule in rules)})", check)


@dataclass(frozen=True)
class RoutePolicy:
    """What a route requires. Public routes skip authentication entirely."""

    public: bool = False
    rules: Tuple[Rule, ...] = ()

    def authorize(self, user: User) -> None:
        """
        Raises:
            ForbiddenError: On the first rule the user fails
        """
        for rule in self.rules:
            if not rule(user):
                raise ForbiddenError(details={"rule": rule.description})


PUBLIC = RoutePolicy(public=True)
AUTHENTICATED = RoutePolicy()


def protected(*roles: str) -> RoutePolicy:
    return RoutePolicy(rules=(any_role(*roles),))


def requires_permissions(*permissions: str) -> RoutePolicy:
    return RoutePolicy(rules=(any_permission(*permissions),))


def combine(*rules: Rule) -> RoutePolicy:
    """Authenticated policy built from an explicit list of rules."""
    return RoutePolicy(rules=tuple(rules))
