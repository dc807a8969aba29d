"""
Credential resolution for provider configuration values

Provider settings such as API keys, base URLs and header values may be
references rather than literals. A resolver turns a reference into its
current value; it is consulted at provider construction and again whenever a
provider refreshes credentials after an authentication failure.
"""

import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

_REFERENCE = re.compile(r"^\$(?:\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)\}|(?P<bare>[A-Za-z_][A-Za-z0-9_]*))$")


class ResolutionError(ValueError):
    """Raised when a reference cannot be resolved to a value."""


class CredentialResolver(ABC):
    """Resolves configuration references to concrete values."""

    @abstractmethod
    def resolve_value(self, value: str) -> str:
        """Return the resolved value or raise ResolutionError."""
        raise NotImplementedError


class EnvironmentResolver(CredentialResolver):
    """
    Resolves `$NAME` and `${NAME}` from an environment mapping.

    Values that are not references pass through unchanged. A reference to an
    unset or empty variable is an error.
    """

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self._environ = environ

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    def resolve_value(self, value: str) -> str:
        match = _REFERENCE.match(value or "")
        if not match:
            return value
        name = match.group("braced") or match.group("bare")
        resolved = self.environ.get(name, "")
        if not resolved:
            raise ResolutionError(f"environment variable {name} not set")
        return resolved


class StaticResolver(CredentialResolver):
    """Resolves references from a fixed mapping, falling back to literals."""

    def __init__(self, values: Mapping[str, str]):
        self.values = dict(values)

    def resolve_value(self, value: str) -> str:
        if value in self.values:
            return self.values[value]
        if value.startswith("$"):
            raise ResolutionError(f"unknown reference {value}")
        return value
