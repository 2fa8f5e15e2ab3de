"""
Route Registry - frozen matching table for RouteDefinitions.

States: BUILDING -> FROZEN, exactly once. Routes are added while building;
matching is only allowed once frozen. After freezing the table is never
mutated, so concurrent requests share it without locks.

Matching is segment based: per method, templates are tried in registration
order and the first whose literal segments equal the request's wins.
Captures are raw strings; type checks happen during coercion.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from adorn.faults import MethodNotAllowed, NotFound, RegistryFrozenError, RouteConflictError

from .metadata import RouteDefinition, dynamic_name, split_path


logger = logging.getLogger("adorn.controller.router")


class RegistryState(str, Enum):
    BUILDING = "building"
    FROZEN = "frozen"


@dataclass(frozen=True)
class _Template:
    """Pre-split path template: literal segments and ``None`` for dynamic ones."""
    route: RouteDefinition
    literals: Tuple[Optional[str], ...]
    names: Tuple[Optional[str], ...]

    @classmethod
    def compile(cls, route: RouteDefinition) -> "_Template":
        segments = split_path(route.full_path)
        names = tuple(dynamic_name(s) for s in segments)
        literals = tuple(None if n is not None else s for s, n in zip(segments, names))
        return cls(route=route, literals=literals, names=names)

    def match(self, segments: Sequence[str]) -> Optional[Dict[str, str]]:
        if len(segments) != len(self.literals):
            return None
        params: Dict[str, str] = {}
        for segment, literal, name in zip(segments, self.literals, self.names):
            if literal is not None:
                if segment != literal:
                    return None
            else:
                params[name] = segment
        return params

    def overlaps(self, other: "_Template") -> bool:
        """True when some concrete path would match both templates."""
        if len(self.literals) != len(other.literals):
            return False
        return all(
            a is None or b is None or a == b
            for a, b in zip(self.literals, other.literals)
        )


@dataclass
class ResolvedRoute:
    """Result of a successful match."""
    route: RouteDefinition
    params: Dict[str, str]


class RouteRegistry:
    """
    Registry of routes keyed by method.

    Example:
        registry = RouteRegistry()
        registry.add_all(routes)
        registry.freeze()
        resolved = registry.match("GET", "/items/100")
    """

    def __init__(self, routes: Optional[Sequence[RouteDefinition]] = None):
        self._state = RegistryState.BUILDING
        self._by_method: Dict[str, List[_Template]] = {}
        self._keys: Dict[Tuple[str, str], RouteDefinition] = {}
        if routes:
            self.add_all(routes)

    @property
    def state(self) -> RegistryState:
        return self._state

    @property
    def is_frozen(self) -> bool:
        return self._state is RegistryState.FROZEN

    @property
    def routes(self) -> Tuple[RouteDefinition, ...]:
        return tuple(self._keys.values())

    def add(self, route: RouteDefinition) -> None:
        """
        Register a route.

        Raises:
            RegistryFrozenError: the registry is frozen
            RouteConflictError: (method, full path) is already registered
        """
        if self.is_frozen:
            raise RegistryFrozenError("add a route", self._state.value)
        existing = self._keys.get(route.key)
        if existing is not None:
            raise RouteConflictError(
                f"Route {route.http_method} {route.full_path} already registered by "
                f"{existing.controller.__name__}.{existing.handler_name}",
                class_name=route.controller.__name__, method_name=route.handler_name,
            )
        self._keys[route.key] = route
        self._by_method.setdefault(route.http_method, []).append(_Template.compile(route))

    def add_all(self, routes: Sequence[RouteDefinition]) -> None:
        for route in routes:
            self.add(route)

    def freeze(self) -> None:
        """Transition to FROZEN. Overlapping templates are reported here."""
        if self.is_frozen:
            raise RegistryFrozenError("freeze", self._state.value)
        for method, templates in self._by_method.items():
            for i, earlier in enumerate(templates):
                for later in templates[i + 1:]:
                    if earlier.overlaps(later):
                        logger.warning(
                            "Overlapping routes: %s %s shadows %s %s for some paths "
                            "(first registered wins)",
                            method, earlier.route.full_path, method, later.route.full_path,
                        )
        self._state = RegistryState.FROZEN
        logger.debug("Route registry frozen with %d route(s)", len(self._keys))

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def _require_frozen(self) -> None:
        if not self.is_frozen:
            raise RegistryFrozenError("serve requests", self._state.value)

    def find(self, method: str, path: str) -> Optional[ResolvedRoute]:
        """First matching route for (method, path), or ``None``."""
        self._require_frozen()
        segments = split_path(path)
        for template in self._by_method.get(method.upper(), ()):
            params = template.match(segments)
            if params is not None:
                return ResolvedRoute(route=template.route, params=params)
        return None

    def allowed_methods(self, path: str) -> List[str]:
        """Methods with at least one template matching ``path``."""
        self._require_frozen()
        segments = split_path(path)
        return sorted(
            method for method, templates in self._by_method.items()
            if any(t.match(segments) is not None for t in templates)
        )

    def match(self, method: str, path: str) -> ResolvedRoute:
        """
        Resolve a request.

        Raises:
            RegistryFrozenError: the registry is not frozen yet
            NotFound: no template matches the path
            MethodNotAllowed: the path exists under other methods only
        """
        resolved = self.find(method, path)
        if resolved is not None:
            return resolved
        allowed = self.allowed_methods(path)
        if allowed:
            raise MethodNotAllowed(allowed)
        raise NotFound(f"No route for {method.upper()} {path}")

    def __len__(self) -> int:
        return len(self._keys)
