"""
Manifest Builder - reconciles decorator facts with static facts.

Integrates with:
- adorn.controller.collector for finalized ControllerDefinitions
- adorn.controller.analyzer for RouteMatch records
- adorn.controller.router, which serves the resulting RouteDefinitions

The build is all-or-nothing: any inconsistency raises an AnalyzerError
subclass and no partial manifest is produced.
"""

import inspect
import logging
import os
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from adorn import __version__
from adorn.faults import ManifestMismatchError, RouteConflictError

from .analyzer import RouteMatch
from .metadata import (
    DEFAULT_STATUS,
    ControllerDefinition,
    MethodMeta,
    ReturnModel,
    RouteDefinition,
    ValidationContract,
    normalize_path,
    path_tokens,
)


logger = logging.getLogger("adorn.controller.compiler")

MANIFEST_VERSION = 1


def resolve_status(http_method: str, meta: MethodMeta) -> int:
    """Explicit status, else the first declared 2xx response, else the verb default."""
    if meta.status is not None:
        return meta.status
    for response in meta.responses:
        if 200 <= response.status < 300:
            return response.status
    return DEFAULT_STATUS[http_method]


def _schema_keys(schema: Any) -> Optional[Set[str]]:
    """Top-level field names of an object-shaped schema, if knowable."""
    properties = getattr(schema, "properties", None)
    if getattr(schema, "kind", None) == "object" and isinstance(properties, dict):
        return set(properties)
    annotation = getattr(schema, "annotation", None)
    model_fields = getattr(annotation, "model_fields", None)
    if isinstance(model_fields, dict):
        return set(model_fields)
    return None


def _source_file(cls: type) -> Optional[str]:
    try:
        return inspect.getsourcefile(cls)
    except TypeError:
        return None


class ManifestBuilder:
    """
    Builds canonical RouteDefinitions.

    Example:
        builder = ManifestBuilder()
        routes = builder.build(collector.definitions(), analyze_files(paths))
        manifest = builder.to_manifest(routes)
    """

    def build(
        self,
        controllers: Iterable[ControllerDefinition],
        analyzed: Iterable[RouteMatch],
    ) -> List[RouteDefinition]:
        """
        Join decorator metadata and static matches on (class name, method name).

        Raises:
            ManifestMismatchError: a route exists on one side only, or the
                two sides disagree on verb, path or bindings, or a params
                schema does not match the dynamic segments
            RouteConflictError: two routes share (method, full path)
        """
        controllers = list(controllers)
        index: Dict[Tuple[str, str], List[RouteMatch]] = {}
        for match in analyzed:
            index.setdefault(match.key, []).append(match)

        consumed: Set[int] = set()
        routes: List[RouteDefinition] = []
        seen: Dict[Tuple[str, str], RouteDefinition] = {}

        for definition in controllers:
            definition.routes = []
            for method_name, meta in definition.methods.items():
                if not meta.is_route:
                    continue
                match = self._pick_match(definition, method_name, index.get((definition.class_name, method_name), []))
                consumed.add(id(match))
                route = self._merge(definition, method_name, meta, match)

                existing = seen.get(route.key)
                if existing is not None:
                    raise RouteConflictError(
                        f"Route {route.http_method} {route.full_path} is declared by both "
                        f"{existing.controller.__name__}.{existing.handler_name} and "
                        f"{definition.class_name}.{method_name}",
                        file=match.file, class_name=definition.class_name,
                        method_name=method_name, line=match.line,
                    )
                seen[route.key] = route
                definition.routes.append(route)
                routes.append(route)

        self._check_orphans(controllers, index, consumed)
        logger.info("Built manifest: %d route(s) from %d controller(s)", len(routes), len(controllers))
        return routes

    # ------------------------------------------------------------------

    def _pick_match(
        self,
        definition: ControllerDefinition,
        method_name: str,
        candidates: List[RouteMatch],
    ) -> RouteMatch:
        if not candidates:
            raise ManifestMismatchError(
                "Decorator metadata has no matching static route",
                file=_source_file(definition.identity),
                class_name=definition.class_name, method_name=method_name,
            )
        if len(candidates) == 1:
            return candidates[0]

        source = _source_file(definition.identity)
        same_file = [
            c for c in candidates
            if (c.class_file or c.file) and source and _same_path(c.class_file or c.file, source)
        ]
        if len(same_file) == 1:
            return same_file[0]
        raise ManifestMismatchError(
            f"Ambiguous static match: {len(candidates)} classes named {definition.class_name}",
            file=source, class_name=definition.class_name, method_name=method_name,
        )

    def _merge(
        self,
        definition: ControllerDefinition,
        method_name: str,
        meta: MethodMeta,
        match: RouteMatch,
    ) -> RouteDefinition:
        def mismatch(message: str) -> ManifestMismatchError:
            return ManifestMismatchError(
                message, file=match.file, class_name=definition.class_name,
                method_name=method_name, line=match.line,
            )

        full_path = normalize_path(definition.base_path, meta.path)
        if match.http_method != meta.http_method:
            raise mismatch(
                f"HTTP method differs: decorators say {meta.http_method}, source says {match.http_method}"
            )
        if match.full_path != full_path:
            raise mismatch(f"Path differs: decorators say {full_path}, source says {match.full_path}")

        runtime = [(b.index, b.kind, b.name) for b in meta.bindings]
        static = [(b.index, b.kind, b.name) for b in match.bindings]
        if runtime != static:
            raise mismatch(f"Argument bindings differ: runtime {runtime!r}, source {static!r}")

        if meta.validation is not None:
            self._check_params_schema(meta.validation, full_path, mismatch)

        tags: List[str] = []
        for tag in list(definition.tags) + list(meta.tags):
            if tag not in tags:
                tags.append(tag)

        # Method requirements replace the class ones
        security = meta.security if meta.security is not None else definition.security

        return RouteDefinition(
            controller=definition.identity,
            controller_id=definition.controller_id,
            handler_name=method_name,
            http_method=meta.http_method,
            path=meta.path or "",
            full_path=full_path,
            status=resolve_status(meta.http_method, meta),
            params=list(match.params),
            bindings=list(meta.bindings),
            responses=list(meta.responses),
            returns=_returns(match),
            validation=meta.validation,
            pipeline=list(definition.pipeline) + list(meta.pipeline),
            summary=meta.summary or "",
            description=meta.description or "",
            tags=tags,
            deprecated=bool(meta.deprecated),
            instantiation_mode=definition.instantiation_mode,
            security=[dict(r) for r in security] if security is not None else None,
            security_schemes=dict(definition.security_schemes),
            source_file=match.file,
            line=match.line,
        )

    def _check_params_schema(self, contract: ValidationContract, full_path: str, mismatch) -> None:
        if contract.params is None:
            return
        keys = _schema_keys(contract.params)
        if keys is None:
            return
        tokens = path_tokens(full_path)
        if len(tokens) != len(set(tokens)) or keys != set(tokens):
            raise mismatch(
                f"Params schema fields {sorted(keys)} do not match path segments {tokens}"
            )

    def _check_orphans(
        self,
        controllers: List[ControllerDefinition],
        index: Dict[Tuple[str, str], List[RouteMatch]],
        consumed: Set[int],
    ) -> None:
        registered = {d.class_name for d in controllers}
        for (class_name, method_name), matches in sorted(index.items()):
            for match in matches:
                if id(match) in consumed:
                    continue
                if class_name in registered:
                    raise ManifestMismatchError(
                        "Static route has no decorator metadata",
                        file=match.file, class_name=class_name,
                        method_name=method_name, line=match.line,
                    )
                logger.warning(
                    "Skipping %s.%s (%s): controller is not registered",
                    class_name, method_name, match.file or "<source>",
                )

    # ------------------------------------------------------------------

    def to_manifest(self, routes: Iterable[RouteDefinition]) -> Dict[str, Any]:
        """
        Deterministic, JSON-ready manifest.

        No timestamps; routes ordered by (full path, method).
        """
        ordered = sorted(routes, key=lambda r: (r.full_path, r.http_method))
        controllers: Dict[str, Dict[str, Any]] = {}
        for route in ordered:
            entry = controllers.setdefault(route.controller_id, {
                "id": route.controller_id,
                "instantiation": route.instantiation_mode,
                "routes": [],
            })
            entry["routes"].append(route.operation_id)
        return {
            "manifestVersion": MANIFEST_VERSION,
            "generator": {"name": "adorn", "version": __version__},
            "controllers": [controllers[k] for k in sorted(controllers)],
            "routes": [r.to_dict() for r in ordered],
        }


def _returns(match: RouteMatch) -> ReturnModel:
    return ReturnModel(
        type_text=match.return_type,
        unwrapped_type_text=match.unwrapped_return_type,
        is_async=match.is_async,
    )


def _same_path(a: str, b: str) -> bool:
    return os.path.normcase(os.path.realpath(a)) == os.path.normcase(os.path.realpath(b))

