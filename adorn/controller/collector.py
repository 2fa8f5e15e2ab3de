"""
Metadata Collector

Accumulates decorator facts per controller class and per method, merges
repeated applications, and hands out finalized ControllerDefinitions.

Lifecycle per controller: declare_* (any number of times) -> finalize ->
definition. Declaring after finalize, or reading before it, raises
MissingMetadataError.
"""

import inspect
import logging
from dataclasses import fields
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Union

from adorn.faults import MissingMetadataError

from .base import Controller
from .decorators import (
    CLASS_PARTIALS_ATTR,
    CONTROLLER_ATTR,
    ROUTE_ATTR,
    BindingInferenceError,
    infer_bindings,
    is_controller_class,
)
from .metadata import (
    ControllerDefinition,
    MethodMeta,
    PipelineNode,
    controller_id_of,
    normalize_path,
)


logger = logging.getLogger("adorn.controller.collector")

_LIST_FIELDS = ("tags", "responses", "pipeline", "bindings")


def _merge_tags(existing: List[str], new: Iterable[str]) -> None:
    for tag in new:
        if tag not in existing:
            existing.append(tag)


def merge_method_meta(target: MethodMeta, partial: Union[MethodMeta, Mapping[str, Any]]) -> MethodMeta:
    """
    Merge a partial record into ``target`` in place.

    List fields accumulate (tags de-duplicated, first occurrence kept);
    scalar fields are last-write-wins, ``None`` meaning "not given".
    """
    if isinstance(partial, MethodMeta):
        partial = {f.name: getattr(partial, f.name) for f in fields(partial)}

    unknown = set(partial) - set(MethodMeta.SCALAR_FIELDS) - set(_LIST_FIELDS) - {"security"}
    if unknown:
        raise TypeError(f"Unknown method metadata field(s): {', '.join(sorted(unknown))}")

    for name in MethodMeta.SCALAR_FIELDS:
        value = partial.get(name)
        if value is not None:
            setattr(target, name, value)

    if partial.get("tags"):
        _merge_tags(target.tags, partial["tags"])
    for name in ("responses", "pipeline", "bindings"):
        if partial.get(name):
            getattr(target, name).extend(partial[name])
    if partial.get("security") is not None:
        target.security = _merge_security(target.security, partial["security"])
    return target


def _merge_security(existing: Optional[List[Any]], new: Iterable[Any]) -> List[Any]:
    merged = list(existing or [])
    merged.extend(dict(requirement) for requirement in new)
    return merged


def _as_pipeline_nodes(items: Iterable[Any]) -> List[PipelineNode]:
    """Class-attribute pipelines may list bare callables; they run as middlewares."""
    return [
        item if isinstance(item, PipelineNode) else PipelineNode("middleware", item)
        for item in items
    ]


def _explicit_mode(cls: type) -> Optional[str]:
    """Instantiation mode set on the class or a base other than Controller."""
    for klass in cls.__mro__:
        if klass in (Controller, object):
            continue
        if "instantiation_mode" in klass.__dict__:
            return klass.__dict__["instantiation_mode"]
    return None


class MetadataCollector:
    """
    Process-scoped store of controller metadata.

    Created explicitly and passed to whoever needs it; ``clear()`` tears it
    down (tests call it between cases).

    Example:
        collector = MetadataCollector()
        collector.register_controller(UsersController)
        definition = collector.definition(UsersController)
    """

    def __init__(self, default_instantiation_mode: str = "per_request"):
        if default_instantiation_mode not in ("per_request", "singleton"):
            raise ValueError(f"Unknown instantiation mode: {default_instantiation_mode!r}")
        self.default_instantiation_mode = default_instantiation_mode
        self._definitions: Dict[type, ControllerDefinition] = {}
        self._finalized: Set[type] = set()

    # ------------------------------------------------------------------
    # Declaration
    # ------------------------------------------------------------------

    def _ensure_open(self, identity: type) -> ControllerDefinition:
        if identity in self._finalized:
            raise MissingMetadataError(
                controller_id_of(identity),
                "metadata was declared after the controller was finalized",
            )
        definition = self._definitions.get(identity)
        if definition is None:
            definition = ControllerDefinition(
                identity=identity,
                controller_id=controller_id_of(identity),
                instantiation_mode=self.default_instantiation_mode,
            )
            self._definitions[identity] = definition
        return definition

    def declare_controller(
        self,
        identity: type,
        base_path: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        *,
        pipeline: Optional[Iterable[Any]] = None,
        instantiation_mode: Optional[str] = None,
        security: Optional[Iterable[Any]] = None,
        security_schemes: Optional[Mapping[str, Any]] = None,
    ) -> None:
        """Record class-level facts. Scalars overwrite, lists accumulate."""
        definition = self._ensure_open(identity)
        if base_path is not None:
            definition.base_path = base_path
        if tags:
            _merge_tags(definition.tags, tags)
        if pipeline:
            definition.pipeline.extend(_as_pipeline_nodes(pipeline))
        if instantiation_mode is not None:
            if instantiation_mode not in ("per_request", "singleton"):
                raise ValueError(f"Unknown instantiation mode: {instantiation_mode!r}")
            definition.instantiation_mode = instantiation_mode
        if security is not None:
            definition.security = _merge_security(definition.security, security)
        if security_schemes:
            definition.security_schemes.update(security_schemes)

    def declare_method(
        self,
        identity: type,
        method_name: str,
        partial: Union[MethodMeta, Mapping[str, Any]],
    ) -> None:
        """Merge one partial record into the method's bucket."""
        definition = self._ensure_open(identity)
        meta = definition.methods.setdefault(method_name, MethodMeta())
        merge_method_meta(meta, partial)

    def finalize(self, identity: type) -> ControllerDefinition:
        """Freeze the controller's buckets. Further declarations raise."""
        if identity not in self._definitions:
            raise MissingMetadataError(controller_id_of(identity), "controller was never declared")
        self._finalized.add(identity)
        return self._definitions[identity]

    def is_finalized(self, identity: type) -> bool:
        return identity in self._finalized

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_controller(self, cls: type) -> ControllerDefinition:
        """
        Replay the facts decorators attached to ``cls`` and finalize it.

        Registering an already finalized class returns its definition.

        Raises:
            MissingMetadataError: ``cls`` is not a controller, or a handler
                parameter cannot be bound
        """
        if self.is_finalized(cls):
            return self._definitions[cls]
        if not is_controller_class(cls):
            raise MissingMetadataError(
                controller_id_of(cls) if inspect.isclass(cls) else repr(cls),
                "class is neither decorated with @controller nor a Controller subclass",
            )

        marker = cls.__dict__.get(CONTROLLER_ATTR, {})
        if marker:
            base_path = marker.get("base_path") or ""
        else:
            base_path = getattr(cls, "prefix", "") or ""

        class_tags: List[str] = list(getattr(cls, "tags", []) if issubclass(cls, Controller) else [])
        class_tags.extend(marker.get("tags", []))
        class_pipeline: List[Any] = list(getattr(cls, "pipeline", []) if issubclass(cls, Controller) else [])
        class_security: Optional[List[Any]] = None
        schemes: Dict[str, Any] = {}
        for partial in cls.__dict__.get(CLASS_PARTIALS_ATTR, ()):
            class_tags.extend(partial.get("tags", []))
            class_pipeline.extend(partial.get("pipeline", []))
            if "security" in partial:
                class_security = _merge_security(class_security, partial["security"])
            schemes.update(partial.get("security_schemes", {}))

        mode = marker.get("instantiation_mode") or _explicit_mode(cls)
        self.declare_controller(
            cls,
            base_path,
            class_tags,
            pipeline=class_pipeline,
            instantiation_mode=mode,
            security=class_security,
            security_schemes=schemes,
        )

        for name, func in self._route_functions(cls):
            for partial in getattr(func, ROUTE_ATTR):
                self.declare_method(cls, name, partial)

            meta = self._definitions[cls].methods[name]
            if not meta.is_route:
                continue
            try:
                bindings = infer_bindings(func, meta.http_method, normalize_path(base_path, meta.path))
            except BindingInferenceError as e:
                raise MissingMetadataError(
                    f"{controller_id_of(cls)}.{name}",
                    f"handler cannot be bound: {e.message}",
                ) from e
            self.declare_method(cls, name, {"bindings": bindings})

        definition = self.finalize(cls)
        logger.debug(
            "Registered controller %s (%d method(s))",
            definition.controller_id, len(definition.methods),
        )
        return definition

    @staticmethod
    def _route_functions(cls: type):
        """Decorated functions in declaration order, subclass overrides winning."""
        seen: Dict[str, Any] = {}
        for klass in reversed(cls.__mro__):
            for name, attr in vars(klass).items():
                if inspect.isfunction(attr) and hasattr(attr, ROUTE_ATTR):
                    seen[name] = attr
                elif name in seen and not hasattr(attr, ROUTE_ATTR):
                    del seen[name]
        return list(seen.items())

    # ------------------------------------------------------------------
    # Consumption
    # ------------------------------------------------------------------

    def definition(self, identity: type) -> ControllerDefinition:
        """
        Finalized definition of ``identity``.

        Raises:
            MissingMetadataError: never declared, or not finalized yet
        """
        if identity not in self._definitions:
            raise MissingMetadataError(
                controller_id_of(identity) if inspect.isclass(identity) else repr(identity),
                "controller was never declared",
            )
        if identity not in self._finalized:
            raise MissingMetadataError(controller_id_of(identity), "controller was not finalized")
        return self._definitions[identity]

    def definitions(self) -> List[ControllerDefinition]:
        """All definitions in declaration order; every one must be finalized."""
        pending = [d for d in self._definitions.values() if d.identity not in self._finalized]
        if pending:
            raise MissingMetadataError(pending[0].controller_id, "controller was not finalized")
        return list(self._definitions.values())

    def __contains__(self, identity: type) -> bool:
        return identity in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)

    def clear(self) -> None:
        """Teardown: forget every controller."""
        self._definitions.clear()
        self._finalized.clear()
