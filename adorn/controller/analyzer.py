"""
Static Route Analyzer

Extracts route facts from controller source text using the standard ``ast``
module, independently of the runtime decorators.

For every method of a controller class carrying exactly one HTTP verb
decorator it produces a ``RouteMatch``: verb, literal path, parameters with
scalar hints, argument bindings and the return annotation (raw and with one
async wrapper removed).

Base classes are followed by name across all analyzed files, so inherited
``prefix`` values and route methods are reported the way the runtime MRO
sees them.
"""

from __future__ import annotations

import ast
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

from adorn.faults import AnalyzerError

from .metadata import (
    BODY_METHODS,
    HTTP_METHODS,
    ArgBinding,
    BindingKind,
    ParamModel,
    ScalarHint,
    is_int_identifier,
    normalize_path,
    path_tokens,
)


logger = logging.getLogger("adorn.controller.analyzer")


VERB_DECORATORS = frozenset(HTTP_METHODS)
CONTROLLER_DECORATOR = "controller"
CONTROLLER_BASE = "Controller"
CONTEXT_TYPES = frozenset({"RequestCtx"})
ASYNC_WRAPPERS = frozenset({"Awaitable", "Coroutine", "Future"})

MARKER_KINDS: Dict[str, BindingKind] = {
    "Body": BindingKind.BODY,
    "Query": BindingKind.QUERY,
    "Header": BindingKind.HEADERS,
    "Headers": BindingKind.HEADERS,
    "State": BindingKind.STATE,
    "Params": BindingKind.PARAMS,
}

_SCALAR_TEXT: Dict[str, ScalarHint] = {
    "int": ScalarHint.INT,
    "float": ScalarHint.NUMBER,
    "Decimal": ScalarHint.NUMBER,
    "number": ScalarHint.NUMBER,
    "str": ScalarHint.STRING,
    "UUID": ScalarHint.UUID,
    "bool": ScalarHint.BOOLEAN,
}


# ============================================================================
# Annotation inspection
# ============================================================================

def _name_of(node: Optional[ast.AST]) -> Optional[str]:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return node.attr
    return None


def _is_none(node: ast.AST) -> bool:
    return (isinstance(node, ast.Constant) and node.value is None) or _name_of(node) == "None"


def _union_members(node: ast.AST) -> Optional[List[ast.AST]]:
    if isinstance(node, ast.BinOp) and isinstance(node.op, ast.BitOr):
        return (_union_members(node.left) or [node.left]) + (_union_members(node.right) or [node.right])
    if isinstance(node, ast.Subscript) and _name_of(node.value) == "Union":
        sl = node.slice
        return list(sl.elts) if isinstance(sl, ast.Tuple) else [sl]
    return None


@dataclass
class AnnotationInfo:
    """
    What an annotation says about binding.

    Attributes:
        text: Full annotation text
        base: Annotation text with Optional/Union[None]/Annotated removed
        optional: Admits ``None``
        marker: Binding marker class name found in ``Annotated`` metadata
        marker_name: Literal field name passed to the marker
    """
    text: str
    base: str
    optional: bool = False
    marker: Optional[str] = None
    marker_name: Optional[str] = None

    @property
    def base_name(self) -> str:
        head = self.base.split("[", 1)[0]
        return head.rsplit(".", 1)[-1]

    @property
    def is_scalar(self) -> bool:
        return self.base_name in _SCALAR_TEXT and "[" not in self.base

    @property
    def is_context(self) -> bool:
        return self.base_name in CONTEXT_TYPES

    def scalar_hint(self, name: str) -> Optional[ScalarHint]:
        if not self.is_scalar:
            return None
        hint = _SCALAR_TEXT[self.base_name]
        if hint is ScalarHint.NUMBER and is_int_identifier(name):
            return ScalarHint.INT
        return hint


def describe_annotation(node: ast.AST) -> AnnotationInfo:
    """Unwrap Optional/``X | None``/Annotated and collect binding markers."""
    text = ast.unparse(node)
    optional = False
    marker = marker_name = None

    while True:
        if isinstance(node, ast.Constant) and isinstance(node.value, str):
            node = ast.parse(node.value, mode="eval").body
            continue
        if isinstance(node, ast.Subscript) and _name_of(node.value) == "Optional":
            optional = True
            node = node.slice
            continue
        members = _union_members(node)
        if members is not None:
            rest = [m for m in members if not _is_none(m)]
            if len(rest) < len(members):
                optional = True
            if len(rest) == 1:
                node = rest[0]
                continue
            break
        if isinstance(node, ast.Subscript) and _name_of(node.value) == "Annotated":
            elts = node.slice.elts if isinstance(node.slice, ast.Tuple) else [node.slice]
            for meta in elts[1:]:
                if isinstance(meta, ast.Call) and _name_of(meta.func) in MARKER_KINDS:
                    marker = _name_of(meta.func)
                    marker_name = _literal_arg(meta, "name")
            node = elts[0]
            continue
        break

    return AnnotationInfo(text=text, base=ast.unparse(node), optional=optional,
                          marker=marker, marker_name=marker_name)


def describe_annotation_text(text: str) -> AnnotationInfo:
    return describe_annotation(ast.parse(text, mode="eval").body)


def _literal_arg(call: ast.Call, keyword: str) -> Optional[str]:
    if call.args and isinstance(call.args[0], ast.Constant) and isinstance(call.args[0].value, str):
        return call.args[0].value
    for kw in call.keywords:
        if kw.arg == keyword and isinstance(kw.value, ast.Constant) and isinstance(kw.value.value, str):
            return kw.value.value
    return None


def unwrap_return(info: Optional[AnnotationInfo]) -> str:
    """Remove one ``Awaitable``/``Coroutine``/``Future`` layer from a return type."""
    if info is None:
        return ""
    node = ast.parse(info.text, mode="eval").body
    if isinstance(node, ast.Subscript) and _name_of(node.value) in ASYNC_WRAPPERS:
        sl = node.slice
        if isinstance(sl, ast.Tuple):
            return ast.unparse(sl.elts[-1]) if sl.elts else ""
        return ast.unparse(sl)
    return info.text


# ============================================================================
# Parameter classification
# ============================================================================

@dataclass
class ParamSource:
    """A parameter as declared: name, annotation (if any), default presence."""
    name: str
    annotation: Optional[AnnotationInfo] = None
    has_default: bool = False


class BindingError(Exception):
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


def classify_params(
    params: Sequence[ParamSource],
    http_method: str,
    full_path: str,
) -> Tuple[List[ParamModel], List[ArgBinding]]:
    """
    Apply the binding rules to declared parameters.

    Raises:
        BindingError: Unbindable parameter or unmatched path token
    """
    tokens = path_tokens(full_path)
    token_set = set(tokens)
    models: List[ParamModel] = []
    bindings: List[ArgBinding] = []
    body_bound = False

    for index, p in enumerate(params):
        info = p.annotation
        optional = p.has_default or bool(info and info.optional)
        hint: Optional[ScalarHint] = None

        if p.name == "ctx" or (info is not None and info.is_context):
            binding = ArgBinding(index, BindingKind.CONTEXT, param=p.name)
        elif info is not None and info.marker is not None:
            kind = MARKER_KINDS[info.marker]
            field_name = info.marker_name
            if info.marker == "Header" and field_name is None:
                field_name = p.name.replace("_", "-")
            if info.marker == "Query" and field_name is None and info.is_scalar:
                field_name = p.name
            if kind is BindingKind.BODY:
                body_bound = True
            if kind in (BindingKind.QUERY, BindingKind.PARAMS) and field_name is not None:
                hint = info.scalar_hint(p.name)
            binding = ArgBinding(index, kind, field_name, param=p.name)
        elif p.name in token_set:
            hint = info.scalar_hint(p.name) if info is not None else ScalarHint.STRING
            binding = ArgBinding(index, BindingKind.PARAMS, p.name, param=p.name)
        elif info is not None and not info.is_scalar and http_method in BODY_METHODS and not body_bound:
            body_bound = True
            binding = ArgBinding(index, BindingKind.BODY, param=p.name)
        elif info is not None and info.is_scalar:
            hint = info.scalar_hint(p.name)
            binding = ArgBinding(index, BindingKind.QUERY, p.name, param=p.name)
        elif info is not None:
            binding = ArgBinding(index, BindingKind.QUERY, param=p.name)
        elif p.has_default:
            hint = ScalarHint.STRING
            binding = ArgBinding(index, BindingKind.QUERY, p.name, param=p.name)
        else:
            raise BindingError(
                f"Parameter '{p.name}' cannot be bound: it is unannotated, "
                f"has no default and is not a path token"
            )

        models.append(ParamModel(
            name=p.name,
            type_text=info.text if info is not None else "",
            optional=optional,
            hint=hint,
        ))
        bindings.append(binding)

    bound_tokens = {
        b.name for b in bindings if b.kind is BindingKind.PARAMS and b.name is not None
    }
    whole_params = any(b.kind is BindingKind.PARAMS and b.name is None for b in bindings)
    for token in tokens:
        if token not in bound_tokens and not whole_params:
            raise BindingError(f"Path token '{{{token}}}' has no matching parameter")

    return models, bindings


# ============================================================================
# RouteMatch
# ============================================================================

@dataclass
class RouteMatch:
    """Static facts about one route-handling method."""
    class_name: str
    method_name: str
    decorator: str
    http_method: str
    path: str
    base_path: str = ""
    params: List[ParamModel] = field(default_factory=list)
    bindings: List[ArgBinding] = field(default_factory=list)
    return_type: str = ""
    unwrapped_return_type: str = ""
    is_async: bool = False
    file: Optional[str] = None
    line: Optional[int] = None
    # Set when the method body lives on a base class
    inherited_from: Optional[str] = None
    class_file: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        return (self.class_name, self.method_name)

    @property
    def full_path(self) -> str:
        return normalize_path(self.base_path, self.path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "class": self.class_name,
            "method": self.method_name,
            "decorator": self.decorator,
            "httpMethod": self.http_method,
            "path": self.path,
            "basePath": self.base_path,
            "params": [p.to_dict() for p in self.params],
            "bindings": [
                {"index": b.index, "kind": b.kind.value, "name": b.name, "param": b.param}
                for b in self.bindings
            ],
            "returnType": self.return_type,
            "unwrappedReturnType": self.unwrapped_return_type,
            "isAsync": self.is_async,
            "file": self.file,
            "line": self.line,
            "inheritedFrom": self.inherited_from,
            "classFile": self.class_file,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RouteMatch":
        return cls(
            class_name=data["class"],
            method_name=data["method"],
            decorator=data["decorator"],
            http_method=data["httpMethod"],
            path=data["path"],
            base_path=data.get("basePath", ""),
            params=[ParamModel.from_dict(p) for p in data.get("params", [])],
            bindings=[
                ArgBinding(b["index"], BindingKind(b["kind"]), b.get("name"), b.get("param"))
                for b in data.get("bindings", [])
            ],
            return_type=data.get("returnType", ""),
            unwrapped_return_type=data.get("unwrappedReturnType", ""),
            is_async=data.get("isAsync", False),
            file=data.get("file"),
            line=data.get("line"),
            inherited_from=data.get("inheritedFrom"),
            class_file=data.get("classFile"),
        )


# ============================================================================
# Analyzer port
# ============================================================================

class AnalyzerPort(Protocol):
    """Anything that turns some route source into RouteMatch records."""

    def analyze(self, source: Any, file: Optional[str] = None) -> List[RouteMatch]: ...


@dataclass(eq=False)
class _ClassInfo:
    node: ast.ClassDef
    file: Optional[str]
    order: int


class _Hierarchy:
    """
    Class lookup by name across every analyzed module.

    Bases are resolved by their last dotted component, preferring a class
    from the same file. Bases that were not analyzed are opaque.
    """

    def __init__(self, classes: Dict[str, List[_ClassInfo]]):
        self.classes = classes

    def lookup(self, base: ast.expr, near: _ClassInfo) -> Optional[_ClassInfo]:
        name = _name_of(base)
        if name is None or name == CONTROLLER_BASE:
            return None
        candidates = self.classes.get(name, [])
        for info in candidates:
            if info.file == near.file and info is not near:
                return info
        others = [info for info in candidates if info is not near]
        return others[0] if others else None

    def bases(self, info: _ClassInfo) -> List[_ClassInfo]:
        found = (self.lookup(base, info) for base in info.node.bases)
        return [base for base in found if base is not None]

    def is_controller_subclass(self, info: _ClassInfo, _seen: Optional[set] = None) -> bool:
        seen = _seen if _seen is not None else set()
        if id(info) in seen:
            return False
        seen.add(id(info))
        if any(_name_of(base) == CONTROLLER_BASE for base in info.node.bases):
            return True
        return any(self.is_controller_subclass(base, seen) for base in self.bases(info))

    def mro(self, info: _ClassInfo, _stack: Tuple[int, ...] = ()) -> List[_ClassInfo]:
        """C3 linearization restricted to analyzed classes."""
        if id(info) in _stack:
            return [info]
        stack = _stack + (id(info),)
        bases = self.bases(info)
        pending = [self.mro(base, stack) for base in bases] + [bases]
        pending = [list(seq) for seq in pending if seq]

        result = [info]
        while pending:
            for seq in pending:
                head = seq[0]
                if not any(head in other[1:] for other in pending):
                    break
            else:
                # Python refuses such a class; keep what was resolved
                break
            result.append(head)
            pending = [[c for c in seq if c is not head] for seq in pending]
            pending = [seq for seq in pending if seq]
        return result


class StaticRouteAnalyzer:
    """
    Analyzes Python controller source text.

    Example:
        matches = StaticRouteAnalyzer().analyze(Path("users.py").read_text(), "users.py")
    """

    def analyze(self, source: str, file: Optional[str] = None) -> List[RouteMatch]:
        return self.analyze_sources([(source, file)])

    def analyze_sources(self, sources: Iterable[Tuple[str, Optional[str]]]) -> List[RouteMatch]:
        """
        Analyze several modules as one unit.

        A class inheriting from another analyzed class sees that class's
        ``prefix`` and route methods the way its runtime MRO does, so routes
        declared on a base are reported for every controller subclass.
        """
        classes: Dict[str, List[_ClassInfo]] = {}
        ordered: List[_ClassInfo] = []
        for order, (source, file) in enumerate(sources):
            try:
                tree = ast.parse(source, filename=file or "<unknown>")
            except SyntaxError as e:
                raise AnalyzerError(f"Cannot parse source: {e.msg}", file=file, line=e.lineno) from e
            for node in ast.walk(tree):
                if isinstance(node, ast.ClassDef):
                    info = _ClassInfo(node, file, order)
                    classes.setdefault(node.name, []).append(info)
                    ordered.append(info)

        hierarchy = _Hierarchy(classes)
        keyed: List[Tuple[Tuple[int, int, str, str], RouteMatch]] = []
        for info in ordered:
            base_path = self._controller_base_path(info, hierarchy)
            if base_path is None:
                continue
            for match in self._analyze_class(info, base_path, hierarchy):
                line = match.line if match.inherited_from is None else info.node.lineno
                keyed.append(((info.order, line or 0, match.class_name, match.method_name), match))

        keyed.sort(key=lambda pair: pair[0])
        matches = [match for _, match in keyed]
        logger.debug("Analyzed %d class(es): %d route(s)", len(ordered), len(matches))
        return matches

    def analyze_file(self, path: Union[str, Path]) -> List[RouteMatch]:
        path = Path(path)
        return self.analyze(path.read_text(encoding="utf-8"), str(path))

    # ------------------------------------------------------------------

    def _controller_base_path(self, info: _ClassInfo, hierarchy: _Hierarchy) -> Optional[str]:
        """Base path of a controller class, ``None`` for non-controllers."""
        node, file = info.node, info.file
        for deco in node.decorator_list:
            target = deco.func if isinstance(deco, ast.Call) else deco
            if _name_of(target) != CONTROLLER_DECORATOR:
                continue
            if not isinstance(deco, ast.Call) or (not deco.args and not deco.keywords):
                return ""
            path = _literal_arg(deco, "base_path")
            has_path_arg = bool(deco.args) or any(kw.arg == "base_path" for kw in deco.keywords)
            if path is None and has_path_arg:
                raise AnalyzerError(
                    "Controller base path must be a string literal",
                    file=file, class_name=node.name, line=deco.lineno,
                )
            return path or ""

        if not hierarchy.is_controller_subclass(info):
            return None
        # ``prefix`` resolves through the bases like any class attribute
        for klass in hierarchy.mro(info):
            prefix = self._own_prefix(klass)
            if prefix is not None:
                return prefix
        return ""

    @staticmethod
    def _own_prefix(info: _ClassInfo) -> Optional[str]:
        for stmt in info.node.body:
            if isinstance(stmt, ast.Assign) and any(_name_of(t) == "prefix" for t in stmt.targets):
                value = stmt.value
            elif isinstance(stmt, ast.AnnAssign) and _name_of(stmt.target) == "prefix" and stmt.value:
                value = stmt.value
            else:
                continue
            if isinstance(value, ast.Constant) and isinstance(value.value, str):
                return value.value
            raise AnalyzerError(
                "Controller prefix must be a string literal",
                file=info.file, class_name=info.node.name, line=stmt.lineno,
            )
        return None

    @staticmethod
    def _route_methods(info: _ClassInfo, hierarchy: _Hierarchy):
        """Verb-decorated methods visible on the class, subclass overrides winning."""
        seen: Dict[str, Tuple[Union[ast.FunctionDef, ast.AsyncFunctionDef], _ClassInfo]] = {}
        for klass in reversed(hierarchy.mro(info)):
            for stmt in klass.node.body:
                if isinstance(stmt, (ast.FunctionDef, ast.AsyncFunctionDef)):
                    names = [stmt.name]
                    is_route = any(
                        _name_of(d.func if isinstance(d, ast.Call) else d) in VERB_DECORATORS
                        for d in stmt.decorator_list
                    )
                elif isinstance(stmt, ast.Assign):
                    names = [t.id for t in stmt.targets if isinstance(t, ast.Name)]
                    is_route = False
                else:
                    continue
                for name in names:
                    if is_route:
                        seen[name] = (stmt, klass)
                    else:
                        seen.pop(name, None)
        return list(seen.items())

    def _analyze_class(self, info: _ClassInfo, base_path: str, hierarchy: _Hierarchy) -> List[RouteMatch]:
        class_name = info.node.name
        matches = []
        for name, (item, owner) in self._route_methods(info, hierarchy):
            verbs = [
                d for d in item.decorator_list
                if _name_of(d.func if isinstance(d, ast.Call) else d) in VERB_DECORATORS
            ]

            def fail(message: str, line: Optional[int] = None) -> AnalyzerError:
                return AnalyzerError(
                    message, file=owner.file, class_name=class_name,
                    method_name=item.name, line=line or item.lineno,
                )

            if len(verbs) > 1:
                raise fail("Multiple HTTP verb decorators on one method")
            deco = verbs[0]
            if not isinstance(deco, ast.Call):
                raise fail(f"@{_name_of(deco)} must be called, e.g. @{_name_of(deco)}(\"/\")", deco.lineno)
            verb = _name_of(deco.func)

            has_path_arg = bool(deco.args) or any(kw.arg == "path" for kw in deco.keywords)
            path = _literal_arg(deco, "path")
            if has_path_arg and path is None:
                raise fail("Route path must be a string literal", deco.lineno)

            full_path = normalize_path(base_path, path or "")
            try:
                params, bindings = classify_params(self._param_sources(item), verb, full_path)
            except BindingError as e:
                raise fail(e.message) from e

            inherited = owner is not info
            returns = describe_annotation(item.returns) if item.returns is not None else None
            matches.append(RouteMatch(
                class_name=class_name,
                method_name=name,
                decorator=verb,
                http_method=verb,
                path=path or "",
                base_path=base_path,
                params=params,
                bindings=bindings,
                return_type=returns.text if returns else "",
                unwrapped_return_type=unwrap_return(returns),
                is_async=isinstance(item, ast.AsyncFunctionDef),
                file=owner.file,
                line=item.lineno,
                inherited_from=owner.node.name if inherited else None,
                class_file=info.file if inherited else None,
            ))
        return matches

    def _param_sources(self, func: Union[ast.FunctionDef, ast.AsyncFunctionDef]) -> List[ParamSource]:
        args = func.args
        positional = list(args.posonlyargs) + list(args.args)
        defaults_from = len(positional) - len(args.defaults)
        sources = [
            ParamSource(
                name=a.arg,
                annotation=describe_annotation(a.annotation) if a.annotation is not None else None,
                has_default=i >= defaults_from,
            )
            for i, a in enumerate(positional)
        ]
        sources.extend(
            ParamSource(
                name=a.arg,
                annotation=describe_annotation(a.annotation) if a.annotation is not None else None,
                has_default=d is not None,
            )
            for a, d in zip(args.kwonlyargs, args.kw_defaults)
        )
        # Drop the instance parameter
        return sources[1:]


class DescriptorAnalyzer:
    """
    Declarative route descriptors as analyzer input.

    Each descriptor is a mapping::

        {"class": "UsersController", "method": "get", "httpMethod": "GET",
         "path": "/{id}", "basePath": "/users",
         "params": [{"name": "id", "type": "int"}], "returns": "User"}
    """

    def analyze(self, source: Iterable[Dict[str, Any]], file: Optional[str] = None) -> List[RouteMatch]:
        matches = []
        for descriptor in source:
            class_name = descriptor["class"]
            method_name = descriptor["method"]
            verb = str(descriptor.get("httpMethod", descriptor.get("http_method", ""))).upper()
            if verb not in VERB_DECORATORS:
                raise AnalyzerError(
                    f"Unknown HTTP method {verb!r}",
                    file=file, class_name=class_name, method_name=method_name,
                )
            path = descriptor.get("path", "")
            if not isinstance(path, str):
                raise AnalyzerError(
                    "Route path must be a string",
                    file=file, class_name=class_name, method_name=method_name,
                )
            base_path = descriptor.get("basePath", descriptor.get("base_path", ""))
            sources = [
                ParamSource(
                    name=p["name"],
                    annotation=describe_annotation_text(p["type"]) if p.get("type") else None,
                    has_default=bool(p.get("optional", False)),
                )
                for p in descriptor.get("params", [])
            ]
            try:
                params, bindings = classify_params(sources, verb, normalize_path(base_path, path))
            except BindingError as e:
                raise AnalyzerError(
                    e.message, file=file, class_name=class_name, method_name=method_name,
                ) from e

            returns_text = descriptor.get("returns") or ""
            returns = describe_annotation_text(returns_text) if returns_text else None
            matches.append(RouteMatch(
                class_name=class_name,
                method_name=method_name,
                decorator=verb,
                http_method=verb,
                path=path,
                base_path=base_path,
                params=params,
                bindings=bindings,
                return_type=returns_text,
                unwrapped_return_type=unwrap_return(returns),
                is_async=bool(descriptor.get("async", False)),
                file=file,
            ))
        return matches


def analyze_files(
    paths: Iterable[Union[str, Path]],
    analyzer: Optional[StaticRouteAnalyzer] = None,
) -> List[RouteMatch]:
    """Analyze several source files together, in a deterministic (sorted) order."""
    analyzer = analyzer or StaticRouteAnalyzer()
    ordered = sorted({str(Path(p)) for p in paths})
    return analyzer.analyze_sources([(Path(p).read_text(encoding="utf-8"), p) for p in ordered])
