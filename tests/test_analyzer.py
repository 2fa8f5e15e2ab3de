"""
Static route analysis.

Tests StaticRouteAnalyzer on source text, DescriptorAnalyzer and
analyze_files.
"""

import textwrap

import pytest

from adorn.controller import (
    ArgBinding,
    BindingKind,
    DescriptorAnalyzer,
    RouteMatch,
    ScalarHint,
    StaticRouteAnalyzer,
    analyze_files,
)
from adorn.controller.analyzer import describe_annotation_text, unwrap_return
from adorn.faults import AnalyzerError


def analyze(source: str):
    return StaticRouteAnalyzer().analyze(textwrap.dedent(source), "users.py")


USERS = '''
from typing import Annotated, Awaitable, Optional
from uuid import UUID

from adorn import Controller, GET, POST, PATCH, Query, State


class UsersController(Controller):
    prefix = "/users"

    @GET("/{id}")
    async def get(self, id: int) -> "User":
        ...

    @GET("/by-uuid/{user_uuid}")
    async def by_uuid(self, user_uuid: UUID):
        ...

    @GET("/")
    def search(self, name: Optional[str] = None, page: int = 1, ratio: float = 1.0):
        ...

    @POST("/")
    async def create(self, ctx, payload: "CreateUser") -> Awaitable[User]:
        ...

    @PATCH("/{user_id}/flags/{flag}")
    async def toggle(self, user_id: float, flag, on: bool, who: Annotated[str, State("user")]):
        ...

    async def not_a_route(self):
        ...
'''


# ============================================================================
# RouteMatch extraction
# ============================================================================

class TestStaticRouteAnalyzer:

    def test_routes_in_source_order(self):
        matches = analyze(USERS)
        assert [m.method_name for m in matches] == ["get", "by_uuid", "search", "create", "toggle"]
        assert all(m.class_name == "UsersController" for m in matches)
        assert all(m.file == "users.py" for m in matches)

    def test_verb_and_paths(self):
        get = analyze(USERS)[0]
        assert get.http_method == "GET"
        assert get.decorator == "GET"
        assert get.path == "/{id}"
        assert get.base_path == "/users"
        assert get.full_path == "/users/{id}"
        assert get.line is not None

    def test_path_token_hints(self):
        matches = {m.method_name: m for m in analyze(USERS)}
        assert matches["get"].params[0].hint is ScalarHint.INT
        assert matches["by_uuid"].params[0].hint is ScalarHint.UUID

        toggle = matches["toggle"].params
        # float on an id-like name follows the integer-identifier convention
        assert toggle[0].hint is ScalarHint.INT
        # unannotated path token is a string
        assert toggle[1].hint is ScalarHint.STRING
        assert toggle[1].type_text == ""

    def test_query_bindings(self):
        search = {m.method_name: m for m in analyze(USERS)}["search"]
        assert search.bindings == [
            ArgBinding(0, BindingKind.QUERY, "name", param="name"),
            ArgBinding(1, BindingKind.QUERY, "page", param="page"),
            ArgBinding(2, BindingKind.QUERY, "ratio", param="ratio"),
        ]
        assert [p.hint for p in search.params] == [ScalarHint.STRING, ScalarHint.INT, ScalarHint.NUMBER]
        assert all(p.optional for p in search.params)

    def test_context_and_body_bindings(self):
        create = {m.method_name: m for m in analyze(USERS)}["create"]
        assert [b.kind for b in create.bindings] == [BindingKind.CONTEXT, BindingKind.BODY]
        assert create.bindings[1].name is None

    def test_marker_and_scalar_bindings(self):
        toggle = {m.method_name: m for m in analyze(USERS)}["toggle"]
        assert toggle.bindings == [
            ArgBinding(0, BindingKind.PARAMS, "user_id", param="user_id"),
            ArgBinding(1, BindingKind.PARAMS, "flag", param="flag"),
            ArgBinding(2, BindingKind.QUERY, "on", param="on"),
            ArgBinding(3, BindingKind.STATE, "user", param="who"),
        ]
        assert toggle.params[2].hint is ScalarHint.BOOLEAN

    def test_return_types(self):
        matches = {m.method_name: m for m in analyze(USERS)}
        assert matches["get"].return_type == "'User'"
        assert matches["create"].return_type == "Awaitable[User]"
        assert matches["create"].unwrapped_return_type == "User"
        assert matches["create"].is_async
        assert not matches["search"].is_async
        assert matches["by_uuid"].return_type == ""

    def test_decorated_plain_class(self):
        matches = analyze('''
            @controller("/orders")
            class Orders:
                @GET("/{order_id}")
                def get(self, order_id: int):
                    ...
        ''')
        assert matches[0].full_path == "/orders/{order_id}"

    def test_bare_controller_decorator(self):
        matches = analyze('''
            @controller
            class Root:
                @GET("/health")
                def health(self):
                    ...
        ''')
        assert matches[0].full_path == "/health"

    def test_non_controllers_ignored(self):
        assert analyze('''
            class Helper:
                @GET("/")
                def index(self):
                    ...
        ''') == []

    def test_route_match_round_trip(self):
        match = analyze(USERS)[-1]
        assert RouteMatch.from_dict(match.to_dict()) == match


# ============================================================================
# Errors
# ============================================================================

class TestAnalyzerErrors:

    def test_syntax_error(self):
        with pytest.raises(AnalyzerError, match="Cannot parse source") as exc:
            analyze("class Broken(:\n")
        assert exc.value.file == "users.py"

    def test_multiple_verbs(self):
        with pytest.raises(AnalyzerError, match="Multiple HTTP verb decorators") as exc:
            analyze('''
                class C(Controller):
                    @GET("/")
                    @POST("/")
                    def both(self):
                        ...
            ''')
        assert exc.value.class_name == "C"
        assert exc.value.method_name == "both"

    def test_dynamic_path(self):
        with pytest.raises(AnalyzerError, match="string literal"):
            analyze('''
                PATH = "/x"

                class C(Controller):
                    @GET(PATH)
                    def index(self):
                        ...
            ''')

    def test_dynamic_prefix(self):
        with pytest.raises(AnalyzerError, match="prefix must be a string literal"):
            analyze('''
                class C(Controller):
                    prefix = "/a" + "/b"
            ''')

    def test_uncalled_verb(self):
        with pytest.raises(AnalyzerError, match="must be called"):
            analyze('''
                class C(Controller):
                    @GET
                    def index(self):
                        ...
            ''')

    def test_unbindable_parameter(self):
        with pytest.raises(AnalyzerError, match="cannot be bound"):
            analyze('''
                class C(Controller):
                    @GET("/")
                    def index(self, mystery):
                        ...
            ''')

    def test_unmatched_token(self):
        with pytest.raises(AnalyzerError, match=r"\{slug\}"):
            analyze('''
                class C(Controller):
                    @GET("/{slug}")
                    def index(self):
                        ...
            ''')

    def test_error_message_has_location(self):
        with pytest.raises(AnalyzerError) as exc:
            analyze('''
                class C(Controller):
                    @GET
                    def index(self):
                        ...
            ''')
        assert str(exc.value.message).startswith("users.py:")
        assert "C.index" in exc.value.message


# ============================================================================
# Annotation helpers
# ============================================================================

class TestAnnotations:

    @pytest.mark.parametrize("text,base,optional", [
        ("Optional[int]", "int", True),
        ("int | None", "int", True),
        ("Union[str, None]", "str", True),
        ("Annotated[Optional[str], Query('q')]", "str", True),
        ("List[int]", "List[int]", False),
        ("'User'", "User", False),
    ])
    def test_describe(self, text, base, optional):
        info = describe_annotation_text(text)
        assert info.base == base
        assert info.optional is optional

    def test_marker_name(self):
        info = describe_annotation_text("Annotated[str, Header('x-request-id')]")
        assert info.marker == "Header"
        assert info.marker_name == "x-request-id"

    def test_unwrap_only_one_layer(self):
        info = describe_annotation_text("Coroutine[Any, Any, Awaitable[int]]")
        assert unwrap_return(info) == "Awaitable[int]"
        assert unwrap_return(None) == ""


# ============================================================================
# Other analyzer inputs
# ============================================================================

class TestDescriptorAnalyzer:

    def test_descriptors(self):
        (match,) = DescriptorAnalyzer().analyze([{
            "class": "UsersController",
            "method": "get",
            "httpMethod": "get",
            "path": "/{id}",
            "basePath": "/users",
            "params": [{"name": "id", "type": "int"}],
            "returns": "Promise[User]",
        }])
        assert match.http_method == "GET"
        assert match.full_path == "/users/{id}"
        assert match.params[0].hint is ScalarHint.INT
        assert match.return_type == "Promise[User]"
        assert match.unwrapped_return_type == "Promise[User]"

    def test_unknown_method(self):
        with pytest.raises(AnalyzerError, match="Unknown HTTP method"):
            DescriptorAnalyzer().analyze([{"class": "C", "method": "m", "httpMethod": "TRACE"}])


class TestAnalyzeFiles:

    def test_sorted_and_deterministic(self, tmp_path):
        b = tmp_path / "b.py"
        a = tmp_path / "a.py"
        b.write_text('class B(Controller):\n    @GET("/b")\n    def b(self):\n        ...\n')
        a.write_text('class A(Controller):\n    @GET("/a")\n    def a(self):\n        ...\n')

        matches = analyze_files([b, a, b])
        assert [m.class_name for m in matches] == ["A", "B"]
        assert analyze_files([a, b]) == matches

    def test_bases_resolved_across_files(self, tmp_path):
        base = tmp_path / "base.py"
        child = tmp_path / "child.py"
        base.write_text(
            'class Base(Controller):\n    prefix = "/base"\n\n'
            '    @GET("/ping")\n    def ping(self):\n        ...\n'
        )
        child.write_text(
            'from base import Base\n\n\nclass Middle(Base):\n    pass\n\n\n'
            'class Leaf(Middle):\n    prefix = "/leaf"\n\n'
            '    @GET("/{id}")\n    def get(self, id: int):\n        ...\n'
        )

        matches = {m.key: m for m in analyze_files([child, base])}
        assert matches[("Middle", "ping")].full_path == "/base/ping"
        assert matches[("Leaf", "ping")].full_path == "/leaf/ping"
        assert matches[("Leaf", "ping")].file == str(base)
        assert matches[("Leaf", "ping")].class_file == str(child)
        assert matches[("Leaf", "get")].inherited_from is None

    def test_plain_base_is_not_a_controller(self, tmp_path):
        path = tmp_path / "mixin.py"
        path.write_text(
            'class Mixin:\n    @GET("/x")\n    def x(self):\n        ...\n\n\n'
            'class Thing(Mixin):\n    pass\n\n\n'
            'class Things(Mixin, Controller):\n    prefix = "/things"\n'
        )
        assert [m.key for m in analyze_files([path])] == [("Things", "x")]
