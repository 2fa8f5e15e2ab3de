"""
OpenAPI generation.
"""

import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional
from uuid import UUID

import pytest

from adorn.config import AdornConfig
from adorn.controller import (
    DELETE,
    GET,
    POST,
    Controller,
    OpenAPIConfig,
    Responses,
    SchemaGenerator,
    Security,
    SecurityScheme,
    Summary,
    Validate,
)
from adorn.controller.openapi import merge_components, render_docs_html
from adorn.manifest import generate_openapi
from adorn.schema import NativeSchemaProvider, PydanticSchemaProvider

from tests.conftest import build_routes


s = NativeSchemaProvider()


@dataclass
class Address:
    street: str
    city: Optional[str] = None


@dataclass
class Customer:
    id: int
    name: str
    address: Address
    tags: List[str] = field(default_factory=list)


@dataclass
class NewCustomer:
    name: str
    address: Address


class CustomersController(Controller):
    prefix = "/customers"
    tags = ["customers"]

    @GET("/")
    def list_customers(self, limit: int = 10, active: Optional[bool] = None) -> List[Customer]:
        return []

    @GET("/{id}")
    @Summary("Fetch one customer", "Looks the customer up by id")
    @Responses({404: "No such customer"})
    def get_customer(self, id: int) -> Customer:
        return Customer(id, "c", Address("s"))

    @POST("/")
    def create_customer(self, body: NewCustomer) -> Customer:
        return Customer(1, body.name, body.address)

    @DELETE("/{id}")
    def delete_customer(self, id: int) -> None:
        return None

    @GET("/{id}/refs/{ref}")
    def by_ref(self, id: int, ref: UUID) -> dict:
        return {}


class SearchController(Controller):
    prefix = "/search"

    @GET("/")
    @Validate(query=s.object({"term": s.min_length(s.string(), 2), "page": s.optional(s.int(s.number()))}))
    def search(self, query: dict):
        return query


class Reports(Controller):
    prefix = "/reports"

    @GET("/")
    def listing(self):
        return []


class ReportsController(Controller):
    prefix = "/v2/reports"

    @GET("/")
    def listing(self):
        return []


BEARER = {"type": "http", "scheme": "bearer", "bearerFormat": "JWT"}


@SecurityScheme("bearer", BEARER)
@Security("bearer")
class AccountsController(Controller):
    prefix = "/accounts"

    @GET("/")
    def listing(self):
        return []

    @GET("/health")
    @Security([])
    def health(self):
        return {"ok": True}

    @POST("/")
    @Security("oauth", ["accounts:write"])
    @Security({"apiKey": []})
    def create(self, body: dict):
        return body


@SecurityScheme("bearer", {"type": "http", "scheme": "basic"})
class LegacyAccountsController(Controller):
    prefix = "/legacy"

    @GET("/")
    def listing(self):
        return []


@pytest.fixture(scope="module")
def document():
    return SchemaGenerator().generate(build_routes(CustomersController, SearchController))


def _ref(name):
    return {"$ref": f"#/components/schemas/{name}"}


# ============================================================================
# Document
# ============================================================================

class TestDocument:

    def test_header(self, document):
        assert document["openapi"] == "3.1.0"
        assert document["info"] == {"title": "Adorn API", "version": "1.0.0"}
        assert document["tags"] == [{"name": "customers"}]

    def test_paths_sorted(self, document):
        assert list(document["paths"]) == [
            "/customers",
            "/customers/{id}",
            "/customers/{id}/refs/{ref}",
            "/search",
        ]
        assert list(document["paths"]["/customers/{id}"]) == ["delete", "get"]

    def test_operation_metadata(self, document):
        op = document["paths"]["/customers/{id}"]["get"]
        assert op["operationId"] == "Customers_get_customer"
        assert op["summary"] == "Fetch one customer"
        assert op["description"] == "Looks the customer up by id"
        assert op["tags"] == ["customers"]

    def test_path_parameters(self, document):
        params = document["paths"]["/customers/{id}/refs/{ref}"]["get"]["parameters"]
        assert params == [
            {"name": "id", "in": "path", "required": True, "schema": {"type": "integer"}},
            {"name": "ref", "in": "path", "required": True, "schema": {"type": "string", "format": "uuid"}},
        ]

    def test_query_parameters(self, document):
        params = document["paths"]["/customers"]["get"]["parameters"]
        assert [(p["name"], p["in"], p["required"]) for p in params] == [
            ("limit", "query", False),
            ("active", "query", False),
        ]
        assert params[0]["schema"] == {"type": "integer"}
        assert params[1]["schema"] == {"type": "boolean"}

    def test_contract_query_parameters(self, document):
        params = document["paths"]["/search"]["get"]["parameters"]
        assert params == [
            {"name": "term", "in": "query", "required": True, "schema": {"type": "string", "minLength": 2}},
            {"name": "page", "in": "query", "required": False, "schema": {"type": "integer"}},
        ]

    def test_request_body_component(self, document):
        body = document["paths"]["/customers"]["post"]["requestBody"]
        assert body == {"required": True, "content": {"application/json": {"schema": _ref("NewCustomer")}}}

    def test_success_responses(self, document):
        paths = document["paths"]
        created = paths["/customers"]["post"]["responses"]["201"]
        assert created == {
            "description": "Created",
            "content": {"application/json": {"schema": _ref("Customer")}},
        }
        listed = paths["/customers"]["get"]["responses"]["200"]
        assert listed["content"]["application/json"]["schema"] == {"type": "array", "items": _ref("Customer")}
        assert paths["/customers/{id}"]["delete"]["responses"]["204"] == {"description": "No Content"}

    def test_error_responses(self, document):
        responses = document["paths"]["/customers/{id}"]["get"]["responses"]
        assert list(responses) == ["200", "400", "404"]
        assert responses["400"]["content"]["application/json"]["schema"] == _ref("ValidationError")
        assert responses["404"] == {
            "description": "No such customer",
            "content": {"application/problem+json": {"schema": _ref("ProblemDetails")}},
        }

    def test_components(self, document):
        schemas = document["components"]["schemas"]
        assert list(schemas) == ["Customer", "NewCustomer", "ProblemDetails", "ValidationError"]
        customer = schemas["Customer"]
        assert customer["required"] == ["id", "name", "address"]
        # nested models are inlined
        assert customer["properties"]["address"] == {
            "type": "object",
            "properties": {
                "street": {"type": "string"},
                "city": {"anyOf": [{"type": "string"}, {"type": "null"}]},
            },
            "additionalProperties": True,
            "required": ["street"],
        }
        assert customer["properties"]["tags"] == {"type": "array", "items": {"type": "string"}}

    def test_plain_json_data(self, document):
        assert json.loads(json.dumps(document)) == document


# ============================================================================
# Generator behaviour
# ============================================================================

class TestGenerator:

    def test_operation_ids_are_unique(self):
        doc = SchemaGenerator().generate(build_routes(Reports, ReportsController))
        ids = [doc["paths"][p]["get"]["operationId"] for p in ("/reports", "/v2/reports")]
        assert ids == ["Reports_listing", "Reports_listing_2"]

    def test_config_info(self):
        config = OpenAPIConfig(title="Shop", version="2.0", description="Store API",
                               servers=[{"url": "https://api.example.com"}])
        doc = SchemaGenerator(config=config).generate(build_routes(SearchController))
        assert doc["info"] == {"title": "Shop", "version": "2.0", "description": "Store API"}
        assert doc["servers"] == [{"url": "https://api.example.com"}]

    def test_config_from_dict(self):
        config = OpenAPIConfig.from_dict({"title": "T", "unknown": 1, "_private": 2})
        assert config.title == "T"
        assert not hasattr(config, "unknown")

    def test_pydantic_provider_equivalent(self):
        routes = build_routes(CustomersController, SearchController)
        native = SchemaGenerator(NativeSchemaProvider()).generate(routes)
        pydantic = SchemaGenerator(PydanticSchemaProvider()).generate(routes)
        assert pydantic == native

    def test_generate_openapi_uses_config(self):
        routes = build_routes(CustomersController)
        doc = generate_openapi(routes, AdornConfig(openapi_title="Config Title", schema_provider="pydantic"))
        assert doc["info"]["title"] == "Config Title"
        assert "/customers" in doc["paths"]


class TestSecurity:

    @pytest.fixture
    def accounts(self):
        return SchemaGenerator().generate(build_routes(AccountsController))

    def test_class_requirement_applies_to_methods(self, accounts):
        assert accounts["paths"]["/accounts"]["get"]["security"] == [{"bearer": []}]

    def test_empty_requirement_marks_method_public(self, accounts):
        assert accounts["paths"]["/accounts/health"]["get"]["security"] == []

    def test_method_requirements_replace_class_ones(self, accounts):
        # Decorators apply bottom-up
        assert accounts["paths"]["/accounts"]["post"]["security"] == [
            {"apiKey": []},
            {"oauth": ["accounts:write"]},
        ]

    def test_schemes_published(self, accounts):
        assert accounts["components"]["securitySchemes"] == {"bearer": BEARER}

    def test_absent_without_declarations(self):
        doc = SchemaGenerator().generate(build_routes(SearchController))
        assert "security" not in doc["paths"]["/search"]["get"]
        assert "securitySchemes" not in doc["components"]

    def test_scheme_redefinition_later_wins(self, caplog):
        routes = build_routes(AccountsController, LegacyAccountsController)
        with caplog.at_level(logging.WARNING, logger="adorn.controller.openapi"):
            doc = SchemaGenerator().generate(routes)
        assert doc["components"]["securitySchemes"]["bearer"] == {"type": "http", "scheme": "basic"}
        assert "security scheme 'bearer' redefined by" in caplog.text

    def test_manifest_entry(self):
        routes = {r.handler_name: r for r in build_routes(AccountsController)}
        assert routes["listing"].to_dict()["security"] == [{"bearer": []}]
        assert routes["listing"].security_schemes == {"bearer": BEARER}

    def test_scheme_needs_a_class(self):
        with pytest.raises(TypeError, match="can only decorate a class"):
            SecurityScheme("bearer", BEARER)(lambda: None)


class TestMergeComponents:

    def test_later_wins_with_warning(self, caplog):
        target = {"User": {"type": "object"}}
        with caplog.at_level(logging.WARNING, logger="adorn.controller.openapi"):
            merge_components(target, {"User": {"type": "string"}, "Item": {}}, "shop:Users")
        assert target == {"User": {"type": "string"}, "Item": {}}
        assert "'User' redefined by shop:Users" in caplog.text

    def test_identical_schema_is_silent(self, caplog):
        target = {"User": {"type": "object"}}
        with caplog.at_level(logging.WARNING, logger="adorn.controller.openapi"):
            merge_components(target, {"User": {"type": "object"}})
        assert caplog.text == ""


class TestDocsPage:

    def test_points_at_json_path(self):
        html = render_docs_html(OpenAPIConfig(title="Shop <API>", openapi_json_path="/api/openapi.json"))
        assert "swagger-ui-bundle.js" in html
        assert '"/api/openapi.json"' in html
        assert "Shop &lt;API&gt;" in html
