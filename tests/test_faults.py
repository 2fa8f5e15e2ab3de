"""
Fault taxonomy and error normalization.
"""

import logging

import pytest

from adorn.faults import (
    AnalyzerError,
    ConfigInvalidFault,
    ErrorNormalizer,
    Fault,
    FaultDomain,
    Forbidden,
    HttpError,
    Issue,
    MethodNotAllowed,
    NotFound,
    ProblemDetails,
    RegistryFrozenError,
    Severity,
    ValidationError,
    error_headers,
    is_http_error_like,
)


# ============================================================================
# Fault types
# ============================================================================

class TestFaults:

    def test_fault_requires_code_message_domain(self):
        with pytest.raises(TypeError):
            Fault(code="X")

    def test_fault_str_and_dict(self):
        fault = Fault(code="MANIFEST_EMPTY", message="No controllers", domain=FaultDomain.ANALYSIS)
        assert str(fault) == "[MANIFEST_EMPTY] No controllers"
        assert fault.severity is Severity.FATAL
        assert fault.is_fatal
        assert fault.to_dict()["domain"] == "analysis"

    def test_domain_equality(self):
        assert FaultDomain.HTTP == "http"
        assert FaultDomain("http") == FaultDomain.HTTP

    def test_issue_to_dict(self):
        assert Issue(source="query", message="Required", path=["page"]).to_dict() == {
            "source": "query", "path": ["page"], "message": "Required",
        }
        assert Issue(source="body", message="Expected object, received array").to_dict() == {
            "source": "body", "message": "Expected object, received array",
        }

    def test_validation_error(self):
        error = ValidationError.for_field("params", "id", "Expected integer, received 'abc'")
        assert error.code == "VALIDATION_ERROR"
        assert error.message == "Params validation failed"
        assert error.public
        assert error.severity is Severity.INFO
        assert error.issues[0].path == ["id"]

    def test_validation_error_unknown_source(self):
        with pytest.raises(ValueError, match="Unknown validation source"):
            ValidationError("cookies", [])

    def test_http_error_defaults(self):
        error = HttpError(404)
        assert error.code == "NOT_FOUND"
        assert error.message == "Not Found"
        assert error.expose
        assert not HttpError(502).expose
        assert HttpError(502).severity is Severity.ERROR

    def test_method_not_allowed(self):
        error = MethodNotAllowed(["GET", "DELETE"])
        assert error.headers == {"allow": "DELETE, GET"}
        assert error.details == {"allowed": ["DELETE", "GET"]}

    def test_analyzer_error_location(self):
        error = AnalyzerError("Dynamic path", file="users.py", line=12, class_name="Users", method_name="get")
        assert error.message == "users.py:12 Users.get: Dynamic path"
        assert error.reason == "Dynamic path"
        assert AnalyzerError("bare").message == "bare"

    def test_registry_and_config_faults(self):
        assert RegistryFrozenError("add a route", "frozen").message == "Cannot add a route while registry is frozen"
        fault = ConfigInvalidFault("docs_path", "expected str, got int")
        assert fault.code == "CONFIG_INVALID"
        assert "docs_path" in fault.message

    def test_problem_details(self):
        body = ProblemDetails(title="Internal Server Error", status=500, extensions={"traceId": "t1"}).to_dict()
        assert body == {"traceId": "t1", "title": "Internal Server Error", "status": 500}


# ============================================================================
# Normalizer
# ============================================================================

class Gone(Exception):
    status = 410


class TestErrorNormalizer:

    def test_validation_error(self):
        status, body = ErrorNormalizer().normalize(
            ValidationError("query", [Issue(source="query", path=["page"], message="Required")])
        )
        assert status == 400
        assert body == {
            "error": "ValidationError",
            "issues": [{"source": "query", "path": ["page"], "message": "Required"}],
        }

    def test_exposed_http_error(self):
        status, body = ErrorNormalizer().normalize(Forbidden("Guard is_admin rejected the request"))
        assert status == 403
        assert body == {"error": "FORBIDDEN", "message": "Guard is_admin rejected the request"}

    def test_details_included(self):
        _, body = ErrorNormalizer().normalize(HttpError(422, "Bad", code="BAD", details={"field": "x"}))
        assert body["details"] == {"field": "x"}

    def test_unexposed_server_error(self, caplog):
        with caplog.at_level(logging.ERROR, logger="adorn.faults.normalizer"):
            status, body = ErrorNormalizer().normalize(HttpError(502, "upstream secret", details={"k": 1}))
        assert status == 502
        assert body == {"error": "Bad Gateway", "message": "Bad Gateway"}
        assert "HTTP 502" in caplog.text

    def test_explicitly_hidden_client_error(self):
        _, body = ErrorNormalizer().normalize(NotFound("user 5 missing", expose=False))
        assert body == {"error": "Not Found", "message": "Not Found"}

    def test_http_error_like(self):
        assert is_http_error_like(Gone())
        assert not is_http_error_like(ValueError())
        status, body = ErrorNormalizer().normalize(Gone("moved away"))
        assert status == 410
        assert body == {"error": "Gone", "message": "moved away"}

    def test_bool_status_is_not_http(self):
        class Flagged(Exception):
            status = True
        assert not is_http_error_like(Flagged())

    def test_unknown_error(self, caplog):
        with caplog.at_level(logging.ERROR, logger="adorn.faults.normalizer"):
            status, body = ErrorNormalizer().normalize(KeyError("token=abc"), instance="/users/1")
        assert status == 500
        assert body == {"title": "Internal Server Error", "status": 500, "instance": "/users/1"}
        assert "Unhandled error at /users/1" in caplog.text

    def test_include_detail(self):
        _, body = ErrorNormalizer(include_detail=True).normalize(KeyError("token=abc"))
        assert body["detail"] == "KeyError"
        assert "token" not in str(body)


class TestErrorHeaders:

    def test_allow_header(self):
        assert error_headers(MethodNotAllowed(["POST"])) == {"allow": "POST"}

    def test_plain_errors_have_none(self):
        error = ValueError("x")
        error.headers = {"x-leak": "1"}
        assert error_headers(error) == {}
        assert error_headers(HttpError(400)) == {}
