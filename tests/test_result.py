from outreach_engine.services.result import ErrorCode, Result


class TestResultSuccess:
    def test_success_creates_ok_result(self):
        result = Result.success("test value")
        assert result.ok is True
        assert result.value == "test value"
        assert result.error is None

    def test_success_to_dict(self):
        assert Result.success({"key": "value"}).to_dict() == {"ok": True}


class TestResultFailure:
    def test_failure_creates_not_ok_result(self):
        result = Result.failure("Contact is DND", "contact_dnd")
        assert result.ok is False
        assert result.error == "Contact is DND"
        assert result.error_code == "contact_dnd"
        assert result.value is None

    def test_failure_default_code(self):
        assert Result.failure("Error message").error_code == "unknown"

    def test_failure_to_dict(self):
        assert Result.failure("missing", "not_found").to_dict() == {
            "ok": False,
            "error": "missing",
            "error_code": "not_found",
        }


class TestResultUnwrapOr:
    def test_unwrap_or_returns_value_on_success(self):
        assert Result.success("actual value").unwrap_or("default") == "actual value"

    def test_unwrap_or_returns_default_on_failure(self):
        assert Result.failure("Error", "code").unwrap_or("default") == "default"


class TestResultHttpStatus:
    def test_success_is_200(self):
        assert Result.success({}).http_status == 200

    def test_known_codes(self):
        assert Result.failure("missing", ErrorCode.NOT_FOUND).http_status == 404
        assert Result.failure("dnd", ErrorCode.CONTACT_DND).http_status == 409
        assert Result.failure("dnd", ErrorCode.ALREADY_DND).http_status == 409

    def test_unknown_code_is_bad_request(self):
        assert Result.failure("odd").http_status == 400
