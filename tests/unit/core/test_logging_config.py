"""
Unit tests for log sanitization.
"""
from app.core.logging_config import _sanitize_data


class TestSanitizeData:

    def test_masks_sensitive_keys(self):
        data = {
            "access_token": "abc",
            "refresh_token": "def",
            "client_secret": "ghi",
            "Authorization": "Bearer xyz",
            "integration_id": "1234",
        }

        sanitized = _sanitize_data(data)

        assert sanitized["access_token"] == "***MASKED***"
        assert sanitized["refresh_token"] == "***MASKED***"
        assert sanitized["client_secret"] == "***MASKED***"
        assert sanitized["Authorization"] == "***MASKED***"
        assert sanitized["integration_id"] == "1234"

    def test_masks_nested_values(self):
        sanitized = _sanitize_data({"payload": [{"token": "t"}, {"name": "ok"}]})
        assert sanitized == {"payload": [{"token": "***MASKED***"}, {"name": "ok"}]}

    def test_masks_bearer_strings(self):
        assert _sanitize_data("Bearer secret-value") == "Bearer ***MASKED***"

    def test_masks_url_credentials(self):
        assert _sanitize_data("redis://:hunter2@cache:6379/0") == "redis://:***@cache:6379/0"

    def test_leaves_plain_strings(self):
        assert _sanitize_data("Sync completed") == "Sync completed"
