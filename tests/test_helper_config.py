import pytest

from shared.helper.HelperConfig import DEFAULT_TIMEZONE
from shared.models.exceptions import BackendRequestError


class TestHelperConfig:
    def test_empty_value_counts_as_unset(self, env, helper_config):
        env.setenv("QUEUE_NAME", "  ")
        assert helper_config.get_string_val("QUEUE_NAME", default="indexing") == "indexing"

    def test_missing_mandatory_key(self, env, helper_config):
        env.delenv("APP_API_KEY")
        with pytest.raises(ValueError, match="APP_API_KEY"):
            helper_config.get_string_val("app_api_key")

    def test_number_parsing(self, env, helper_config):
        env.setenv("RETRIEVAL_MIN_SCORE", "0.45")
        env.setenv("RETRIEVAL_TOP_K", "12")
        assert helper_config.get_number_val("RETRIEVAL_MIN_SCORE") == 0.45
        assert helper_config.get_number_val("RETRIEVAL_TOP_K") == 12
        env.setenv("RETRIEVAL_TOP_K", "many")
        with pytest.raises(ValueError, match="not a valid number"):
            helper_config.get_number_val("RETRIEVAL_TOP_K")

    def test_int_minimum(self, env, helper_config):
        env.setenv("WORKER_CONCURRENCY", "0")
        assert helper_config.get_int_val("WORKER_CONCURRENCY", default=2, minimum=1) == 1
        assert helper_config.get_int_val("EMBED_CONCURRENCY", default=4) == 4

    def test_bool_and_list(self, env, helper_config):
        env.setenv("WORKER_EMBEDDED", "yes")
        env.setenv("RETRIEVAL_SOURCES", "[report, faq]")
        assert helper_config.get_bool_val("WORKER_EMBEDDED", default=False) is True
        assert helper_config.get_list_val("RETRIEVAL_SOURCES") == ["report", "faq"]
        env.setenv("RETRIEVAL_SOURCES", "report,faq")
        with pytest.raises(ValueError, match="format"):
            helper_config.get_list_val("RETRIEVAL_SOURCES")

    def test_timezone_default(self, env, helper_config):
        env.delenv("TIMEZONE")
        assert helper_config.get_timezone_name() == DEFAULT_TIMEZONE


class TestBackendRequestError:
    @pytest.mark.parametrize("status, retryable", [(400, False), (404, False), (429, True), (500, True), (503, True)])
    def test_retryable_statuses(self, status, retryable):
        error = BackendRequestError(url="http://qdrant.test/collections/x", status_code=status)
        assert error.retryable is retryable
        assert f"status {status}" in str(error)
