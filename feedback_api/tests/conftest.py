"""Shared fixtures for feedback-layer tests."""

import pytest


@pytest.fixture(autouse=True)
def _reset_global_state():
    """Reset all module-level singletons and caches between tests."""
    yield

    # 1. Settings LRU cache
    from feedback_api.config import get_settings

    get_settings.cache_clear()

    # 2. Blob storage singletons
    import feedback_api.services.blob_storage as blob_mod

    blob_mod._feedback_client = None
    blob_mod._screenshot_client = None

    # 3. HTTP client singleton
    import feedback_api.services.http_client as http_mod

    http_mod._client = None

    # 4. Rate limiter state
    import feedback_api.services.rate_limit as rl_mod

    rl_mod._limiter = None

    # 5. Notification dispatcher
    import feedback_api.services.notifications as notify_mod

    notify_mod._dispatcher = None

    # 6. Health check cache
    import feedback_api.main as main_mod

    main_mod._health_cache = None


@pytest.fixture
def mock_settings(monkeypatch):
    """Provide a Settings object with safe test defaults."""
    from feedback_api.config import Settings, get_settings

    test_settings = Settings(
        rate_limit_max=10,
        rate_limit_window_seconds=60,
        max_screenshot_bytes=1024,
        ai_api_key="test-ai-key",
        ai_openai_endpoint="https://ai.test/v1/",
        ai_model="test-model",
        ai_timeout_seconds=5,
        azure_storage_account="teststorage",
        azure_storage_connection_string="",
        azure_feedback_container="test-feedback",
        azure_screenshot_container="test-screenshots",
        managed_identity_client_id="test-client-id",
        resend_api_key="",
        feedback_notify_email="",
    )

    get_settings.cache_clear()
    monkeypatch.setattr("feedback_api.config.get_settings", lambda: test_settings)

    # Patch get_settings in all modules that import it directly
    # (from feedback_api.config import get_settings creates a local binding
    # that the feedback_api.config monkeypatch above does not affect)
    for mod_path in [
        "feedback_api.main",
        "feedback_api.routers.feedback",
        "feedback_api.services.blob_storage",
        "feedback_api.services.ingestion",
        "feedback_api.services.llm",
        "feedback_api.services.notifications",
        "feedback_api.services.rate_limit",
    ]:
        monkeypatch.setattr(f"{mod_path}.get_settings", lambda: test_settings)

    return test_settings
