from config import APIConfig


def test_defaults():
    cfg = APIConfig()
    assert cfg.port == 8080
    assert cfg.max_upload_bytes == cfg.max_upload_mb * 1024 * 1024
    assert cfg.tryon_spaces == {"up": "alexff91/FitMirror", "down": "alexff91/FitMirror", "dress": "alexff91/FitMirror"}
    assert (cfg.fetch_timeout, cfg.rate_limit_requests, cfg.rate_limit_window) == (60.0, 100, 900)


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("PORT", "9000")
    monkeypatch.setenv("TRYON_SPACE", "someone/default-vton")
    monkeypatch.setenv("TRYON_SPACE_DRESS", "someone/dress-vton")
    monkeypatch.setenv("REQUIRE_CATEGORY", "false")
    monkeypatch.setenv("ALLOWED_ORIGINS", "http://a.test, http://b.test")
    monkeypatch.setenv("PERSON_LABELS", "person, human")

    cfg = APIConfig()
    assert cfg.port == 9000
    assert cfg.tryon_spaces["up"] == "someone/default-vton"
    assert cfg.tryon_spaces["dress"] == "someone/dress-vton"
    assert cfg.require_category is False
    assert cfg.allowed_origins == ["http://a.test", "http://b.test"]
    assert cfg.person_labels == ["person", "human"]


def test_validate_warns_about_missing_key(monkeypatch):
    monkeypatch.delenv("HUGGING_FACE_API_KEY", raising=False)
    warnings = APIConfig().validate()
    assert any("HUGGING_FACE_API_KEY" in w for w in warnings)


def test_validate_clean_config(monkeypatch):
    monkeypatch.setenv("HUGGING_FACE_API_KEY", "hf_test")
    assert APIConfig().validate() == []
