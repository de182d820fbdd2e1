import json

from settings import apply_env_overrides, ensure_signing_secrets, load_settings, save_settings, scrub_secrets


def test_missing_file_gives_defaults(tmp_path):
    settings = load_settings(tmp_path / "server_config.json")
    assert settings["soft_delete_roles"] == ["admin"]
    assert settings["typing_expiry_seconds"] == 8


def test_file_values_layer_over_defaults(tmp_path):
    path = tmp_path / "server_config.json"
    path.write_text(json.dumps({"port": 6001, "pin_roles": ["admin"]}), encoding="utf-8")

    settings = load_settings(path)

    assert settings["port"] == 6001
    assert settings["pin_roles"] == ["admin"]
    assert settings["access_token_days"] == 7


def test_corrupt_file_is_backed_up(tmp_path):
    path = tmp_path / "server_config.json"
    path.write_text("{not json", encoding="utf-8")

    settings = load_settings(path)

    assert settings["port"] == 5000
    assert not path.exists()
    assert len(list(tmp_path.glob("server_config.json.bad-*"))) == 1


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("SUPERPAAC_STORE_BACKEND", "Memory")
    monkeypatch.setenv("SUPERPAAC_MENTOR_CODE", "abc")
    monkeypatch.setenv("SUPERPAAC_PORT", "7000")
    monkeypatch.setenv("JWT_SECRET_KEY", "from-env")
    settings = {}

    apply_env_overrides(settings)

    assert settings["store_backend"] == "memory"
    assert settings["mentor_code"] == "abc"
    assert settings["port"] == 7000
    assert settings["jwt_secret"] == "from-env"


def test_secrets_not_persisted_when_disabled(tmp_path, monkeypatch):
    monkeypatch.setenv("SUPERPAAC_PERSIST_SECRETS", "0")
    path = tmp_path / "server_config.json"

    save_settings(path, {"port": 5000, "jwt_secret": "s", "mentor_code": "m"})

    assert json.loads(path.read_text(encoding="utf-8")) == {"port": 5000}


def test_scrub_keeps_secrets_when_enabled(monkeypatch):
    monkeypatch.setenv("SUPERPAAC_PERSIST_SECRETS", "1")
    assert scrub_secrets({"secret_key": "k"}) == {"secret_key": "k"}


def test_generated_secrets_are_persisted(tmp_path, monkeypatch):
    for name in ("SECRET_KEY", "JWT_SECRET_KEY"):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("SUPERPAAC_PERSIST_SECRETS", "1")
    path = tmp_path / "server_config.json"
    path.write_text(json.dumps({"port": 5001}), encoding="utf-8")
    settings = {"port": 5001}

    secret_key, jwt_secret = ensure_signing_secrets(settings, path)

    saved = json.loads(path.read_text(encoding="utf-8"))
    assert saved["secret_key"] == secret_key
    assert saved["jwt_secret"] == jwt_secret
    assert saved["port"] == 5001


def test_configured_secrets_are_kept(tmp_path):
    path = tmp_path / "server_config.json"
    settings = {"secret_key": "a", "jwt_secret": "b"}

    assert ensure_signing_secrets(settings, path) == ("a", "b")
    assert not path.exists()
