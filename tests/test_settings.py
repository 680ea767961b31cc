from pathlib import Path

import pytest

from content_refresher.errors import ConfigError
from content_refresher.settings import load_settings, settings_from_dict
from content_refresher.utils.jsonc import loads_jsonc, resolve_env_placeholders

CONFIG = """
{
  // site credentials
  "wordpress": {
    "url": "https://example.com/",
    "username": "editor",
    "application_password": "${TEST_WP_PASS}",
  },
  /* generation */
  "generation": {"model": "gpt-4o", "cache_path": "tmp/gen.sqlite3"},
  "scheduler": {"success_sleep": 1, "rules": {"min_words": 800, "target_year": "2026"}},
  "queue": {"priority_urls": ["https://example.com/hot"], "excluded_categories": ["news"]},
  "site_name": "Example",
}
"""


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("WP_APP_PASSWORD", "OPENAI_API_KEY", "SERPER_API_KEY", "TEST_WP_PASS"):
        monkeypatch.delenv(name, raising=False)


class TestJsonc:
    def test_comments_and_trailing_commas(self):
        assert loads_jsonc('{\n // c\n "a": [1, 2,], /* b */ "b": 1,\n}') == {"a": [1, 2], "b": 1}

    def test_env_placeholders(self, monkeypatch):
        monkeypatch.setenv("SOME_VAR", "value")
        data = resolve_env_placeholders({"x": "${SOME_VAR}", "y": ["${MISSING_VAR}"], "z": "plain ${SOME_VAR}"})
        assert data == {"x": "value", "y": ["${MISSING_VAR}"], "z": "plain ${SOME_VAR}"}


class TestSettings:
    def test_load_full_config(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("TEST_WP_PASS", "secret pass")
        monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
        path = tmp_path / "settings.json"
        path.write_text(CONFIG, encoding="utf-8")

        s = load_settings(path)
        assert s.wordpress.app_password == "secret pass"
        assert s.wordpress.api_base_url == "https://example.com/wp-json/wp/v2"
        assert s.generation.api_key == "sk-test"
        assert s.generation.model == "gpt-4o"
        assert s.generation.cache_path == Path("tmp/gen.sqlite3")
        assert s.scheduler.success_sleep == 1
        assert s.scheduler.idle_sleep == 60.0
        assert s.scheduler.rules.min_words == 800
        assert s.priority_urls == ["https://example.com/hot"]
        assert s.excluded_categories == ["news"]
        assert s.site_name == "Example"

    def test_env_password_wins(self, monkeypatch):
        monkeypatch.setenv("WP_APP_PASSWORD", "from-env")
        raw = {"wordpress": {"url": "https://s", "username": "u", "application_password": "from-file"}}
        assert settings_from_dict(raw).wordpress.app_password == "from-env"

    def test_missing_password(self):
        with pytest.raises(ConfigError, match="application password"):
            settings_from_dict({"wordpress": {"url": "https://s", "username": "u"}})

    def test_missing_url(self):
        with pytest.raises(ConfigError, match="url"):
            settings_from_dict({"wordpress": {"username": "u", "application_password": "p"}})

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_settings(tmp_path / "nope.json")
