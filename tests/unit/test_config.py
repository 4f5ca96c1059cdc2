from pathlib import Path

import pytest

from repairdesk.config import ConfigError, load_config

MINIMAL = """
[app]
name = "RepairDesk"
log_level = "debug"

[db]
host = "db.local"
name = "repairdesk"
user = "desk"
password = "pw"
"""


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    def test_defaults_fill_optional_sections(self, tmp_path: Path) -> None:
        cfg = load_config(_write(tmp_path, MINIMAL))

        assert cfg.log_level == "DEBUG"
        assert cfg.db.port == 5432
        assert cfg.db.sslmode == "disable"
        assert cfg.business.customer_request_window_hours == 24
        assert cfg.business.customer_max_requests == 1
        assert cfg.notifications.webhook_url is None

    def test_business_and_notifications(self, tmp_path: Path) -> None:
        text = MINIMAL + """
[business]
customer_request_window_hours = 12
customer_max_requests = 2

[notifications]
webhook_url = " https://hooks.example.com/desk "
max_retries = 5
"""
        cfg = load_config(_write(tmp_path, text))

        assert cfg.business.customer_request_window_hours == 12
        assert cfg.business.customer_max_requests == 2
        assert cfg.notifications.webhook_url == "https://hooks.example.com/desk"
        assert cfg.notifications.max_retries == 5

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            load_config(tmp_path / "nope.toml")

    def test_invalid_toml(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="TOML"):
            load_config(_write(tmp_path, "[app\nname="))

    def test_missing_db_key(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Missing config key"):
            load_config(_write(tmp_path, MINIMAL.replace('host = "db.local"\n', "")))

    def test_non_positive_rate_limit(self, tmp_path: Path) -> None:
        text = MINIMAL + "\n[business]\ncustomer_max_requests = 0\n"
        with pytest.raises(ConfigError, match="positive"):
            load_config(_write(tmp_path, text))
