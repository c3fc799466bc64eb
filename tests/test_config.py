from unittest.mock import patch

from vexhub.config import Config, format_interval


class TestConfig:

    def test_defaults(self):
        with patch.dict('os.environ', {}, clear=True):
            cfg = Config()
        assert cfg.port == 8080
        assert cfg.update_interval == 15
        assert cfg.update_interval_label == "15s"
        assert cfg.store_namespace == "default"
        assert cfg.store_name == "vex8s.json"
        assert cfg.author == "vex8s-controller"
        assert cfg.tooling == "vex8s"
        assert cfg.excluded_namespaces == []

    def test_environment_overrides(self):
        with patch.dict('os.environ', {
            'VEXHUB_UPDATE_INTERVAL': '1800',
            'VEXHUB_AUTHOR': 'platform-team',
            'VEXHUB_EXCLUDED_NAMESPACES': 'sandbox, ci ,',
        }, clear=True):
            cfg = Config()
        assert cfg.update_interval_label == "30m"
        assert cfg.author == "platform-team"
        assert cfg.excluded_namespaces == ["sandbox", "ci"]

    def test_format_interval(self):
        assert format_interval(45) == "45s"
        assert format_interval(90) == "90s"
        assert format_interval(120) == "2m"
        assert format_interval(7200) == "2h"
