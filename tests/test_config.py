# tests/test_config.py
"""
Tests for engine configuration and option parsing.
"""

import pytest

from rangelint.config import EngineConfig
from rangelint.errors import InvalidOptionError
from rangelint.options import Option, format_version, parse_version, resolve_options


class TestEngineConfig:

    def test_defaults_are_valid(self):
        assert EngineConfig().validate() == []

    def test_validate_reports_every_problem(self):
        warnings = EngineConfig(set_limit=0, workers=0, unit_timeout=-1).validate()
        assert len(warnings) == 3

    def test_from_env(self):
        config = EngineConfig.from_env({
            "RANGELINT_WORKERS": "4",
            "RANGELINT_UNIT_TIMEOUT": "2.5",
            "RANGELINT_SET_LIMIT": "",
            "UNRELATED": "1",
        })
        assert config.workers == 4
        assert config.unit_timeout == 2.5
        assert config.set_limit == 8

    def test_from_mapping_ignores_unknown_keys(self):
        config = EngineConfig.from_mapping({"widening_delay": "5", "colour": "red"})
        assert config.widening_delay == 5

    def test_timeout_none(self):
        assert EngineConfig.from_mapping({"unit_timeout": "none"}).unit_timeout is None

    def test_replace(self):
        base = EngineConfig()
        changed = base.replace(workers=3)
        assert changed.workers == 3
        assert base.workers == 1


class TestVersions:

    @pytest.mark.parametrize("raw,minor", [
        ("1.21", 21),
        ("go1.4", 4),
        (" 1.0 ", 0),
        ("latest", None),
        ("LATEST", None),
        (18, 18),
    ])
    def test_parse(self, raw, minor):
        assert parse_version(raw) == minor

    @pytest.mark.parametrize("raw", ["2.0", "1.x", "", -1, True, 1.5])
    def test_reject(self, raw):
        with pytest.raises(ValueError):
            parse_version(raw)

    def test_format(self):
        assert format_version(None) == "latest"
        assert format_version(7) == "1.7"


class TestResolveOptions:

    DECLARED = [Option("limit", "upper bound", default=3, parse=int)]

    def test_default(self):
        assert resolve_options("XX0001", self.DECLARED) == {"limit": 3}

    def test_parsed(self):
        assert resolve_options("XX0001", self.DECLARED, {"limit": "9"}) == {"limit": 9}

    def test_error_names_analyzer_and_option(self):
        with pytest.raises(InvalidOptionError) as excinfo:
            resolve_options("XX0001", self.DECLARED, {"limit": "lots"})
        assert excinfo.value.option == "XX0001.limit"
        assert excinfo.value.value == "lots"
