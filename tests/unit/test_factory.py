"""Unit tests for target string parsing."""
import pytest

from rdebug.deploy.exceptions import ConfigurationError
from rdebug.deploy.factory import parse_target


class TestParseTarget:

    @pytest.mark.parametrize("target,expected", [
        ("192.168.7.2", (None, "192.168.7.2", None)),
        ("192.168.7.2:2222", (None, "192.168.7.2", 2222)),
        ("root@board", ("root", "board", None)),
        ("admin@board:22", ("admin", "board", 22)),
        ("root@[fe80::1]", ("root", "fe80::1", None)),
        ("root@[fe80::1]:2222", ("root", "fe80::1", 2222)),
        ("fe80::1", (None, "fe80::1", None)),
    ])
    def test_formats(self, target, expected):
        assert parse_target(target) == expected

    @pytest.mark.parametrize("target", ["", "@host", "root@[fe80::1", "host:ssh", "root@:22"])
    def test_malformed(self, target):
        with pytest.raises(ConfigurationError):
            parse_target(target)
