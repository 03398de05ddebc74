#!/usr/bin/env python3
"""
Tests for collector configuration and identity models.
"""

import os
import sys
from unittest import mock

from collector.core.models.config import CollectorConfig, CountMode
from collector.core.models.events import IdentitySeed


def test_defaults():
    config = CollectorConfig()
    assert config.aggregation_window_ms == 3500
    assert config.hold_ms == 12000
    assert config.debug_max_chars == 1400
    assert config.rdns_timeout_ms == 350
    assert config.count_mode == CountMode.ACCUMULATE
    assert config.aggregation_window_sec == 3.5
    assert config.hold_sec == 12.0


def test_from_env():
    print("🧪 Testing environment configuration...")
    env = {
        "AGG_WINDOW_MS": "5000",
        "HOLD_MS": "20000",
        "DEBUG_MAX_CHARS": "900",
        "RDNS_TIMEOUT_MS": "200",
        "COUNT_MODE": "RESET",
        "DISPLAY_TIMEZONE": "Europe/Berlin",
        "DNS_SERVER": "192.0.2.53",
    }
    with mock.patch.dict(os.environ, env):
        config = CollectorConfig.from_env()

    assert config.aggregation_window_ms == 5000
    assert config.hold_ms == 20000
    assert config.debug_max_chars == 900
    assert config.rdns_timeout_ms == 200
    assert config.count_mode == CountMode.RESET
    assert config.display_timezone == "Europe/Berlin"
    assert config.dns_server == "192.0.2.53"


def test_from_env_rejects_out_of_range_values():
    print("🧪 Testing environment validation...")
    for name, value in (("AGG_WINDOW_MS", "-5000"), ("HOLD_MS", "-1"), ("RDNS_TIMEOUT_MS", "-350"),
                        ("COUNT_MODE", "sometimes"), ("AGG_WINDOW_MS", "soon")):
        with mock.patch.dict(os.environ, {name: value}):
            try:
                CollectorConfig.from_env()
            except ValueError:
                pass
            else:
                raise AssertionError(f"{name}={value} was accepted")


def test_assignment_is_validated():
    config = CollectorConfig()
    try:
        config.aggregation_window_ms = -1
    except ValueError:
        pass
    else:
        raise AssertionError("negative window accepted")
    assert config.aggregation_window_ms == 3500


def test_identity_key_placeholders():
    assert IdentitySeed().key() == "unknown|-|-|/|-|-"
    seed = IdentitySeed(ip="198.51.100.4", device="iPhone", browser="Safari", path="/x", fp_hash="f", click_id="c")
    assert seed.key() == "198.51.100.4|iPhone|Safari|/x|f|c"


def main():
    tests = [obj for name, obj in sorted(globals().items()) if name.startswith("test_") and callable(obj)]
    for test in tests:
        test()
    print(f"\n✅ {len(tests)} config tests passed!")
    return True


if __name__ == '__main__':
    sys.exit(0 if main() else 1)
