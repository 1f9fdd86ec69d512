import sys

sys.path.insert(0, '.')

import pytest

from config.config_loader import Config
from config.utils import get_config_section, get_setting


def _write(tmp_path, text):
    path = tmp_path / 'config.yaml'
    path.write_text(text)
    return path


def test_loads_sections_and_resolves_env(tmp_path, monkeypatch):
    monkeypatch.setenv('TRADER_TEST_URL', 'wss://example.invalid/ws/2')
    path = _write(tmp_path, (
        "exchange:\n"
        "  ws_url: ${TRADER_TEST_URL}\n"
        "  symbols: [BTCUSD, ETHUSD]\n"
        "trading:\n"
        "  max_spend_usd: 250\n"
        "monitoring:\n"
        "  log_level: ${TRADER_TEST_UNSET}\n"
    ))

    cfg = Config(path)

    assert cfg.exchange.ws_url == 'wss://example.invalid/ws/2'
    assert cfg['exchange']['symbols'] == ['BTCUSD', 'ETHUSD']
    assert cfg.monitoring.log_level == '${TRADER_TEST_UNSET}'
    assert get_setting(cfg, 'trading', 'max_spend_usd') == 250
    assert get_config_section(cfg, 'exchange')['symbols'] == ['BTCUSD', 'ETHUSD']


def test_env_var_selects_config_file(tmp_path, monkeypatch):
    path = _write(tmp_path, "strategy:\n  ma_periods: [3, 6]\n")
    monkeypatch.setenv('TRADER_CONFIG', str(path))
    assert Config().strategy.ma_periods == [3, 6]


def test_missing_file_raises(tmp_path):
    with pytest.raises(RuntimeError):
        Config(tmp_path / 'absent.yaml')


def test_invalid_yaml_raises(tmp_path):
    path = _write(tmp_path, "exchange: [unterminated\n")
    with pytest.raises(RuntimeError):
        Config(path)


def test_non_mapping_root_raises(tmp_path):
    path = _write(tmp_path, "- just\n- a list\n")
    with pytest.raises(RuntimeError):
        Config(path)


def test_missing_key_raises_attribute_error(tmp_path):
    cfg = Config(_write(tmp_path, "api:\n  port: 8000\n"))
    with pytest.raises(AttributeError):
        cfg.exchange
    with pytest.raises(AttributeError):
        cfg.api.host


def test_reload_picks_up_changes(tmp_path):
    path = _write(tmp_path, "api:\n  port: 8000\n")
    cfg = Config(path)
    path.write_text("api:\n  port: 9000\n")
    cfg.reload()
    assert cfg.api.port == 9000


def test_settings_from_plain_dict():
    source = {'state': {'max_candles': None}, 'api': {'port': 8001}, 'broken': 'scalar'}
    assert get_setting(source, 'state', 'max_candles', 500) == 500
    assert get_setting(source, 'api', 'port') == 8001
    assert get_setting(source, 'api', 'host', '0.0.0.0') == '0.0.0.0'
    assert get_config_section(source, 'broken') == {}
    assert get_config_section(None, 'api') == {}


def test_bundled_config_is_complete():
    cfg = Config()
    for section in ('exchange', 'stream', 'strategy', 'trading', 'state', 'monitoring', 'api'):
        assert get_config_section(cfg, section), section
    assert get_setting(cfg, 'strategy', 'ma_periods') == [5, 10, 20]


def test_dotted_lookup(tmp_path):
    cfg = Config(_write(tmp_path, "api:\n  port: 8000\n  cors_origins: ['*']\n"))
    assert cfg.lookup('api.port') == 8000
    assert cfg.lookup('api.missing', 'x') == 'x'
    assert cfg.lookup('api.port.deeper') is None
    assert dict(cfg.lookup('api')) == {'port': 8000, 'cors_origins': ['*']}
