import yaml

from network_inventory.config.config_loader import (
    DEFAULT_STEPS,
    ConfigLoader,
    HttpConfig,
    PingConfig,
    PortScanConfig,
)


def _write(directory, name, data):
    path = directory / name
    path.write_text(yaml.dump(data), encoding="utf-8")
    return path


def test_missing_files_fall_back_to_defaults(tmp_path, logger):
    configs = ConfigLoader(str(tmp_path), logger).load_all()

    assert configs["ping"] == PingConfig()
    assert configs["portscan"] == PortScanConfig()
    assert configs["pipeline"].steps == DEFAULT_STEPS


def test_values_are_loaded(tmp_path, logger):
    _write(tmp_path, "ping_config.yml", {"ping": {"timeout": 3, "max_workers": 16}})
    _write(tmp_path, "portscan_config.yml", {"portscan": {"ports": [22, 80], "target_source": "online"}})

    loader = ConfigLoader(str(tmp_path), logger)

    assert loader.load_ping_config() == PingConfig(timeout=3, max_workers=16)
    portscan = loader.load_portscan_config()
    assert portscan.ports == [22, 80]
    assert portscan.target_source == "online"


def test_invalid_values_use_defaults(tmp_path, logger):
    _write(tmp_path, "ping_config.yml", {"ping": {"timeout": -1, "max_workers": "many"}})
    _write(tmp_path, "dns_config.yml", {"dns": {"online_only": "yes"}})
    _write(tmp_path, "portscan_config.yml", {"portscan": {"ports": [22, "http", 70000, 22], "target_source": "all"}})

    loader = ConfigLoader(str(tmp_path), logger)

    assert loader.load_ping_config() == PingConfig()
    assert loader.load_dns_config().online_only is False
    portscan = loader.load_portscan_config()
    assert portscan.ports == [22]
    assert portscan.target_source == "targets"


def test_malformed_yaml_uses_defaults(tmp_path, logger):
    (tmp_path / "http_config.yml").write_text("http: [unclosed", encoding="utf-8")

    assert ConfigLoader(str(tmp_path), logger).load_http_config() == HttpConfig()


def test_wrong_top_level_key_uses_defaults(tmp_path, logger):
    _write(tmp_path, "ping_config.yml", {"pinger": {"timeout": 5}})

    assert ConfigLoader(str(tmp_path), logger).load_ping_config() == PingConfig()


def test_unknown_steps_are_dropped(tmp_path, logger):
    _write(tmp_path, "pipeline_config.yml", {"pipeline": {"steps": ["ping", "teleport", "PortScan"]}})

    assert ConfigLoader(str(tmp_path), logger).load_pipeline_config().steps == ["ping", "portscan"]


def test_all_unknown_steps_restore_default(logger):
    assert ConfigLoader(logger=logger).validate_steps(["nope"]) == DEFAULT_STEPS


def test_create_default_configs(tmp_path, logger):
    config_dir = tmp_path / "cfg"
    loader = ConfigLoader(str(config_dir), logger)

    loader.create_default_configs()

    assert (config_dir / "pipeline_config.yml").exists()
    assert (config_dir / "mdns_config.yml").exists()
    with open(config_dir / "http_config.yml", encoding="utf-8") as f:
        assert yaml.safe_load(f)["http"]["tls_ports"] == [443, 8443]
    assert loader.load_all()["http"] == HttpConfig()
