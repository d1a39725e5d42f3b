import json
from datetime import datetime

import pytest

from network_inventory import __version__
from network_inventory.core.data_models import Host, HostStatus
from network_inventory.core.pipeline import PipelineResult, StepOutcome
from network_inventory.main import NetworkInventoryApp, create_argument_parser, main


@pytest.fixture
def app(mocker):
    mocker.patch("network_inventory.main.signal.signal")
    return NetworkInventoryApp()


def _args(*argv):
    return create_argument_parser().parse_args(list(argv))


def test_argument_parser_defaults():
    args = _args()

    assert args.targets is None
    assert args.steps is None
    assert args.skip_checks is False
    assert args.init_config is False


def test_version_flag(capsys):
    with pytest.raises(SystemExit) as exit_info:
        create_argument_parser().parse_args(["--version"])

    assert exit_info.value.code == 0
    assert __version__ in capsys.readouterr().out


def test_init_config_writes_files(app, tmp_path):
    assert app.run(_args("--init-config", "--config-dir", str(tmp_path))) == 0
    assert (tmp_path / "portscan_config.yml").exists()


def test_failed_preflight_aborts(app, mocker):
    mocker.patch.object(app, "_perform_preflight_checks", return_value=False)

    assert app.run(_args("--targets", "10.0.0.1")) == 1


def test_missing_config_dir_is_reported(app, mocker, tmp_path):
    mocker.patch.object(app, "_perform_preflight_checks", return_value=True)

    assert app.run(_args("--targets", "10.0.0.1", "--config-dir", str(tmp_path / "absent"))) == 1


def test_invalid_targets_are_reported(app, mocker, tmp_path):
    mocker.patch.object(app, "_perform_preflight_checks", return_value=True)

    assert app.run(_args("--targets", "10.0.0.300", "--output-dir", str(tmp_path))) == 1


def test_full_run_exports_inventory(app, mocker, tmp_path):
    mocker.patch.object(app, "_perform_preflight_checks", return_value=True)
    result = PipelineResult(
        hosts=[Host.from_address("10.0.0.2", status=HostStatus.ONLINE)],
        steps=[StepOutcome("ping", "Ping Sweep", 0.4, True, "1 of 2 addresses responded")],
        started_at=datetime(2024, 5, 1, 8, 0, 0),
        duration=0.4,
    )
    run = mocker.patch("network_inventory.main.PipelineRunner.run", return_value=result)

    code = app.run(_args("--targets", "10.0.0.1-2", "--steps", "ping", "--output-dir", str(tmp_path)))

    assert code == 0
    run.assert_called_once_with(["10.0.0.1", "10.0.0.2"])
    assert [step.key for step in app.runner.steps] == ["ping"]
    with open(tmp_path / "Hosts.json", encoding="utf-8") as f:
        assert json.load(f)[0]["Status"] == "Online"
    assert (tmp_path / "Hosts_20240501_080000.json").exists()


def test_keyboard_interrupt_exit_code(app, mocker, tmp_path):
    mocker.patch.object(app, "_perform_preflight_checks", return_value=True)
    mocker.patch("network_inventory.main.PipelineRunner.run", side_effect=KeyboardInterrupt)

    assert app.run(_args("--targets", "10.0.0.1", "--output-dir", str(tmp_path))) == 130


def test_main_uses_local_network_without_targets(mocker, tmp_path):
    mocker.patch("network_inventory.main.signal.signal")
    mocker.patch("network_inventory.main.ToolValidator.validate_all_tools", return_value=(True, []))
    detector = mocker.patch("network_inventory.main.NetworkDetector")
    detector.return_value.get_host_network_info.return_value.scan_range = []
    detector.return_value.get_host_network_info.return_value.cidr = "10.0.0.0/24"
    detector.return_value.get_host_network_info.return_value.host_ip = "10.0.0.5"

    assert main(["--output-dir", str(tmp_path)]) == 1
    detector.return_value.get_host_network_info.assert_called_once()
