from pathlib import Path
from unittest import mock

import pytest

import transitdemand.cli as cli


@pytest.fixture(autouse=True)
def keep_root_handlers():
    # configure() replaces root handlers, which would detach caplog
    with mock.patch.object(cli.logging_config, "configure") as configure:
        yield configure


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "regions.yaml"
    path.write_text(
        "regions:\n"
        "  - code: AAA\n"
        "    bbox: [0, 0, 1, 1]\n"
        "  - code: BBB\n"
        "    bbox: [0, 0, 1, 1]\n"
        "logging:\n"
        "  level: WARNING\n",
        encoding="utf-8",
    )
    return path


def test_parser_defaults():
    args = cli.build_parser().parse_args([])
    assert args.config is None and args.region is None and args.log_level is None


def test_no_regions_exits_with_error(tmp_path, monkeypatch, caplog):
    monkeypatch.chdir(tmp_path)
    with mock.patch.object(cli, "run_all") as run_all:
        assert cli.main([]) == 1
    run_all.assert_not_called()
    assert "no regions configured" in caplog.text


def test_success_and_overrides(config_file, tmp_path):
    with mock.patch.object(cli, "run_all", return_value=[]) as run_all:
        code = cli.main([
            "--config", str(config_file),
            "--region", "AAA",
            "--raw-dir", str(tmp_path / "in"),
            "--out-dir", str(tmp_path / "out"),
            "--log-level", "debug",
        ])

    assert code == 0
    config, codes = run_all.call_args.args
    assert codes == ["AAA"]
    assert config.paths.raw_data_dir == Path(tmp_path / "in")
    assert config.paths.processed_data_dir == Path(tmp_path / "out")


def test_failed_region_exit_code(config_file):
    with mock.patch.object(cli, "run_all", return_value=["BBB"]):
        assert cli.main(["--config", str(config_file)]) == 1


def test_log_level_comes_from_config(config_file, monkeypatch, keep_root_handlers):
    monkeypatch.delenv("TRANSITDEMAND_LOG_LEVEL", raising=False)
    with mock.patch.object(cli, "run_all", return_value=[]):
        cli.main(["--config", str(config_file)])
    keep_root_handlers.assert_called_once_with("WARNING")


def test_module_entry_point(monkeypatch):
    import transitdemand.__main__  # noqa: F401  (import must not run the CLI)
    monkeypatch.setattr("sys.argv", ["transitdemand", "--help"])
    with pytest.raises(SystemExit) as exc:
        cli.main()
    assert exc.value.code == 0


def test_missing_config_file(tmp_path, caplog):
    with mock.patch.object(cli, "run_all") as run_all:
        assert cli.main(["--config", str(tmp_path / "absent.yaml")]) == 1
    run_all.assert_not_called()
    assert "Cannot load configuration" in caplog.text
