from click.testing import CliRunner

import asgroll.cli as cli_module


def _fake_deployer(captured, exit_code=0):
    class FakeDeployer:
        def __init__(self, **kwargs):
            captured.update(kwargs)

        def request_cancel(self):
            return None

        def run(self):
            return exit_code

    return FakeDeployer


def test_cli_uses_config_and_allows_cli_override(tmp_path, monkeypatch):
    config_file = tmp_path / ".asgroll.yml"
    config_file.write_text(
        "account: staging\n" "instance_warmup: 60\n" "healthy_percentage: 50\n" "image_timeout_minutes: 20\n",
        encoding="utf-8",
    )

    captured = {}
    monkeypatch.setattr(cli_module, "Deployer", _fake_deployer(captured))

    runner = CliRunner()
    result = runner.invoke(
        cli_module.main,
        [
            "deploy",
            "web-asg",
            "--config",
            str(config_file),
            "--account",
            "prod",
            "--healthy-percentage",
            "80",
        ],
    )

    assert result.exit_code == 0
    assert captured["group_name"] == "web-asg"
    assert captured["account"] == "prod"
    assert captured["instance_warmup"] == 60
    assert captured["healthy_percentage"] == 80
    assert captured["image_timeout_minutes"] == 20.0
    assert captured["use_private_address"] is False


def test_cli_uses_default_config_file_when_present(tmp_path, monkeypatch):
    default_config = tmp_path / ".asgroll.yml"
    default_config.write_text("account: prod\nuse_private_address: true\n", encoding="utf-8")

    captured = {}
    monkeypatch.setattr(cli_module, "Deployer", _fake_deployer(captured))
    monkeypatch.chdir(tmp_path)

    runner = CliRunner()
    result = runner.invoke(cli_module.main, ["deploy", "web-asg"])

    assert result.exit_code == 0
    assert captured["account"] == "prod"
    assert captured["instance_warmup"] == 300
    assert captured["healthy_percentage"] == 90
    assert captured["use_private_address"] is True


def test_cli_requires_account(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    runner = CliRunner()
    result = runner.invoke(cli_module.main, ["deploy", "web-asg"])

    assert result.exit_code != 0
    assert "--account" in result.output


def test_cli_propagates_deployment_exit_code(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(cli_module, "Deployer", _fake_deployer({}, exit_code=1))

    runner = CliRunner()
    result = runner.invoke(cli_module.main, ["deploy", "web-asg", "--account", "prod"])

    assert result.exit_code == 1


def test_cli_rejects_out_of_range_percentage(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    runner = CliRunner()
    result = runner.invoke(
        cli_module.main,
        ["deploy", "web-asg", "--account", "prod", "--healthy-percentage", "150"],
    )

    assert result.exit_code == 2


def test_accounts_commands_manage_store(tmp_path):
    accounts_file = str(tmp_path / "accounts.yml")
    runner = CliRunner()

    added = runner.invoke(
        cli_module.main,
        [
            "accounts",
            "add",
            "prod",
            "--access-key",
            "AKIA",
            "--secret-key",
            "secret",
            "--region",
            "us-east-1",
            "--accounts-file",
            accounts_file,
        ],
    )
    assert added.exit_code == 0
    assert "secret" not in added.output.replace("--secret-key", "")

    listed = runner.invoke(cli_module.main, ["accounts", "list", "--accounts-file", accounts_file])
    assert listed.exit_code == 0
    assert listed.output.strip() == "prod"

    removed = runner.invoke(cli_module.main, ["accounts", "remove", "prod", "--accounts-file", accounts_file])
    assert removed.exit_code == 0

    missing = runner.invoke(cli_module.main, ["accounts", "remove", "prod", "--accounts-file", accounts_file])
    assert missing.exit_code == 1
    assert "not found" in missing.output


def test_cli_rejects_non_numeric_config_value(tmp_path, monkeypatch):
    config_file = tmp_path / ".asgroll.yml"
    config_file.write_text("account: prod\nhealthy_percentage: high\n", encoding="utf-8")
    monkeypatch.setattr(cli_module, "Deployer", _fake_deployer({}))

    runner = CliRunner()
    result = runner.invoke(cli_module.main, ["deploy", "web-asg", "--config", str(config_file)])

    assert result.exit_code == 1
    assert "healthy_percentage" in result.output
    assert "must be a number" in result.output
    assert not isinstance(result.exception, ValueError)


def test_cli_rejects_unrenderable_update_command_before_deploying(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    ran = []
    monkeypatch.setattr(cli_module.Deployer, "run", lambda self: ran.append(self) or 0)

    runner = CliRunner()
    result = runner.invoke(
        cli_module.main,
        [
            "deploy",
            "web-asg",
            "--account",
            "prod",
            "--accounts-file",
            str(tmp_path / "accounts.yml"),
            "--update-command",
            "ssh {address} 'sudo update.sh",
        ],
    )

    assert result.exit_code == 1
    assert "template is invalid" in result.output
    assert ran == []
