"""Tests for CLI commands."""

from mneme.cli.app import app

ACME = "Paid the Acme invoice of $120 on March 3. Dana confirmed the payment arrived."


def _invoke(cli_runner, config_file, *args):
    return cli_runner.invoke(app, [*args, "--config", str(config_file)])


class TestConfigErrors:
    def test_missing_config(self, cli_runner, tmp_path):
        result = cli_runner.invoke(
            app, ["list", "--config", str(tmp_path / "missing.toml")]
        )
        assert result.exit_code == 1
        assert "not found" in result.output

    def test_invalid_config(self, cli_runner, tmp_path):
        bad = tmp_path / "bad.toml"
        bad.write_text('[models.default]\nprovider = "nope"\nmodel = "x"\n')

        result = cli_runner.invoke(app, ["list", "--config", str(bad)])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output


class TestMemoryCommands:
    def test_add_then_list_and_show(self, cli_runner, config_file, fake_runtime_factory):
        added = _invoke(
            cli_runner, config_file, "add", ACME, "--owner", "1", "--title", "Receipt"
        )
        assert added.exit_code == 0, added.output
        assert "Stored memory 1" in added.output
        assert "2/2 facts embedded" in added.output

        listed = _invoke(cli_runner, config_file, "list", "--owner", "1")
        assert listed.exit_code == 0
        assert "Memory Entries" in listed.output

        shown = _invoke(cli_runner, config_file, "show", "1")
        assert shown.exit_code == 0
        assert "Memory 1" in shown.output

    def test_add_duplicate(self, cli_runner, config_file, fake_runtime_factory):
        _invoke(cli_runner, config_file, "add", ACME)
        result = _invoke(cli_runner, config_file, "add", ACME)
        assert "Already stored as memory 1" in result.output

    def test_add_from_file(self, cli_runner, config_file, fake_runtime_factory, tmp_path):
        notes = tmp_path / "notes.txt"
        notes.write_text("Standup moved to 10am on Mondays.")

        result = _invoke(cli_runner, config_file, "add", "--file", str(notes))

        assert result.exit_code == 0
        assert "Stored memory" in result.output

    def test_add_requires_content(self, cli_runner, config_file, fake_runtime_factory):
        result = _invoke(cli_runner, config_file, "add")
        assert result.exit_code == 1
        assert "Content is required" in result.output

    def test_vectors_persist_between_commands(
        self, cli_runner, config_file, fake_runtime_factory
    ):
        _invoke(cli_runner, config_file, "add", ACME)

        result = _invoke(
            cli_runner,
            config_file,
            "search",
            "Paid the Acme invoice of $120 on March 3.",
            "--owner",
            "1",
        )

        assert result.exit_code == 0, result.output
        assert "1.000" in result.output

    def test_search_without_hits(self, cli_runner, config_file, fake_runtime_factory):
        result = _invoke(cli_runner, config_file, "search", "anything", "--owner", "1")
        assert "No memories found" in result.output

    def test_search_without_scope_fails_cleanly(
        self, cli_runner, config_file, fake_runtime_factory
    ):
        result = _invoke(cli_runner, config_file, "search", "anything")
        assert result.exit_code == 1
        assert "ScopeRequiredError" in result.output

    def test_ask(self, cli_runner, config_file, fake_runtime_factory):
        _invoke(cli_runner, config_file, "add", ACME)

        result = _invoke(
            cli_runner,
            config_file,
            "ask",
            "Paid the Acme invoice of $120 on March 3.",
            "--owner",
            "1",
        )

        assert result.exit_code == 0, result.output
        assert "ANSWER" in result.output
        assert "1 memories used (gpt-4o-mini)" in result.output

    def test_forget(self, cli_runner, config_file, fake_runtime_factory):
        _invoke(cli_runner, config_file, "add", ACME)

        result = _invoke(cli_runner, config_file, "forget", "1", "--force")
        assert result.exit_code == 0
        assert "Deleted memory 1" in result.output

        missing = _invoke(cli_runner, config_file, "show", "1")
        assert missing.exit_code == 1

    def test_forget_declined(self, cli_runner, config_file, fake_runtime_factory):
        _invoke(cli_runner, config_file, "add", ACME)

        result = cli_runner.invoke(
            app, ["forget", "1", "--config", str(config_file)], input="n\n"
        )

        assert "Cancelled" in result.output
        shown = _invoke(cli_runner, config_file, "show", "1")
        assert shown.exit_code == 0

    def test_forget_unknown(self, cli_runner, config_file, fake_runtime_factory):
        result = _invoke(cli_runner, config_file, "forget", "42", "--force")
        assert result.exit_code == 1
        assert "NotFoundError" in result.output
