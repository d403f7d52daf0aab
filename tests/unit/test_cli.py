"""
Tests for the sft-ledger command line interface.
"""

import json
import logging

import pytest
import yaml
from click.testing import CliRunner

from cli import __version__
from cli.main import cli
from cli.output import OutputFormatter


@pytest.fixture(autouse=True)
def restore_logging():
    """The CLI configures the root logger; undo that after each test."""
    root = logging.getLogger()
    level, handlers = root.level, list(root.handlers)
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
    root.setLevel(level)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yml"
    with open(path, "w") as f:
        yaml.safe_dump({
            "ledger": {"storage_dir": str(tmp_path / "data"), "backup_count": 1},
            "collection": {
                "symbol": "CLI",
                "name": "CLI Collection",
                "managers": ["admin"],
                "minters": ["admin"],
            },
        }, f)
    return str(path)


@pytest.fixture
def asset_file(tmp_path):
    path = tmp_path / "gold.png"
    path.write_bytes(b"\x89PNG gold")
    return str(path)


@pytest.fixture
def run(config_file):
    runner = CliRunner()

    def invoke(*args, caller="admin", output="json"):
        options = ["-c", config_file, "-o", output]
        if caller:
            options += ["--caller", caller]
        return runner.invoke(cli, options + list(args))

    return invoke


@pytest.fixture
def initialized(run, asset_file):
    """Ledger with class 1 and two instances held by bob and carol."""
    assert run("init").exit_code == 0
    assert run("class", "create", "--name", "Gold", "--asset-file", asset_file).exit_code == 0
    result = run("mint", "--class-id", "1", "--holder", "bob", "--holder", "carol")
    assert result.exit_code == 0, result.output
    return [row["token_id"] for row in json.loads(result.output)]


class TestGlobalOptions:

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        for command in ("init", "class", "mint", "transfer", "blocks", "archive"):
            assert command in result.output

    def test_missing_ledger(self, run):
        result = run("owner-of", "1")
        assert result.exit_code == 1
        assert "No ledger found" in result.output

    def test_missing_caller(self, run):
        result = run("init", caller=None)
        assert result.exit_code == 2
        assert "No caller principal" in result.output


class TestCollectionCommands:

    def test_init(self, run, tmp_path):
        result = run("init", "--name", "Renamed")

        assert result.exit_code == 0, result.output
        metadata = json.loads(result.output)
        assert metadata["icrc7:symbol"] == "CLI"
        assert metadata["icrc7:name"] == "Renamed"
        assert (tmp_path / "data" / "ledger.json").exists()

    def test_init_refuses_existing_ledger(self, run):
        run("init")
        result = run("init")
        assert result.exit_code == 1
        assert "already exists" in result.output

    def test_init_defaults_controller_to_caller(self, run):
        run("init")
        result = run("collection", "show", "--roles")
        assert json.loads(result.output)["controllers"] == ["admin"]

    def test_update_settings(self, run):
        run("init")
        result = run("collection", "update", "--set", "max_memo_size=64")
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["icrc7:max_memo_size"] == 64

    def test_update_unknown_setting(self, run):
        run("init")
        result = run("collection", "update", "--set", "colour=blue")
        assert result.exit_code == 2

    def test_update_requires_controller(self, run):
        run("init")
        result = run("collection", "update", "--name", "X", caller="bob")
        assert result.exit_code == 1
        assert "Unauthorized" in result.output

    def test_set_minters(self, run):
        run("init")
        result = run("collection", "set-minters", "m1", "m2")
        assert json.loads(result.output) == {"minters": ["m1", "m2"]}


class TestClassCommands:

    def test_create_and_show(self, run, asset_file):
        run("init")
        result = run("class", "create", "--name", "Gold", "--asset-file", asset_file,
                     "-m", "rarity=3", "--supply-cap", "5")
        assert result.exit_code == 0, result.output
        created = json.loads(result.output)
        assert created["class_id"] == 1

        shown = json.loads(run("class", "show", "1").output)
        assert shown["icrc7:name"] == "Gold"
        assert shown["asset_name"] == "gold.png"
        assert shown["asset_content_type"] == "image/png"
        assert shown["rarity"] == 3
        assert shown["asset_hash"] == created["asset_hash"]

    def test_list(self, initialized, run):
        rows = json.loads(run("class", "list", "--tokens").output)
        assert [r["class_id"] for r in rows] == [1]
        assert rows[0]["tokens"] == initialized

    def test_update_nothing(self, initialized, run):
        result = run("class", "update", "1")
        assert result.exit_code == 2

    def test_challenge_flow(self, run, asset_file):
        run("init")
        issued = run("challenge", "issue", "--asset-file", asset_file, "--author", "bob")
        assert issued.exit_code == 0, issued.output
        token = json.loads(issued.output)["challenge"]

        result = run("class", "create", "--name", "Art", "--asset-file", asset_file,
                     "--by-challenge", "--challenge", token, caller="bob")
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["class_id"] == 1


class TestTokenCommands:

    def test_mint_requires_minter(self, initialized, run):
        result = run("mint", "--class-id", "1", "--holder", "bob", caller="bob")
        assert result.exit_code == 1
        assert "Unauthorized" in result.output

    def test_transfer(self, initialized, run):
        bob_token, _ = initialized
        result = run("transfer", "--token-id", str(bob_token), "--to", "dave", caller="bob")
        assert result.exit_code == 0, result.output
        assert json.loads(result.output)[0]["status"] == "ok"

        owners = json.loads(run("owner-of", str(bob_token)).output)
        assert owners == [{"token_id": bob_token, "owner": "dave"}]

    def test_transfer_missing_options(self, initialized, run):
        result = run("transfer", "--to", "dave", caller="bob")
        assert result.exit_code == 2
        assert "--token-id" in result.output

    def test_batch_file(self, initialized, run, tmp_path):
        bob_token, carol_token = initialized
        batch = tmp_path / "batch.json"
        batch.write_text(json.dumps([
            {"to": {"owner": "dave"}, "token_id": bob_token},
        ]))
        result = run("transfer", "--batch-file", str(batch), caller="bob")
        assert result.exit_code == 0, result.output

        balances = json.loads(run("balance-of", "bob", "dave", "--tokens").output)
        assert balances == [
            {"account": "bob", "balance": 0, "tokens": []},
            {"account": "dave", "balance": 1, "tokens": [bob_token]},
        ]

    def test_approve_and_transfer_from(self, initialized, run):
        bob_token, _ = initialized
        approved = run("approve", "collection", "--spender", "erin", caller="bob")
        assert approved.exit_code == 0, approved.output

        listed = json.loads(run("approvals", "--owner", "bob").output)
        assert [a["spender"] for a in listed] == ["erin"]

        result = run("transfer-from", "--token-id", str(bob_token), "--from", "bob", "--to", "erin",
                     caller="erin")
        assert json.loads(result.output)[0]["status"] == "ok"

    def test_revoke(self, initialized, run):
        bob_token, _ = initialized
        run("approve", "token", "--token-id", str(bob_token), "--spender", "erin", caller="bob")
        check = json.loads(run("approvals", "--token-id", str(bob_token), "--spender", "erin", caller="bob").output)
        assert check["approved"] is True

        result = run("revoke", "token", "--token-id", str(bob_token), caller="bob")
        assert json.loads(result.output)[0]["status"] == "ok"
        assert json.loads(run("approvals", "--token-id", str(bob_token)).output) == []

    def test_invalid_memo(self, initialized, run):
        bob_token, _ = initialized
        result = run("transfer", "--token-id", str(bob_token), "--to", "dave", "--memo", "zz", caller="bob")
        assert result.exit_code == 2

    def test_table_output(self, initialized, run):
        result = run("owner-of", *[str(t) for t in initialized], output="table")
        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert lines[0].startswith("+-") and lines[2].startswith("+=")
        header, *rows = [
            [cell.strip() for cell in line.strip("|").split("|")]
            for line in lines if line.startswith("|")
        ]
        assert header == ["token_id", "owner"]
        assert [r[1] for r in rows] == ["bob", "carol"]
        assert [int(r[0]) for r in rows] == initialized


class TestBlockCommands:

    def test_get(self, initialized, run):
        rows = json.loads(run("blocks", "get", "--start", "0", "--length", "5").output)
        assert [r["btype"] for r in rows] == ["7mint", "7mint"]
        assert rows[0]["to"] == ["bob"]

    def test_get_full(self, initialized, run):
        data = json.loads(run("blocks", "get", "--range", "1:1", "--full").output)
        assert data["log_length"] == 2
        assert [b["index"] for b in data["blocks"]] == [1]

    def test_bad_range(self, initialized, run):
        assert run("blocks", "get", "--range", "5").exit_code == 2

    def test_tip_and_verify(self, initialized, run):
        tip = json.loads(run("blocks", "tip").output)
        assert tip["last_block_index"] == 1
        assert len(tip["certified_digest"]) == 64

        verified = json.loads(run("blocks", "verify").output)
        assert verified == {"valid": True, "log_length": 2}

    def test_types(self, run):
        run("init")
        names = [t["block_type"] for t in json.loads(run("blocks", "types").output)]
        assert "7xfer" in names

    def test_archive_run(self, initialized, run, tmp_path):
        assert json.loads(run("archive", "run").output) == {"archived": 0}

        result = json.loads(run("archive", "run", "--force").output)
        assert result["archived"] == 2
        assert result["archive_id"] == "archive"
        assert (tmp_path / "data" / "archive.jsonl").exists()

        archives = json.loads(run("blocks", "archives").output)
        assert archives == [{"archive_id": "archive", "start": 0, "end": 1}]

        rows = json.loads(run("blocks", "get", "--fetch-archived").output)
        assert [r["index"] for r in rows] == [0, 1]


class TestOutputFormatter:

    def test_dict_table(self):
        text = OutputFormatter("table").format({"symbol": "SFT", "roles": ["a", "b"]})
        assert text.splitlines()[0].split() == ["symbol", "SFT"]
        assert '["a", "b"]' in text

    def test_list_table_fills_missing_cells(self):
        text = OutputFormatter("table").format([{"a": 1}, {"a": 2, "b": None}, {"b": "x"}])
        rows = [
            [cell.strip() for cell in line.strip("|").split("|")]
            for line in text.splitlines() if line.startswith("|")
        ]
        assert rows == [["a", "b"], ["1", ""], ["2", ""], ["", "x"]]

    def test_long_cells_wrap_within_width(self):
        text = OutputFormatter("table", max_width=40).format([{"k": "v" * 100, "n": 1}])
        assert max(len(line) for line in text.splitlines()) <= 40

    def test_empty_results(self):
        assert OutputFormatter("table").format([]) == "(no results)"
        assert OutputFormatter("table").format({}) == "(empty)"
