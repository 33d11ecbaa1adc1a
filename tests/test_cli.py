"""Tests for the command line interface."""

import pytest
from sqlalchemy.orm import sessionmaker
from typer.testing import CliRunner

from cooperation_toolkit import cli
from cooperation_toolkit.ledger import AttestationService, LedgerService

from .conftest import ALICE, STEWARD

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_database(engine, monkeypatch):
    """Point CLI sessions at the per-test database."""
    monkeypatch.setattr(cli, "get_session_local", lambda: sessionmaker(bind=engine))


class TestLedgerCommands:
    def test_empty_ledger(self, team):
        result = runner.invoke(cli.app, ["ledger", team.id])
        assert result.exit_code == 0
        assert "No ledger entries" in result.output

    def test_ledger_lists_entries(self, team, make_task, issue_task):
        issue_task(make_task())
        result = runner.invoke(cli.app, ["ledger", team.id])
        assert result.exit_code == 0
        assert ALICE in result.output
        assert "8.00" in result.output

    def test_weights_recompute(self, team, make_task, issue_task):
        issue_task(make_task(cook_value=5))
        result = runner.invoke(cli.app, ["weights", team.id, "--recompute"])
        assert result.exit_code == 0
        assert "5.00" in result.output


class TestVerifyChain:
    def test_valid_chain(self, db_session, team, make_task, issue_task):
        issue_task(make_task())
        entry = LedgerService(db_session).list_entries(team.id)[0]
        AttestationService(db_session).create_for_entry(entry.id)

        result = runner.invoke(cli.app, ["verify-chain", ALICE, "--compute"])
        assert result.exit_code == 0
        assert "is valid" in result.output

    def test_pending_hash_fails(self, db_session, team, make_task, issue_task):
        issue_task(make_task())
        entry = LedgerService(db_session).list_entries(team.id)[0]
        AttestationService(db_session).create_for_entry(entry.id)

        result = runner.invoke(cli.app, ["verify-chain", ALICE])
        assert result.exit_code == 1
        assert "pending" in result.output


class TestGovernanceCommands:
    def test_close_expired_nothing_to_do(self, team):
        result = runner.invoke(cli.app, ["close-expired", team.id])
        assert result.exit_code == 0
        assert "Nothing to close" in result.output

    def test_select_committee(self, team, make_task, issue_task):
        issue_task(make_task(contributors=[ALICE], cook_value=6))
        result = runner.invoke(
            cli.app,
            ["select-committee", team.id, "Audit", "--seats", "1", "--actor", STEWARD,
             "--seed", "retro"],
        )
        assert result.exit_code == 0
        assert ALICE in result.output
        assert "Seed: retro" in result.output

    def test_select_committee_needs_steward(self, team, make_task, issue_task):
        issue_task(make_task(contributors=[ALICE], cook_value=6))
        result = runner.invoke(
            cli.app, ["select-committee", team.id, "Audit", "--seats", "1", "--actor", ALICE]
        )
        assert result.exit_code != 0


def test_version():
    result = runner.invoke(cli.app, ["version"])
    assert result.exit_code == 0
    assert "Cooperation Toolkit v" in result.output
