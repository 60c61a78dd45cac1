# Overview: Pytest coverage for the Flask CLI command groups.

from settlement.models import Branch
from settlement.services import cashup_service


class TestCli:

    def test_branch_and_cashup_commands(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=["branches", "create", "--code", "dbn01", "--name", "Durban North"])
        assert result.exit_code == 0
        assert "PASS Created branch DBN01" in result.output

        branch = db_session.query(Branch).filter_by(code="DBN01").one()

        result = runner.invoke(args=["cashup", "open", "--branch-id", str(branch.id),
                                     "--opening", "500.00", "--cashier", "Sipho"])
        assert result.exit_code == 0
        session = cashup_service.get_current_session(branch.id)
        assert session.opening_cents == 50000

        result = runner.invoke(args=["cashup", "close", "--session-id", str(session.id), "--actual", "504.00"])
        assert result.exit_code == 0
        assert "Variance: 4.00 (minor overage)" in result.output

    def test_bad_amount(self, app, db_session, branch):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["cashup", "open", "--branch-id", str(branch.id),
                                     "--opening", "5.005", "--cashier", "Sipho"])
        assert result.exit_code != 0
        assert cashup_service.get_current_session(branch.id) is None

    def test_accounts_open(self, app, db_session):
        runner = app.test_cli_runner()
        result = runner.invoke(args=["accounts", "open", "--first-name", "Thandi", "--last-name", "Mokoena",
                                     "--credit-limit", "300.00"])
        assert result.exit_code == 0
        assert "PASS Opened ACC-" in result.output

    def test_accounts_open_duplicate_number(self, app, db_session):
        runner = app.test_cli_runner()
        args = ["accounts", "open", "--first-name", "Thandi", "--last-name", "Mokoena", "--account-number", "ACC-0042"]
        assert runner.invoke(args=args).exit_code == 0

        result = runner.invoke(args=args)
        assert result.exit_code != 0
        assert "already in use" in result.output
