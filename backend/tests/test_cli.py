from kasa.cli import credit_group, registers_group
from kasa.services import credit_service, register_service


def test_open_status_and_close_from_the_command_line(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(registers_group, ["open", "--balance", "50000"])
    assert result.exit_code == 0
    assert "PASS Opened session" in result.output

    result = runner.invoke(registers_group, ["status"])
    assert "500.00" in result.output

    result = runner.invoke(registers_group, ["close", "--counted", "50000"])
    assert result.exit_code == 0
    assert "END OF DAY" in result.output
    assert register_service.get_active_session() is None


def test_opening_twice_fails_cleanly(app, db_session):
    runner = app.test_cli_runner()
    runner.invoke(registers_group, ["open"])

    result = runner.invoke(registers_group, ["open"])

    assert result.exit_code != 0
    assert "already" in result.output.lower()


def test_customers_listing(app, db_session):
    credit_service.add_customer(name="Mehmet Demir", credit_limit_cents=20_000)

    result = app.test_cli_runner().invoke(credit_group, ["customers"])

    assert "Mehmet Demir" in result.output
    assert "200.00" in result.output
