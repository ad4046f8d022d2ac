"""
CLI command tests (flask system / users / catalog).
"""

from phonestock.services import auth_service


def test_users_create_and_list(app, db_session):
    runner = app.test_cli_runner()

    result = runner.invoke(args=[
        "users", "create",
        "--username", "agent_c",
        "--email", "agent_c@shop.lk",
        "--role", "dsr",
    ])
    assert result.exit_code == 0, result.output
    assert "PASS Created user 'agent_c'" in result.output
    assert auth_service.list_users(role="dsr")[0].username == "agent_c"

    result = runner.invoke(args=["users", "list"])
    assert "agent_c" in result.output


def test_users_create_duplicate_fails(app, db_session, dsr):
    runner = app.test_cli_runner()
    result = runner.invoke(args=[
        "users", "create",
        "--username", dsr.username,
        "--email", "other@shop.lk",
        "--role", "dsr",
    ])
    assert result.exit_code == 1
    assert "FAIL" in result.output


def test_catalog_list(app, db_session, make_invoice):
    make_invoice()
    result = app.test_cli_runner().invoke(args=["catalog", "list"])
    assert result.exit_code == 0, result.output
    assert "SAMSUNG Galaxy A55 256GB Navy" in result.output


def test_catalog_list_empty(app, db_session):
    result = app.test_cli_runner().invoke(args=["catalog", "list"])
    assert "No products found." in result.output
