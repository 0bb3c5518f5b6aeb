import pytest

from bqremote.backend.services.builtin_functions import build_default_registry
from bqremote.backend.services.deployment import (
    DeploymentTarget,
    build_connection_command,
    build_create_function_ddl,
    build_functions_deploy_command,
    build_run_deploy_command,
    context_from_json,
    format_command,
)
from bqremote.scripts.deploy_remote_function import main as deploy_main


def test_functions_deploy_command_flags():
    target = DeploymentTarget(
        service_name="remote-add",
        project="my-project-123",
        memory="256Mi",
        max_instances=3,
    )
    command = build_functions_deploy_command(target)
    assert command[:4] == ["gcloud", "functions", "deploy", "remote-add"]
    assert "--gen2" in command
    assert "--runtime=python312" in command
    assert "--trigger-http" in command
    assert "--entry-point=remote_function_handler" in command
    assert "--region=asia-northeast1" in command
    assert "--project=my-project-123" in command
    assert "--no-allow-unauthenticated" in command
    assert "--max-instances=3" in command


def test_run_deploy_command_can_allow_unauthenticated():
    target = DeploymentTarget(service_name="remote-add", allow_unauthenticated=True)
    command = build_run_deploy_command(target)
    assert command[:4] == ["gcloud", "run", "deploy", "remote-add"]
    assert "--allow-unauthenticated" in command
    assert "--trigger-http" not in command


def test_invalid_target_is_rejected():
    with pytest.raises(ValueError):
        build_run_deploy_command(DeploymentTarget(service_name="Bad_Name"))
    with pytest.raises(ValueError):
        build_run_deploy_command(DeploymentTarget(service_name="ok", max_instances=0))


def test_connection_command():
    command = build_connection_command("remote_conn", location="US", project="my-project")
    assert format_command(command) == (
        "bq mk --connection --location=US --connection_type=CLOUD_RESOURCE "
        "--project_id=my-project remote_conn"
    )


def test_create_function_ddl_expands_variadic_arguments():
    function = build_default_registry().get("add_integers")
    ddl = build_create_function_ddl(
        function,
        dataset="my-project.udfs",
        connection="my-project.us.remote_conn",
        endpoint="https://remote-add-xyz.a.run.app/",
        arg_count=2,
        max_batching_rows=50,
        user_defined_context={"function": "add_integers"},
    )
    assert ddl.splitlines()[0] == (
        "CREATE OR REPLACE FUNCTION `my-project.udfs.add_integers`(x0 INT64, x1 INT64)"
    )
    assert "RETURNS INT64" in ddl
    assert "REMOTE WITH CONNECTION `my-project.us.remote_conn`" in ddl
    assert "endpoint = 'https://remote-add-xyz.a.run.app/'" in ddl
    assert "user_defined_context = [('function', 'add_integers')]" in ddl
    assert "max_batching_rows = 50" in ddl


def test_create_function_ddl_validation():
    registry = build_default_registry()
    normalize = registry.get("normalize_text")
    kwargs = dict(dataset="p.d", connection="p.us.c", endpoint="https://x.run.app")
    with pytest.raises(ValueError):
        build_create_function_ddl(normalize, **{**kwargs, "endpoint": "http://x"})
    with pytest.raises(ValueError):
        build_create_function_ddl(normalize, max_batching_rows=0, **kwargs)
    with pytest.raises(ValueError):
        build_create_function_ddl(normalize, arg_count=2, **kwargs)
    with pytest.raises(ValueError):
        build_create_function_ddl(normalize, **{**kwargs, "dataset": "p.d; DROP"})
    with pytest.raises(ValueError):
        build_create_function_ddl(normalize, sql_name="bad-name", **kwargs)


def test_context_escapes_quotes():
    function = build_default_registry().get("normalize_text")
    ddl = build_create_function_ddl(
        function,
        dataset="p.d",
        connection="p.us.c",
        endpoint="https://x.run.app",
        user_defined_context=context_from_json('{"note": "it\'s"}'),
    )
    assert "('note', 'it\\'s')" in ddl


def test_cli_prints_ddl(capsys):
    code = deploy_main(
        [
            "ddl",
            "days_between",
            "--dataset",
            "p.d",
            "--connection",
            "p.us.c",
            "--endpoint",
            "https://x.run.app",
            "--context",
            '{"function": "days_between"}',
        ]
    )
    assert code == 0
    out = capsys.readouterr().out
    assert "`p.d.days_between`(x0 DATE, x1 DATE)" in out


def test_cli_reports_unknown_function(capsys):
    code = deploy_main(
        [
            "ddl",
            "nope",
            "--dataset",
            "p.d",
            "--connection",
            "p.us.c",
            "--endpoint",
            "https://x.run.app",
        ]
    )
    assert code == 2
    assert "nope" in capsys.readouterr().err


def test_cli_prints_functions_command(capsys):
    code = deploy_main(["functions", "remote-add", "--allow-unauthenticated"])
    assert code == 0
    out = capsys.readouterr().out.strip()
    assert out.startswith("gcloud functions deploy remote-add --gen2")
    assert "--allow-unauthenticated" in out


def test_context_escapes_control_characters():
    function = build_default_registry().get("normalize_text")
    ddl = build_create_function_ddl(
        function,
        dataset="p.d",
        connection="p.us.c",
        endpoint="https://x.run.app",
        user_defined_context={"note": "line1\nline2\r\tend"},
    )
    assert "('note', 'line1\\nline2\\r\\tend')" in ddl
    context_line = [line for line in ddl.splitlines() if "user_defined_context" in line]
    assert len(context_line) == 1
