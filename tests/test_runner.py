"""End-to-end tests for the command-line entry point."""
import io

import pytest

from promquery.runner import build_parser, main

SERVER = ["--server", "http://prom:9090"]

VECTOR_BODY = {
    "type": "vector",
    "value": [{"metric": {"job": "x"}, "value": "1.5", "timestamp": 100}],
}


def test_query_text_output(server, capsys):
    server.body = VECTOR_BODY
    rc = main(SERVER + ["--format", "text", "query", "up"], transport=server.transport)
    out, err = capsys.readouterr()
    assert rc == 0
    assert out == '{job="x"} 1.5@100\n'
    assert err == ""


def test_query_csv_is_default(server, capsys):
    server.body = {"type": "scalar", "value": "42"}
    rc = main(SERVER + ["query", "scalar(up)"], transport=server.transport)
    assert rc == 0
    assert capsys.readouterr().out == "42\n"


def test_query_csv_custom_delimiter(server, capsys):
    server.body = VECTOR_BODY
    rc = main(SERVER + ["--csv-delimiter", ",", "query", "up"], transport=server.transport)
    assert rc == 0
    assert capsys.readouterr().out == '"{job=""x""}",1.5,100\n'


def test_query_range_default_step(server, capsys):
    server.body = {"type": "matrix", "value": [
        {"metric": {"job": "x"}, "values": [[100, "1"], [104, "2"]]},
    ]}
    rc = main(SERVER + ["--format", "text", "query_range", "up", "1700000000", "1000"],
              transport=server.transport)
    assert rc == 0
    assert capsys.readouterr().out == '{job="x"} 1@100 2@104\n'
    params = server.last_request.url.params
    assert params["step"] == "4"
    assert params["range"] == "1000"
    assert params["end"] == "1700000000"


def test_query_range_explicit_step(server, capsys):
    server.body = {"type": "matrix", "value": []}
    rc = main(SERVER + ["query_range", "up", "1700000000.5", "3600", "30"], transport=server.transport)
    assert rc == 0
    assert server.last_request.url.params["step"] == "30"


def test_metrics_listing(server, capsys):
    server.body = ["up", "node_load1"]
    rc = main(SERVER + ["metrics"], transport=server.transport)
    assert rc == 0
    assert capsys.readouterr().out == "up\nnode_load1\n"


def test_server_from_environment(server, capsys, monkeypatch):
    monkeypatch.setenv("PROMETHEUS_URL", "http://env-prom:9090")
    server.body = ["up"]
    rc = main(["metrics"], transport=server.transport)
    assert rc == 0
    assert server.last_request.url.host == "env-prom"


def test_query_error_is_reported_verbatim(server, capsys):
    server.body = {"type": "error", "value": "no such metric"}
    rc = main(SERVER + ["query", "nope"], transport=server.transport)
    out, err = capsys.readouterr()
    assert rc == 1
    assert out == ""
    assert "Query error: no such metric" in err


def test_unknown_response_type(server, capsys):
    server.body = {"type": "histogram", "value": {}}
    rc = main(SERVER + ["query", "up"], transport=server.transport)
    out, err = capsys.readouterr()
    assert rc == 1
    assert out == ""
    assert "histogram" in err


def test_decode_error_names_field(server, capsys):
    server.body = {"type": "vector", "value": [{"metric": {"job": "x"}, "value": "abc", "timestamp": 1}]}
    rc = main(SERVER + ["query", "up"], transport=server.transport)
    out, err = capsys.readouterr()
    assert rc == 1
    assert out == ""
    assert "value[0].value" in err


def test_transport_error(server, capsys):
    server.body = b"Bad Gateway"
    server.status_code = 502
    rc = main(SERVER + ["query", "up"], transport=server.transport)
    out, err = capsys.readouterr()
    assert rc == 1
    assert out == ""
    assert "Error querying server" in err
    assert "502" in err


@pytest.mark.parametrize("argv", [
    ["query", "up"],
    SERVER,
    SERVER + ["query"],
    SERVER + ["query", "up", "extra"],
    SERVER + ["query_range", "up", "100"],
    SERVER + ["query_range", "up", "soon", "60"],
    SERVER + ["query_range", "up", "100", "an hour"],
    SERVER + ["query_range", "up", "100", "60", "-5"],
    SERVER + ["query_range", "up", "100", "60", "1", "2"],
    SERVER + ["query_range", "up", "inf", "60"],
    SERVER + ["query_range", "up", "nan", "60"],
    SERVER + ["query_range", "up", "1_700_000_000", "60"],
    SERVER + ["query_range", "up", "100", "1_000"],
    SERVER + ["query_range", "up", "100", "+60"],
    SERVER + ["query_range", "up", "100", "60", "1_0"],
    SERVER + ["metrics", "extra"],
    SERVER + ["series", "up"],
    SERVER + ["--csv-delimiter", ";;", "query", "up"],
    SERVER + ["--format", "json", "query", "up"],
    SERVER + ["--timeout", "forever", "query", "up"],
    ["--server", "prom:9090", "query", "up"],
])
def test_argument_errors_exit_before_any_request(argv, server, capsys):
    server.body = {"type": "scalar", "value": "1"}
    with pytest.raises(SystemExit) as exc:
        main(argv, transport=server.transport)
    out, err = capsys.readouterr()
    assert exc.value.code == 2
    assert server.requests == []
    assert out == ""
    assert "usage:" in err


def test_help_lists_commands(capsys):
    help_text = build_parser().format_help()
    for command in ("query", "query_range", "metrics"):
        assert command in help_text


def test_closed_stdout_is_reported(server, capsys, monkeypatch):
    closed = io.StringIO()
    closed.close()
    monkeypatch.setattr("sys.stdout", closed)
    server.body = {"type": "scalar", "value": "1"}
    rc = main(SERVER + ["query", "up"], transport=server.transport)
    assert rc == 1
    assert "Error writing output" in capsys.readouterr().err
