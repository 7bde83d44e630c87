import json
import logging

import pytest

import config.settings as settings_module
import main


@pytest.fixture(autouse=True)
def quiet_cli(monkeypatch):
    monkeypatch.setattr(settings_module, "load_dotenv", lambda *args, **kwargs: False)
    monkeypatch.setattr(main, "setup_logging", lambda level: None)
    yield
    logging.getLogger().setLevel(logging.WARNING)


def _write(tmp_path, document, name="graph.json"):
    path = tmp_path / name
    path.write_text(json.dumps(document))
    return path


def _sum_document():
    return {
        "version": 1,
        "Nodes": [
            {"typeId": "NumberInput", "id": "n1", "data": {"value": {"typeTag": "float", "value": 5.0}}},
            {"typeId": "Sum", "id": "n2"},
        ],
        "Edges": [{"id": "e1", "fromNodeId": "n1", "toNodeId": "n2", "fromSocket": "value", "toSocket": "a"}],
    }


def test_parse_args():
    args = main.parse_args(["run", "g.json", "--no-branch-tracking", "--only", "a", "b"])
    assert args.command == "run"
    assert args.no_branch_tracking is True
    assert args.only == ["a", "b"]
    assert args.direction == "input_to_output"
    assert main.parse_args(["run", "g.json", "--direction", "output_to_input"]).direction == "output_to_input"

    with pytest.raises(SystemExit):
        main.parse_args([])


def test_validate_ok(tmp_path, capsys):
    path = _write(tmp_path, _sum_document())
    assert main.main(["validate", str(path)]) == 0
    assert "OK: 2 node(s), 1 edge(s)" in capsys.readouterr().out


def test_validate_reports_cycle(tmp_path, capsys):
    document = {
        "Nodes": [{"typeId": "Watch", "id": "w"}, {"typeId": "IfElse", "id": "i"}],
        "Edges": [
            {"id": "e1", "fromNodeId": "i", "toNodeId": "i", "fromSocket": "true", "toSocket": "value"},
        ],
    }
    path = _write(tmp_path, document)
    assert main.main(["validate", str(path)]) == 1
    out = capsys.readouterr().out
    assert "SELF_LOOP" in out and "CYCLE_DETECTED" in out


def test_run_prints_outputs(tmp_path, capsys):
    path = _write(tmp_path, _sum_document())

    assert main.main(["run", str(path)]) == 0

    report = json.loads(capsys.readouterr().out)
    assert report["executed_count"] == 2
    assert report["outputs"]["n2.sum"] == 5.0
    assert report["faulted"] == {}


def test_run_refuses_invalid_graph(tmp_path, capsys):
    document = {
        "Nodes": [{"typeId": "Watch", "id": "w"}, {"typeId": "IfElse", "id": "i"}],
        "Edges": [{"id": "e1", "fromNodeId": "i", "toNodeId": "i", "fromSocket": "true", "toSocket": "value"}],
    }
    path = _write(tmp_path, document)
    assert main.main(["run", str(path)]) == 1
    assert "CYCLE_DETECTED" in capsys.readouterr().err


def test_load_warnings_go_to_stderr(tmp_path, capsys):
    document = _sum_document()
    document["Nodes"].append({"typeId": "Plugin", "id": "p"})
    path = _write(tmp_path, document)

    assert main.main(["run", str(path)]) == 0
    assert "UNKNOWN_NODE_TYPE" in capsys.readouterr().err


def test_unreadable_documents(tmp_path, capsys):
    assert main.main(["validate", str(tmp_path / "missing.json")]) == 2
    bad = tmp_path / "bad.json"
    bad.write_text("{nope")
    assert main.main(["run", str(bad)]) == 2
    assert "Cannot load" in capsys.readouterr().err
