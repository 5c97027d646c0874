import json
import logging
from datetime import date

import pytest
from openpyxl import load_workbook

from xlsxmap.cli import XlsxmapError, main_cli, run_cli_app

VALID_CONFIG = "people.toml"
SIMPLE_CONFIG = """\
[[columns]]
target_field = "name"
title = "Full name"
required = true
column_order = 0

[[columns]]
target_field = "age"
title = "Age"
type = "int"
column_order = 1
"""


@pytest.fixture
def people_xlsx(tmp_path, make_workbook):
    data = make_workbook(
        [
            ["Customer", "ACME"],
            [None, None],
            ["Full name", "Age", "Joined"],
            ["Ada", 36, date(2024, 1, 5)],
            ["Bob", None, None],
        ]
    )
    path = tmp_path / "people.xlsx"
    path.write_bytes(data)
    return path


@pytest.fixture
def simple_config(tmp_path):
    path = tmp_path / "simple.toml"
    path.write_text(SIMPLE_CONFIG, encoding="utf-8")
    return path


def test_run_cli_app_no_args_entrypoint(monkeypatch, capsys):
    monkeypatch.setattr("sys.argv", ["xlsxmap"])
    run_cli_app()
    captured = capsys.readouterr()
    assert "usage: xlsxmap" in captured.out


def test_run_cli_app_no_args(capsys):
    run_cli_app([])
    captured = capsys.readouterr()
    assert "usage: xlsxmap" in captured.out


def test_main_unknown_arg(capsys):
    with pytest.raises(SystemExit) as exc_info:
        main_cli(["--unknown-arg"])
    assert exc_info.value.code == 2  # noqa: PLR2004
    captured = capsys.readouterr()
    assert "xlsxmap: error: unrecognized arguments: --unknown-arg" in captured.err


def test_main_version(capsys):
    main_cli(["--version"])
    captured = capsys.readouterr()
    assert captured.out.startswith("xlsxmap")


def test_main_subcmd_help(capsys):
    with pytest.raises(SystemExit) as exc_info:
        run_cli_app(["annotate", "--help"])
    assert exc_info.value.code == 0
    captured = capsys.readouterr()
    assert "usage: xlsxmap annotate" in captured.out


# ===== Tests for common options of all subcommands =====


def test_nonexisting_file(tmp_path, caplog, temp_config):
    with caplog.at_level(logging.ERROR), pytest.raises(XlsxmapError):
        main_cli(["read", str(tmp_path / "missing.xlsx")])
    assert "File not found:" in caplog.text


def test_nonexisting_config(people_xlsx, tmp_path, temp_config):
    with pytest.raises(XlsxmapError, match="Config file not found"):
        main_cli(["read", "--config", str(tmp_path / "nope.toml"), str(people_xlsx)])


def test_outdir_is_file(people_xlsx, temp_config):
    with pytest.raises(XlsxmapError, match="Outdir must be a directory"):
        main_cli(["read", "-O", str(people_xlsx), str(people_xlsx)])


def test_no_columns_configured(people_xlsx, temp_config):
    with pytest.raises(XlsxmapError, match="No columns configured"):
        main_cli(["read", str(people_xlsx)])


def test_error_exit_code(people_xlsx, caplog, temp_config):
    with caplog.at_level(logging.ERROR), pytest.raises(SystemExit) as exc_info:
        run_cli_app(["read", str(people_xlsx)])
    assert exc_info.value.code == 1
    assert "Terminating with error" in caplog.text


def test_logfile(people_xlsx, datadir, tmp_path, temp_config):
    logfile = tmp_path / "logs" / "xlsxmap.log"
    main_cli(
        ["read", "--config", str(datadir / VALID_CONFIG), "-l", str(logfile), str(people_xlsx)]
    )
    assert logfile.exists()


# ===== Tests for subcommand read =====


def test_read_to_stdout(people_xlsx, datadir, capsys, temp_config):
    main_cli(["read", "--config", str(datadir / VALID_CONFIG), str(people_xlsx)])
    result = json.loads(capsys.readouterr().out)
    assert result["search_parameters"] == {"customer": "ACME"}
    assert result["records"][0] == {
        "nr_row": 4,
        "name": "Ada",
        "age": 36,
        "joined": "2024-01-05",
    }
    assert result["records"][1]["age"] is None


def test_read_to_outdir(people_xlsx, datadir, tmp_path, caplog, temp_config):
    outdir = tmp_path / "out"
    with caplog.at_level(logging.INFO):
        main_cli(
            [
                "read",
                "--config",
                str(datadir / VALID_CONFIG),
                "-O",
                str(outdir),
                str(people_xlsx),
            ]
        )
    result = json.loads((outdir / "people.json").read_text(encoding="utf-8"))
    assert [r["name"] for r in result["records"]] == ["Ada", "Bob"]
    assert "-> Saved 2 records" in caplog.text


def test_read_json_option(people_xlsx, datadir, tmp_path, temp_config):
    target = tmp_path / "records.json"
    main_cli(
        [
            "read",
            "--config",
            str(datadir / VALID_CONFIG),
            "--json",
            str(target),
            str(people_xlsx),
        ]
    )
    assert len(json.loads(target.read_text(encoding="utf-8"))["records"]) == 2


# ===== Tests for subcommand export =====


def test_export_roundtrip(tmp_path, simple_config, capsys, temp_config):
    source = tmp_path / "people.json"
    source.write_text(
        json.dumps([{"name": "Ada", "age": 36}, {"name": "Bob"}]), encoding="utf-8"
    )
    main_cli(["export", "--config", str(simple_config), str(source)])
    xlsx = tmp_path / "people.xlsx"
    ws = load_workbook(xlsx).worksheets[0]
    assert [c.value for c in ws[1]] == ["Full name", "Age"]
    assert ws["A3"].value == "Bob"

    capsys.readouterr()
    main_cli(["read", "--config", str(simple_config), str(xlsx)])
    result = json.loads(capsys.readouterr().out)
    assert [(r["name"], r["age"]) for r in result["records"]] == [
        ("Ada", 36),
        ("Bob", None),
    ]


def test_export_uses_export_settings(tmp_path, datadir, temp_config):
    source = tmp_path / "people.json"
    source.write_text(
        json.dumps({"records": [{"name": "Ada", "joined": "2024-01-05"}]}),
        encoding="utf-8",
    )
    main_cli(
        ["export", "--config", str(datadir / VALID_CONFIG), "-O", str(tmp_path / "x"), str(source)]
    )
    ws = load_workbook(tmp_path / "x" / "people.xlsx").worksheets[0]
    assert ws.freeze_panes == "A2"
    assert ws["A1"].fill.fgColor.rgb[-6:] == "FFE699"


def test_export_invalid_records(tmp_path, simple_config, temp_config):
    source = tmp_path / "people.json"
    source.write_text(json.dumps([{"age": 3}]), encoding="utf-8")
    with pytest.raises(XlsxmapError, match="Invalid records"):
        main_cli(["export", "--config", str(simple_config), str(source)])


# ===== Tests for subcommand annotate =====


def test_annotate(people_xlsx, datadir, tmp_path, temp_config):
    results = tmp_path / "results.json"
    results.write_text(
        json.dumps(
            [
                {
                    "message": "Age missing",
                    "row_index": 5,
                    "column_index": 1,
                    "status": "warning",
                }
            ]
        ),
        encoding="utf-8",
    )
    main_cli(
        [
            "annotate",
            "--config",
            str(datadir / VALID_CONFIG),
            "--results",
            str(results),
            str(people_xlsx),
        ]
    )
    ws = load_workbook(tmp_path / "people_annotated.xlsx").worksheets[0]
    assert ws["D4"].value == "IMPORT OK"
    assert ws["D5"].value == "Age missing"
    assert ws["B5"].comment.text == "Age missing"
    # source left untouched
    assert load_workbook(people_xlsx).worksheets[0]["D4"].value is None


def test_annotate_inplace(people_xlsx, datadir, tmp_path, temp_config):
    results = tmp_path / "results.json"
    results.write_text("[]", encoding="utf-8")
    main_cli(
        [
            "annotate",
            "--config",
            str(datadir / VALID_CONFIG),
            "--results",
            str(results),
            "--ok-message",
            "checked",
            "--inplace",
            str(people_xlsx),
        ]
    )
    ws = load_workbook(people_xlsx).worksheets[0]
    assert ws["D4"].value == "checked"


def test_annotate_invalid_results(people_xlsx, datadir, tmp_path, temp_config):
    results = tmp_path / "results.json"
    results.write_text(json.dumps([{"message": "x"}]), encoding="utf-8")
    with pytest.raises(XlsxmapError, match="Invalid validation results"):
        main_cli(
            [
                "annotate",
                "--config",
                str(datadir / VALID_CONFIG),
                "--results",
                str(results),
                str(people_xlsx),
            ]
        )
