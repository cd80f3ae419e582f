import json
from pathlib import Path

import pytest

from backend.cli import quote_cli


def _write_json(path: Path, payload) -> Path:
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


def test_catalog_table(capsys):
    assert quote_cli.main(["catalog"]) == 0
    out = capsys.readouterr().out.splitlines()
    assert len(out) == 11
    assert out[0].startswith("CUTY")
    assert "0.20=€65" in out[0]


def test_catalog_json(capsys):
    assert quote_cli.main(["catalog", "--json"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert [c["id"] for c in data][:2] == ["CUTY", "CUBIX"]


def test_quote_file(tmp_path, capsys):
    path = _write_json(
        tmp_path / "order.json",
        {
            "lines": [
                {
                    "uid": 1,
                    "collectionId": "CUTY",
                    "colorConfigs": [
                        {"colorName": "Black", "caratIdx": 2, "qty": 3},
                        {"colorName": "Red", "caratIdx": 2, "qty": 2},
                    ],
                },
                {"uid": 2, "collectionId": "CUBIX", "colorConfigs": [{"colorName": "Navy", "caratIdx": 1, "qty": 4}]},
            ]
        },
    )
    assert quote_cli.main(["quote", str(path)]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["subtotal"] == 461
    assert data["minimumMet"] is False


def test_quote_accepts_bare_list(tmp_path, capsys):
    path = _write_json(tmp_path / "order.json", [{"collectionId": "CUTY", "colorConfigs": [{"caratIdx": 0, "qty": 40}]}])
    assert quote_cli.main(["quote", str(path)]) == 0
    assert json.loads(capsys.readouterr().out)["total"] == 800


@pytest.mark.parametrize(
    "content, message",
    [
        (None, "File not found"),
        ("{not json", "Invalid JSON"),
        ('{"lines": 3}', "Expected a JSON array"),
        ('[{"colorConfigs": "Black"}]', "Invalid order line"),
    ],
)
def test_quote_errors_exit_with_one(tmp_path, capsys, content, message):
    path = tmp_path / "order.json"
    if content is not None:
        path.write_text(content, encoding="utf-8")
    assert quote_cli.main(["quote", str(path)]) == 1
    assert message in capsys.readouterr().err


def test_extract_saved_reply(tmp_path, capsys):
    path = tmp_path / "reply.txt"
    path.write_text('Here:\n```json\n{"message": "hi", "quote": null}\n```', encoding="utf-8")
    assert quote_cli.main(["extract", str(path)]) == 0
    assert json.loads(capsys.readouterr().out) == {"message": "hi", "quote": None}


def test_vat_bad_format_needs_no_network(capsys):
    assert quote_cli.main(["vat", "12"]) == 0
    data = json.loads(capsys.readouterr().out)
    assert data["status"] == "INVALID"
    assert data["errorCode"] == "INVALID_FORMAT"
