import json

import main
from conftest import GCASH_RECEIPT, FakeOCRBackend, make_png


def test_missing_input_exits_with_error(tmp_path, capsys):
    assert main.main(["--input", str(tmp_path / "missing.png"), "--quiet"]) == 1
    assert "not found" in capsys.readouterr().err


def test_unsupported_extension_exits_with_error(tmp_path):
    upload = tmp_path / "proof.gif"
    upload.write_bytes(b"GIF89a")
    assert main.main(["--input", str(upload), "--quiet"]) == 1


def test_collect_inputs_expands_directories(tmp_path):
    (tmp_path / "a.png").write_bytes(make_png())
    (tmp_path / "b.JPG").write_bytes(b"")
    (tmp_path / "notes.txt").write_text("ignore me")
    assert [p.name for p in main.collect_inputs([str(tmp_path)])] == ["a.png", "b.JPG"]


def test_cli_decides_screenshots(tmp_path, db_path, build, monkeypatch, capsys):
    upload = tmp_path / "proof.png"
    upload.write_bytes(make_png())
    submissions = tmp_path / "submissions.json"
    submissions.write_text(json.dumps([
        {"id": "SUB-7", "order_id": "ORD-7", "expected_amount": 75.0, "currency": "PHP"},
    ]))
    monkeypatch.setattr(
        "payproof.pipeline.build_processor",
        lambda db, recognizers=None: build(FakeOCRBackend(GCASH_RECEIPT)),
    )

    code = main.main(["--input", str(upload), "--db", str(db_path), "--submissions", str(submissions),
                      "--order-id", "ORD-1", "--quiet"])

    assert code == 0
    report = json.loads(capsys.readouterr().out)
    decision = report["results"][0]["decision"]
    assert decision["outcome"] == "auto_approved"
    assert decision["chosen"]["submission"]["id"] == "SUB-1"
    assert report["status"]["decisions"] == {"auto_approved": 1}
