"""Tests for the vat-engine command-line front end."""

from pathlib import Path

import pytest

from vat_engine.cli import main
from vat_engine.loader import RETURNS_FILE, load_dataset
from vat_engine.models import VatStatus


@pytest.fixture
def data_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    target = tmp_path / "data"
    main(["--data-dir", str(target), "init"])
    return target


def _run(data_dir: Path, *argv: str) -> None:
    main(["--data-dir", str(data_dir), *argv])


def _only_return_id(data_dir: Path) -> str:
    [vr] = load_dataset(data_dir).returns
    return vr.id


def _ledger(tmp_path: Path) -> Path:
    path = tmp_path / "ledger.csv"
    path.write_text(
        "date,type,invoiceNumber,amount,vatAmount\n"
        "2024-01-10,Sale,INV-1,600,120\n"
        "2024-01-20,Sale,INV-2,400,80\n"
        "2024-02-02,Sale,INV-3,oops,\n",
        encoding="utf-8",
    )
    return path


# ── init ────────────────────────────────────────────────────────────


def test_init_creates_data_directory(data_dir: Path):
    assert (data_dir / RETURNS_FILE).exists()
    assert load_dataset(data_dir).returns == []


def test_init_does_not_overwrite(data_dir: Path, capsys: pytest.CaptureFixture):
    _run(data_dir, "create", "--start", "2024-01-01", "--end", "2024-01-31")
    _run(data_dir, "init")
    assert len(load_dataset(data_dir).returns) == 1
    assert "nothing" in capsys.readouterr().out


def test_no_command_prints_help(capsys: pytest.CaptureFixture):
    with pytest.raises(SystemExit) as exc:
        main([])
    assert exc.value.code == 0
    assert "vat-engine" in capsys.readouterr().out


# ── Lifecycle ───────────────────────────────────────────────────────


def test_create_and_show(data_dir: Path, capsys: pytest.CaptureFixture):
    _run(data_dir, "create", "--start", "2024-01-01", "--end", "2024-01-31", "--taxable", "1000")
    vr = load_dataset(data_dir).returns[0]
    assert str(vr.output_vat) == "200.00"

    _run(data_dir, "show", vr.id)
    out = capsys.readouterr().out
    assert "2024-01-01 to 2024-01-31" in out


def test_rate_override(data_dir: Path):
    _run(data_dir, "--rate", "0.10", "create", "--start", "2024-01-01", "--end", "2024-01-31", "--taxable", "1000")
    assert str(load_dataset(data_dir).returns[0].output_vat) == "100.00"


def test_update_keeps_unspecified_figures(data_dir: Path):
    _run(data_dir, "create", "--start", "2024-01-01", "--end", "2024-01-31",
         "--taxable", "1000", "--input-vat", "40")
    return_id = _only_return_id(data_dir)
    _run(data_dir, "update", return_id, "--taxable", "2000")

    [vr] = load_dataset(data_dir).returns
    assert str(vr.output_vat) == "400.00"
    assert str(vr.input_vat) == "40.00"
    assert len(vr.versions) == 2


def test_ready_then_file(data_dir: Path):
    _run(data_dir, "create", "--start", "2024-01-01", "--end", "2024-01-31")
    return_id = _only_return_id(data_dir)
    _run(data_dir, "ready", return_id)
    _run(data_dir, "file", return_id, "--reference", "VAT-2024-01", "--by", "ops")

    [vr] = load_dataset(data_dir).returns
    assert vr.status == VatStatus.FILED
    assert vr.filing.filed_by == "ops"


def test_delete(data_dir: Path):
    _run(data_dir, "create", "--start", "2024-01-01", "--end", "2024-01-31")
    _run(data_dir, "delete", _only_return_id(data_dir))
    assert load_dataset(data_dir).returns == []


# ── Errors ──────────────────────────────────────────────────────────


def test_reversed_period_exits_with_error(data_dir: Path, capsys: pytest.CaptureFixture):
    with pytest.raises(SystemExit) as exc:
        _run(data_dir, "create", "--start", "2024-02-01", "--end", "2024-01-01")
    assert exc.value.code == 1
    assert "Error" in capsys.readouterr().out
    assert load_dataset(data_dir).returns == []


def test_editing_filed_return_exits_with_error(data_dir: Path):
    _run(data_dir, "create", "--start", "2024-01-01", "--end", "2024-01-31")
    return_id = _only_return_id(data_dir)
    _run(data_dir, "file", return_id, "--reference", "R")
    with pytest.raises(SystemExit) as exc:
        _run(data_dir, "update", return_id, "--taxable", "5")
    assert exc.value.code == 1


def test_missing_data_directory_exits_with_error(tmp_path: Path):
    with pytest.raises(SystemExit) as exc:
        _run(tmp_path / "absent", "returns")
    assert exc.value.code == 1


def test_unknown_return_exits_with_error(data_dir: Path):
    with pytest.raises(SystemExit) as exc:
        _run(data_dir, "show", "missing")
    assert exc.value.code == 1


# ── Ledger and export ───────────────────────────────────────────────


def test_import_reconcile_and_export(data_dir: Path, tmp_path: Path, capsys: pytest.CaptureFixture):
    _run(data_dir, "create", "--start", "2024-01-01", "--end", "2024-01-31", "--taxable", "1000")
    return_id = _only_return_id(data_dir)

    _run(data_dir, "import", "--file", str(_ledger(tmp_path)), "--return", return_id)
    dataset = load_dataset(data_dir)
    assert len(dataset.transactions) == 3
    assert dataset.returns[0].activity[-1].type == "warning"

    _run(data_dir, "reconcile", return_id)
    matched = [t for t in load_dataset(data_dir).transactions if t.matched]
    assert sorted(t.invoice_number for t in matched) == ["INV-1", "INV-2"]

    out_file = tmp_path / "out" / "january.csv"
    _run(data_dir, "export", return_id, "-o", str(out_file))
    lines = out_file.read_text().splitlines()
    assert lines[0].startswith("return_id,period_start,period_end,status")
    assert lines[-1] == "TOTAL,,2 transactions,1000.00,200.00,,"

    capsys.readouterr()
    _run(data_dir, "export", return_id, "--format", "json", "-o", "-")
    assert '"output_vat": "200.00"' in capsys.readouterr().out


def test_export_to_output_dir(data_dir: Path, tmp_path: Path):
    _run(data_dir, "create", "--start", "2024-01-01", "--end", "2024-01-31")
    return_id = _only_return_id(data_dir)
    _run(data_dir, "export", return_id, "--format", "text", "--output-dir", str(tmp_path / "reports"))
    assert (tmp_path / "reports" / f"vat-return-{return_id}.txt").exists()


def test_unsupported_export_format(data_dir: Path):
    _run(data_dir, "create", "--start", "2024-01-01", "--end", "2024-01-31")
    with pytest.raises(SystemExit) as exc:
        _run(data_dir, "export", _only_return_id(data_dir), "--format", "pdf", "-o", "-")
    assert exc.value.code == 1


def test_match_command(data_dir: Path, tmp_path: Path):
    _run(data_dir, "import", "--file", str(_ledger(tmp_path)))
    txn_id = load_dataset(data_dir).transactions[0].id
    _run(data_dir, "match", txn_id)
    txn = next(t for t in load_dataset(data_dir).transactions if t.id == txn_id)
    assert txn.matched is True


# ── Reports ─────────────────────────────────────────────────────────


def test_dashboard_and_alerts(data_dir: Path, capsys: pytest.CaptureFixture):
    _run(data_dir, "create", "--start", "2024-01-01", "--end", "2024-01-31", "--taxable", "1000")
    capsys.readouterr()

    _run(data_dir, "dashboard", "--as-of", "2024-03-20")
    out = capsys.readouterr().out
    assert "VAT Dashboard" in out
    assert "2024-04-15" in out

    _run(data_dir, "alerts", "--as-of", "2024-03-20")
    assert "CRITICAL" in capsys.readouterr().out


def test_returns_listing_filters(data_dir: Path, capsys: pytest.CaptureFixture):
    _run(data_dir, "create", "--start", "2024-01-01", "--end", "2024-01-31")
    capsys.readouterr()
    _run(data_dir, "returns", "--status", "Filed")
    assert "No returns match" in capsys.readouterr().out
