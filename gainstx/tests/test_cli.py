"""
Command-line driver: each subcommand against the test database, and the
exit status on pipeline errors.
"""

from sqlalchemy import text

from conftest import ts
from gainstx.cli import main
from gainstx.models.disposal import Disposal
from gainstx.models.transaction import Transaction

HEADER = "date,source,currency,type,amount,fee,fee_rate,exchange_currency,exchange_value,usd_value"

TRADES_CSV = "\n".join([
    HEADER,
    "2017-01-15T10:30:00Z,ledger,BTC,buy,1.0,,,USD,-1000.00,",
    "2018-03-01T00:00:00Z,ledger,BTC,sell,-0.2,,,USD,900.00,",
])


def write_csv(tmp_path, content, name="ledger.csv"):
    path = tmp_path / name
    path.write_text(content)
    return str(path)


class TestCommands:

    def test_import(self, tmp_path, session_factory, test_db, capsys):
        path = write_csv(tmp_path, TRADES_CSV)

        assert main(["import", path], session_factory=session_factory) == 0

        assert "imported 2 transactions" in capsys.readouterr().out
        assert test_db.query(Transaction).count() == 2

    def test_phases_one_by_one(self, tmp_path, session_factory, test_db, capsys):
        path = write_csv(tmp_path, TRADES_CSV)
        main(["import", path], session_factory=session_factory)

        assert main(["reconcile"], session_factory=session_factory) == 0
        assert main(["gains"], session_factory=session_factory) == 0
        assert test_db.query(Disposal).count() == 1

        capsys.readouterr()
        assert main(["summary"], session_factory=session_factory) == 0
        out = capsys.readouterr().out
        assert "2018" in out
        assert "700.00" in out

    def test_reimport_after_gains(self, tmp_path, session_factory, test_db):
        test_db.execute(text("PRAGMA foreign_keys=ON"))
        path = write_csv(tmp_path, TRADES_CSV)
        main(["run", "--file", path, "--no-backfill"], session_factory=session_factory)

        assert main(["import", path], session_factory=session_factory) == 0
        assert test_db.query(Transaction).count() == 2
        assert test_db.query(Disposal).count() == 0

    def test_run_without_backfill(self, tmp_path, session_factory, capsys):
        path = write_csv(tmp_path, TRADES_CSV)

        code = main(["run", "--file", path, "--no-backfill"], session_factory=session_factory)

        assert code == 0
        out = capsys.readouterr().out
        assert "FIFO" in out
        assert "TOTAL" in out

    def test_disposal_methods_from_environment(self, tmp_path, session_factory, capsys, monkeypatch):
        monkeypatch.setenv("DISPOSAL_METHODS", '{"default": "LIFO"}')
        path = write_csv(tmp_path, TRADES_CSV)
        main(["run", "--file", path, "--no-backfill"], session_factory=session_factory)
        assert "LIFO" in capsys.readouterr().out


class TestExitStatus:

    def test_invalid_file(self, tmp_path, session_factory, test_db):
        path = write_csv(tmp_path, HEADER + "\n2017-01-01,ledger,BTC,sell,1,,,,,")
        assert main(["import", path], session_factory=session_factory) == 1
        assert test_db.query(Transaction).count() == 0

    def test_missing_file(self, tmp_path, session_factory):
        assert main(["import", str(tmp_path / "nope.csv")], session_factory=session_factory) == 1

    def test_unreconciled_transfer(self, session_factory, make_tx):
        make_tx(ts(2017, 1, 1), "-1", "transfer", source="exchange")
        assert main(["reconcile"], session_factory=session_factory) == 1

    def test_missing_lot(self, session_factory, make_tx):
        make_tx(ts(2017, 1, 1), "-1", "sell", usd_value="100")
        assert main(["gains"], session_factory=session_factory) == 1

    def test_bad_disposal_methods(self, session_factory, monkeypatch):
        monkeypatch.setenv("DISPOSAL_METHODS", "[1, 2]")
        assert main(["summary"], session_factory=session_factory) == 1
