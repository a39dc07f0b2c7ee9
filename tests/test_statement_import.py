import asyncio
from datetime import date

import pytest
from fastapi import HTTPException

from finamanage.core.config import settings
from finamanage.services.statement_import import (
    InvalidStatement,
    import_statement,
    normalize_amount,
    normalize_currency,
    normalize_date,
    normalize_kind,
    parse_csv,
    parse_ofx,
    transaction_hash,
)

PID = "5f0c6a52-3b1f-4c7e-9a52-0d2b8c1e7f44"

OFX = """OFXHEADER:100
<OFX><BANKMSGSRSV1><STMTTRNRS><STMTRS><BANKTRANLIST>
<STMTTRN>
<TRNTYPE>DEBIT
<DTPOSTED>20250110120000[-3:BRT]
<TRNAMT>-50.00
<NAME>MERCADO BOM PRECO
<MEMO>Compra no debito
</STMTTRN>
<STMTTRN>
<TRNTYPE>CREDIT
<DTPOSTED>20250105
<TRNAMT>3000.00
<MEMO>SALARIO JANEIRO
</STMTTRN>
</BANKTRANLIST></STMTRS></STMTTRNRS></BANKMSGSRSV1></OFX>
"""


@pytest.mark.parametrize("raw, expected", [
    ("2025-01-15", "2025-01-15"),
    ("2025-01-15T10:30:00", "2025-01-15"),
    ("15/01/2025", "2025-01-15"),
    ("05/02/2025", "2025-02-05"),
    ("", None),
    (None, None),
    ("sem data", None),
])
def test_normalize_date(raw, expected):
    assert normalize_date(raw) == expected


@pytest.mark.parametrize("raw, expected", [
    ("1.234,56", 1234.56),
    ("1,234.56", 1234.56),
    ("-45,90", -45.9),
    ("R$ 10", 10.0),
    ("-12.5", -12.5),
    (7, 7.0),
    ("", None),
    ("abc", None),
])
def test_normalize_amount(raw, expected):
    assert normalize_amount(raw) == expected


def test_normalize_currency_and_kind():
    assert normalize_currency("reais") == "BRL"
    assert normalize_currency("usd") == "USD"
    assert normalize_currency(None) == "BRL"
    assert normalize_currency("gbp") == "GBP"

    assert normalize_kind("Receita", -5) == "income"
    assert normalize_kind("DEBIT", 5) == "expense"
    assert normalize_kind(None, -5) == "expense"
    assert normalize_kind("", 5) == "income"


def test_transaction_hash():
    a = transaction_hash(PID, "2025-01-15", 10.0, "Padaria")
    assert a == transaction_hash(PID, "2025-01-15", 10, "Padaria")
    assert a != transaction_hash(PID, "2025-01-15", -10, "Padaria")
    assert len(a) == 64


def test_parse_csv_semicolon_headers_in_portuguese():
    rows = parse_csv("Data;Descrição;Valor\n15/01/2025;Padaria Pão Quente;-12,50\n\n")
    assert len(rows) == 1
    assert rows[0]["date"] == "15/01/2025"
    assert rows[0]["amount"] == "-12,50"
    assert rows[0]["description"] == "Padaria Pão Quente"
    assert rows[0]["merchant"] == "Padaria Pão Quente"
    assert rows[0]["currency"] == "BRL"


def test_parse_csv_quoted_fields():
    rows = parse_csv('date,description,amount,merchant\n2025-01-02,"Uber, viagem",-23.40,Uber\n')
    assert rows[0]["description"] == "Uber, viagem"
    assert rows[0]["amount"] == "-23.40"
    assert rows[0]["merchant"] == "Uber"


def test_parse_csv_missing_headers():
    with pytest.raises(InvalidStatement) as exc:
        parse_csv("descricao,valor\nabc,10\n")
    assert str(exc.value).startswith("Missing required headers. Need at least: date, amount.")

    with pytest.raises(InvalidStatement):
        parse_csv("\n\n")


def test_parse_ofx():
    rows = parse_ofx(OFX)
    assert [r["date"] for r in rows] == ["2025-01-10", "2025-01-05"]
    assert rows[0]["merchant"] == "MERCADO BOM PRECO"
    assert rows[0]["description"] == "Compra no debito"
    assert rows[0]["type"] == "debit"
    assert rows[1]["merchant"] == "SALARIO JANEIRO"
    assert rows[1]["type"] == "credit"


def test_import_statement_summary(db):
    duplicate = transaction_hash(PID, "2025-01-16", -30.0, "Posto Shell")

    db.on("SELECT id FROM accounts", scalar="acc-1")
    db.on("WHERE provider_transaction_id", fn=lambda p: [{"id": "old"}] if p["h"] == duplicate else [])

    content = (
        "date,description,amount\n"
        "2025-01-15,Padaria Pão Quente,-12.50\n"
        "2025-01-16,Posto Shell,-30.00\n"
        "ontem,Farmácia,-5.00\n"
    )
    out = asyncio.run(import_statement(db, PID, "extrato.csv", content))

    assert out["success"] is True
    assert out["summary"]["total_rows"] == 3
    assert out["summary"]["inserted"] == 1
    assert out["summary"]["duplicates"] == 1
    assert out["summary"]["failed_rows"] == 1
    assert out["summary"]["errors"] == ["Invalid data in row: date=ontem, amount=-5.00"]
    assert out["message"] == "Successfully processed 3 transactions: 1 inserted, 1 duplicates, 1 failed"

    row = db.executed("INSERT INTO transactions")[0]
    assert row["amount"] == 12.5
    assert row["date"] == date(2025, 1, 15)
    assert row["type"] == "expense"
    assert (row["category"], row["subcategory"]) == ("Alimentação", "Restaurantes")
    assert row["source"] == "csv:extrato.csv"
    assert row["aid"] == "acc-1"
    assert row["h"] == transaction_hash(PID, "2025-01-15", -12.5, "Padaria Pão Quente")
    assert db.executed("INSERT INTO events_logs")[0]["etype"] == "csv_import_completed"
    assert db.commits == 1


def test_import_keeps_category_from_file(db):
    db.on("SELECT id FROM accounts", scalar="acc-1")
    content = "data,descricao,valor,categoria,tipo\n2025-01-15,Cliente ACME,1500,Freelas,receita\n"

    asyncio.run(import_statement(db, PID, "extrato.csv", content))

    row = db.executed("INSERT INTO transactions")[0]
    assert (row["category"], row["type"], row["amount"]) == ("Freelas", "income", 1500.0)


def test_import_binds_dates_as_date_objects(db):
    db.on("SELECT id FROM accounts", scalar="acc-1")
    content = "data;descricao;valor\n10/01/2025;Padaria;-45,90\n2025-01-11T09:30:00;Mercado;-10\n"

    asyncio.run(import_statement(db, PID, "extrato.csv", content))

    dates = [p["date"] for p in db.executed("INSERT INTO transactions")]
    assert dates == [date(2025, 1, 10), date(2025, 1, 11)]
    assert all(type(d) is date for d in dates)


def test_import_ofx_without_transactions(db):
    db.on("SELECT id FROM accounts", scalar="acc-1")
    out = asyncio.run(import_statement(db, PID, "extrato.OFX", "<OFX></OFX>"))
    assert out["summary"]["total_rows"] == 0
    assert out["summary"]["errors"] == ["No transactions found in OFX file"]


def test_import_rejects_too_many_rows(db, monkeypatch):
    monkeypatch.setattr(settings, "MAX_IMPORT_ROWS", 1)
    content = "date,amount\n2025-01-01,1\n2025-01-02,2\n"
    with pytest.raises(HTTPException) as exc:
        asyncio.run(import_statement(db, PID, "extrato.csv", content))
    assert exc.value.status_code == 400
    assert "Maximum allowed is 1" in exc.value.detail


def test_import_invalid_csv_is_bad_request(db):
    with pytest.raises(HTTPException) as exc:
        asyncio.run(import_statement(db, PID, "extrato.csv", "foo,bar\n1,2\n"))
    assert exc.value.status_code == 400


def test_import_endpoint(client, db, auth_header):
    db.on("SELECT id FROM accounts", scalar="acc-1")
    resp = client.post(
        "/api/v1/transactions/import",
        files={"file": ("extrato.csv", "date,description,amount\n2025-01-15,Netflix,-39.90\n".encode(), "text/csv")},
        headers=auth_header(),
    )
    assert resp.status_code == 200
    assert resp.json()["summary"]["inserted"] == 1


def test_import_endpoint_without_file(client, auth_header):
    resp = client.post("/api/v1/transactions/import", files={"other": ("a.txt", b"x", "text/plain")},
                       headers=auth_header())
    assert resp.status_code == 400
    assert resp.json() == {"error": "No file provided"}
