import asyncio
import json
from datetime import date

import pytest

from finamanage.services import whatsapp_commands
from finamanage.services.whatsapp_commands import as_dict, handle_command, parse_edit_command, resolve_intent

PID = "5f0c6a52-3b1f-4c7e-9a52-0d2b8c1e7f44"
RECEIPT = {"receiptId": "r1"}


@pytest.mark.parametrize("command, context, intent", [
    ("confirm_receipt", RECEIPT, "confirm_receipt"),
    ("confirm_receipt", {}, "unknown"),
    ("cancel_receipt", {}, "cancel_receipt"),
    ("edit_receipt", {}, "edit_help"),
    ("EDITAR\nValor: 10", RECEIPT, "edit"),
    ("sim", RECEIPT, "confirm_receipt"),
    ("confirmar", RECEIPT, "confirm_receipt"),
    ("SIM", {}, "unknown"),
    ("não", RECEIPT, "reject"),
    ("NAO", RECEIPT, "reject"),
    ("cancelar", RECEIPT, "cancel_receipt"),
    ("/saldo", {}, "balance"),
    ("ver meu saldo", {}, "balance"),
    ("/gastos", {}, "expenses"),
    ("/metas", {}, "goals"),
    ("/ajuda", {}, "help"),
    ("menu", {}, "help"),
    ("onboarding", {}, "onboarding"),
    ("Olá!", {}, "greeting"),
    ("oi", {}, "greeting"),
    ("quanto eu gastei?", {}, "expenses_total"),
    ("bom dia", {}, "unknown"),
])
def test_resolve_intent(command, context, intent):
    assert resolve_intent(command, context) == intent


def test_parse_edit_command_all_fields():
    updates = parse_edit_command(
        "*EDITAR*\nValor: R$ 150,50\nData: 5/1/2025\nLocal: Mercado X\nCategoria: Alimentação\nTipo: Receita"
    )
    assert updates == {
        "amount": 150.5,
        "date": "2025-01-05",
        "merchant": "Mercado X",
        "category": "Alimentação",
        "type": "income",
    }


def test_parse_edit_command_ignores_bad_lines():
    assert parse_edit_command("EDITAR\nData: 2025-01-05\nValor: abc\nsem dois pontos") == {}
    assert parse_edit_command("Tipo: despesa") == {"type": "expense"}


def test_as_dict():
    assert as_dict('{"receiptId": "r1"}') == {"receiptId": "r1"}
    assert as_dict({"a": 1}) == {"a": 1}
    assert as_dict(None) == {}
    assert as_dict("not json") == {}
    assert as_dict("[1, 2]") == {}


def _run(db, command, context=None, session_id="s1"):
    return asyncio.run(handle_command(db, command=command, context=context, session_id=session_id,
                                      profile_id=PID, today=date(2025, 3, 20)))


def test_static_reply_does_not_commit(db):
    reply = _run(db, "/ajuda")
    assert "Comandos Disponíveis" in reply
    assert db.commits == 0
    assert db.calls == []


def test_balance_sums_accounts(db):
    db.on("SELECT balance FROM accounts", [{"balance": "100.5"}, {"balance": 20}])
    assert _run(db, "/saldo") == "💰 *Seu Saldo Atual*\n\nTotal: R$ 120.50"
    assert db.commits == 1


def test_expenses_groups_top_categories(db):
    db.on("SELECT amount, category FROM transactions", [
        {"amount": 50, "category": "Alimentação"},
        {"amount": 200, "category": "Contas"},
        {"amount": 30, "category": "Alimentação"},
        {"amount": 10, "category": None},
    ])
    reply = _run(db, "/gastos")

    assert "Total: R$ 290.00" in reply
    assert reply.index("• Contas: R$ 200.00") < reply.index("• Alimentação: R$ 80.00")
    assert "• Outros: R$ 10.00" in reply
    assert db.executed("SELECT amount, category FROM transactions")[0]["first_day"] == date(2025, 3, 1)


def test_expenses_empty_month(db):
    assert "Nenhum gasto registrado ainda." in _run(db, "/gastos")


def test_goals_progress_bar(db):
    db.on("FROM goals", [{"title": "Viagem", "target_amount": 1000, "current_amount": 250}])
    reply = _run(db, "/metas")
    assert "• Viagem\n  ███░░░░░░░ 25%" in reply
    assert "R$ 250.00 / R$ 1000.00" in reply


def test_goals_empty(db):
    assert "ainda não tem metas" in _run(db, "/metas")


def test_greeting_uses_first_name(db):
    db.on("SELECT nome FROM profiles", [{"nome": "Ana Maria Souza"}])
    assert _run(db, "oi").startswith("👋 Olá, Ana!")


def test_confirm_receipt_creates_transaction(db):
    stored = {"amount": -45.9, "category": "Alimentação", "type": "expense", "merchant": "Padaria",
              "date": "2025-03-18"}
    db.on("SELECT extracted_data FROM receipt_uploads", [{"extracted_data": json.dumps(stored)}])
    db.on("SELECT id FROM accounts", scalar="acc-1")

    reply = _run(db, "confirm_receipt", RECEIPT)

    assert reply.startswith("✅ *Despesa Registrada!*")
    assert "R$ 45.90" in reply
    txn = db.executed("INSERT INTO transactions")[0]
    assert txn["amount"] == 45.9
    assert txn["aid"] == "acc-1"
    assert txn["merchant"] == "Padaria"
    assert txn["date"] == date(2025, 3, 18)
    assert db.executed("UPDATE receipt_uploads SET status")[0]["status"] == "confirmed"
    session = db.executed("UPDATE whatsapp_sessions")[0]
    assert session["state"] == "idle"
    assert json.loads(session["ctx"]) == {}
    assert db.commits == 1


@pytest.mark.parametrize("stored_date", [None, "", "18/03/2025"])
def test_confirm_receipt_binds_today_when_date_is_unusable(db, stored_date):
    stored = {"amount": 10, "type": "expense", "date": stored_date}
    db.on("SELECT extracted_data FROM receipt_uploads", [{"extracted_data": json.dumps(stored)}])
    db.on("SELECT id FROM accounts", scalar="acc-1")

    _run(db, "confirm_receipt", RECEIPT)

    assert db.executed("INSERT INTO transactions")[0]["date"] == date(2025, 3, 20)


def test_confirm_receipt_missing_upload(db):
    reply = _run(db, "sim", RECEIPT)
    assert "Comprovante não encontrado" in reply
    assert db.executed("INSERT INTO transactions") == []


def test_cancel_receipt_resets_session(db):
    reply = _run(db, "cancelar", RECEIPT)
    assert reply.startswith("❌ Registro cancelado")
    assert db.executed("UPDATE receipt_uploads SET status")[0]["status"] == "cancelled"
    assert db.executed("UPDATE whatsapp_sessions")[0]["state"] == "idle"


def test_edit_receipt_merges_updates(db):
    db.on("SELECT extracted_data FROM receipt_uploads",
          [{"extracted_data": {"amount": 10, "merchant": "Loja", "type": "expense"}}])

    reply = _run(db, "EDITAR\nValor: 99,90", RECEIPT)

    assert "💰 Valor: R$ 99.90" in reply
    assert "🏪 Local: Loja" in reply
    assert "📍 Tipo: Despesa" in reply
    saved = json.loads(db.executed("UPDATE receipt_uploads SET extracted_data")[0]["data"])
    assert saved == {"amount": 99.9, "merchant": "Loja", "type": "expense"}
    ctx = json.loads(db.executed("UPDATE whatsapp_sessions SET context")[0]["ctx"])
    assert ctx["receiptId"] == "r1"
    assert ctx["extractedData"]["amount"] == 99.9


def test_edit_receipt_unparseable(db):
    reply = _run(db, "EDITAR nada aqui", RECEIPT)
    assert reply.startswith("❓ Não consegui entender")
    assert db.executed("UPDATE receipt_uploads") == []


def test_run_command_sends_reply(db, sent):
    asyncio.run(whatsapp_commands.run_command(db, to="5511999999999", command="/ajuda"))
    assert sent[0]["to"] == "5511999999999"
    assert "Comandos Disponíveis" in sent[0]["body"]
