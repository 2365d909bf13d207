import csv
from io import BytesIO, StringIO

from openpyxl import load_workbook

from conftest import SUBJECT_ALERT, FakeMailbox, make_message
from cardalerts.services.promote_service import run_promote
from cardalerts.services.sync_service import run_sync


def _fill_ledger(db):
    run_sync(db, lambda: FakeMailbox([make_message(1, subject=SUBJECT_ALERT)]), "owner-1", days=3650)
    run_promote(db, FakeMailbox)


def test_export_csv(client, auth_headers, db_session):
    _fill_ledger(db_session)

    response = client.get("/api/v1/exports/ledger", params={"format": "csv"}, headers=auth_headers)

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/csv")
    rows = list(csv.DictReader(StringIO(response.text)))
    assert len(rows) == 1
    assert rows[0]["Merchant"] == "RAPPI ARGENTINA"
    assert rows[0]["Amount"] == "1234.56"
    assert rows[0]["Tags"] == "visa_alert"


def test_export_xlsx(client, auth_headers, db_session):
    _fill_ledger(db_session)

    response = client.get("/api/v1/exports/ledger", params={"format": "xlsx"}, headers=auth_headers)

    assert response.status_code == 200
    sheet = load_workbook(BytesIO(response.content)).active
    assert sheet.title == "Ledger"
    header = [cell.value for cell in sheet[1]]
    assert header[:3] == ["Transaction ID", "Date", "Merchant"]
    assert sheet.cell(row=2, column=3).value == "RAPPI ARGENTINA"


def test_export_empty_is_not_found(client, auth_headers):
    response = client.get("/api/v1/exports/ledger", headers=auth_headers)
    assert response.status_code == 404


def test_export_requires_secret(client):
    assert client.get("/api/v1/exports/ledger").status_code == 401


def test_export_rejects_unknown_format(client, auth_headers):
    response = client.get("/api/v1/exports/ledger", params={"format": "pdf"}, headers=auth_headers)
    assert response.status_code == 422
