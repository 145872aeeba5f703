import json
import signal
from datetime import datetime
from io import BytesIO

import pandas as pd
import pytest

import client_mapper
from sheet_reader import parse_rows


@pytest.fixture
def client_sheet(tmp_path):
    """A small client export with the header quirks seen in real files."""

    data = pd.DataFrame(
        {
            "type": ["PERSON", "ORGANISATION", None],
            "profileId": [123, 456, None],
            "name": ["John Smith", "Acme Corp", None],
            "National ID": ["X123", None, None],
            "Passport No.\t": ["P-1", None, None],
            "Duns Number": [None, 123456, None],
            "postCode": [10115, None, None],
            "countryCode": ["ng", "NA", None],
            "List 1": ["Sanctions", None, None],
            "Active List 1": ["TRUE", None, None],
            "Since List 1": [datetime(2020, 5, 17), None, None],
            "notes": [None, None, "no mapped columns"],
        }
    )
    excel_path = tmp_path / "clients.xlsx"
    data.to_excel(excel_path, index=False)
    return excel_path


def test_parse_rows_reads_every_header(client_sheet):
    rows = parse_rows(client_sheet)

    assert len(rows) == 3
    assert list(rows[0]) == [
        "type",
        "profileId",
        "name",
        "National ID",
        "Passport No.\t",
        "Duns Number",
        "postCode",
        "countryCode",
        "List 1",
        "Active List 1",
        "Since List 1",
        "notes",
    ]
    assert rows[0]["name"] == "John Smith"
    assert isinstance(rows[0]["Since List 1"], datetime)
    assert rows[2]["notes"] == "no mapped columns"
    assert all(rows[2][key] is None for key in rows[2] if key != "notes")


def test_parse_rows_keeps_na_codes(client_sheet):
    rows = parse_rows(client_sheet)
    assert rows[1]["countryCode"] == "NA"


def test_parse_rows_accepts_bytes_and_file_objects(client_sheet):
    expected = parse_rows(client_sheet)
    content = client_sheet.read_bytes()

    buffer = BytesIO(content)
    buffer.read()  # leave cursor at end of stream

    assert parse_rows(content) == expected
    assert parse_rows(buffer) == expected


def test_parse_rows_empty_sheet(tmp_path):
    excel_path = tmp_path / "empty.xlsx"
    pd.DataFrame({"type": [], "name": []}).to_excel(excel_path, index=False)

    assert parse_rows(excel_path) == []


def test_parse_rows_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        parse_rows(tmp_path / "missing.xlsx")


def test_parse_then_transform(client_sheet):
    records = list(client_mapper.transform(parse_rows(client_sheet), drop_empty=True))

    assert records == [
        {
            "objectType": "client",
            "entityType": "PERSON",
            "clientId": "123",
            "name": "John Smith",
            "identityNumbers": [
                {"type": "national_id", "value": "X123"},
                {"type": "passport_no", "value": "P-1"},
            ],
            "addresses": [{"postCode": "10115", "countryCode": "NG"}],
            "lists": [
                {
                    "id": "Sanctions",
                    "name": "Sanctions",
                    "active": True,
                    "listActive": True,
                    "hierarchy": [{"id": "Sanctions", "name": "Sanctions"}],
                    "since": "2020-05-17",
                }
            ],
        },
        {
            "objectType": "client",
            "entityType": "ORGANISATION",
            "clientId": "456",
            "companyName": "Acme Corp",
            "identityNumbers": [{"type": "duns", "value": "123456"}],
            "addresses": [{"countryCode": "NA"}],
        },
    ]


def test_main_writes_jsonl_and_stats(client_sheet, tmp_path, capsys):
    output_file = tmp_path / "clients.jsonl"
    log_file = tmp_path / "stats.json"

    result = client_mapper.main(
        ["-i", str(client_sheet), "-o", str(output_file), "-l", str(log_file)]
    )

    assert result == 0
    lines = output_file.read_text(encoding="utf-8").splitlines()
    assert [json.loads(x)["clientId"] for x in lines] == ["123", "456"]

    stats = json.loads(log_file.read_text(encoding="utf-8"))
    assert stats["client"]["objectType"]["count"] == 3
    assert "3 rows processed, 2 rows written" in capsys.readouterr().out


def test_main_keep_empty_and_profile_schema(client_sheet, tmp_path):
    output_file = tmp_path / "profiles.jsonl"

    client_mapper.main(
        [
            "-i",
            str(client_sheet),
            "-o",
            str(output_file),
            "--schema",
            "profile",
            "--keep_empty",
        ]
    )

    records = [json.loads(x) for x in output_file.read_text(encoding="utf-8").splitlines()]
    assert len(records) == 3
    assert records[0]["profileId"] == "123"
    assert records[2] == {"objectType": "profile"}


def test_main_requires_existing_input(tmp_path):
    with pytest.raises(SystemExit) as exc_info:
        client_mapper.main(["-i", str(tmp_path / "nope.xlsx"), "-o", str(tmp_path / "out.jsonl")])
    assert exc_info.value.code == 1


def test_main_requires_output(client_sheet):
    with pytest.raises(SystemExit) as exc_info:
        client_mapper.main(["-i", str(client_sheet)])
    assert exc_info.value.code == 1


def test_main_reports_corrupt_workbook(tmp_path, capsys):
    broken = tmp_path / "broken.xlsx"
    broken.write_bytes(b"PK\x03\x04not really a workbook")

    with pytest.raises(SystemExit) as exc_info:
        client_mapper.main(["-i", str(broken), "-o", str(tmp_path / "out.jsonl")])

    assert exc_info.value.code == 1
    assert "Could not read" in capsys.readouterr().out


def test_main_restores_interrupt_handler(client_sheet, tmp_path):
    before = signal.getsignal(signal.SIGINT)

    client_mapper.main(["-i", str(client_sheet), "-o", str(tmp_path / "out.jsonl")])

    assert signal.getsignal(signal.SIGINT) is before
