#!/usr/bin/env python3
"""
Tests for the dataset sink, tabular exports and artifact storage.
"""
import json
import os

import pandas as pd
import pytest

from stayscraper.export import DatasetSink, LocalArtifactStore, records_to_frame, save_output_rows

RECORDS = [
    {"listing_id": "1", "url": "https://www.airbnb.com/rooms/1", "price": {"amount": "120", "currency": "USD"}},
    {"listing_id": "2", "url": "https://www.airbnb.com/rooms/2", "price": None, "host": {"name": "Maria"}},
]


def test_sink_appends_json_lines(tmp_path):
    path = tmp_path / "out.jsonl"
    sink = DatasetSink(jsonl_path=str(path))
    for rec in RECORDS:
        sink.push(rec)

    assert len(sink) == 2
    lines = path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["listing_id"] for line in lines] == ["1", "2"]


def test_sink_in_memory_only():
    sink = DatasetSink()
    sink.push({"listing_id": "9"})
    assert sink.records == [{"listing_id": "9"}]


def test_frame_keeps_first_seen_columns():
    df = records_to_frame(RECORDS)
    assert list(df.columns) == ["listing_id", "url", "price", "host"]
    assert json.loads(df.loc[0, "price"]) == {"amount": "120", "currency": "USD"}

    raw = records_to_frame(RECORDS, flatten=False)
    assert raw.loc[1, "host"] == {"name": "Maria"}


def test_save_csv(tmp_path):
    path = str(tmp_path / "listings.csv")
    assert save_output_rows(RECORDS, path) == 2

    df = pd.read_csv(path, dtype=str)
    assert list(df["listing_id"]) == ["1", "2"]
    assert json.loads(df.loc[1, "host"]) == {"name": "Maria"}


def test_save_json(tmp_path):
    path = tmp_path / "listings.json"
    assert save_output_rows(RECORDS, str(path)) == 2
    assert json.loads(path.read_text(encoding="utf-8")) == RECORDS


def test_save_xlsx(tmp_path):
    pytest.importorskip("openpyxl")
    path = str(tmp_path / "listings.xlsx")
    assert save_output_rows(RECORDS, path) == 2
    df = pd.read_excel(path, dtype=str)
    assert list(df["url"]) == ["https://www.airbnb.com/rooms/1", "https://www.airbnb.com/rooms/2"]


def test_save_empty(tmp_path):
    path = str(tmp_path / "empty.csv")
    assert save_output_rows([], path) == 0
    assert os.path.exists(path)


def test_artifact_store(tmp_path):
    store = LocalArtifactStore(str(tmp_path / "artifacts"))

    html_path = store.save("error_snapshot_empty.html", "<html></html>", "text/html")
    png_path = store.save("error_snapshot_empty", b"\x89PNG", "image/png")

    assert html_path.endswith("error_snapshot_empty.html")
    assert png_path.endswith("error_snapshot_empty.png")
    with open(png_path, "rb") as fh:
        assert fh.read() == b"\x89PNG"
    assert store.path_for("notes", "application/x-unknown").endswith("notes")


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
