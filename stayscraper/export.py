"""
Output sinks: the in-run dataset, tabular exports and diagnostic artifacts.
"""
import json
import logging
import os
import threading
from typing import Any, Dict, List, Optional, Union

import pandas as pd

logger = logging.getLogger(__name__)

CONTENT_TYPE_EXTENSIONS = {
    "text/html": ".html",
    "image/png": ".png",
    "application/json": ".json",
    "text/plain": ".txt",
}


class DatasetSink:
    """
    Append-only record store.

    With ``jsonl_path`` set, every record is also appended as one JSON line,
    so a run that is killed midway keeps what it collected.
    """

    def __init__(self, jsonl_path: Optional[str] = None):
        self.records: List[Dict[str, Any]] = []
        self.jsonl_path = jsonl_path
        self._lock = threading.Lock()

    def push(self, record: Dict[str, Any]) -> None:
        line = json.dumps(record, ensure_ascii=False) if self.jsonl_path else None
        with self._lock:
            if line is not None:
                with open(self.jsonl_path, "a", encoding="utf-8") as fh:
                    fh.write(line + "\n")
            self.records.append(record)

    def __len__(self) -> int:
        return len(self.records)


def _flatten(value: Any) -> Any:
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return value


def records_to_frame(records: List[Dict[str, Any]], flatten: bool = True) -> pd.DataFrame:
    """Build a DataFrame keeping first-seen column order across records."""
    columns: List[str] = []
    for rec in records:
        for key in rec:
            if key not in columns:
                columns.append(key)
    rows = [{k: _flatten(v) if flatten else v for k, v in rec.items()} for rec in records]
    return pd.DataFrame(rows, columns=columns)


def save_output_rows(records: List[Dict[str, Any]], out_path: str) -> int:
    """Save records to CSV, Excel or JSON, chosen by the file extension."""
    lower = out_path.lower()
    if lower.endswith(".json"):
        with open(out_path, "w", encoding="utf-8") as fh:
            json.dump(records, fh, ensure_ascii=False, indent=2)
        count = len(records)
    else:
        df = records_to_frame(records)
        if lower.endswith(".xlsx"):
            df.to_excel(out_path, index=False)
        else:
            df.to_csv(out_path, index=False)
        count = len(df)

    logger.info(">>> Saved %d rows to %s", count, out_path)
    return count


class LocalArtifactStore:
    """Writes diagnostic dumps (page HTML, screenshots) into a directory."""

    def __init__(self, directory: str):
        self.directory = directory

    def path_for(self, key: str, content_type: str) -> str:
        ext = CONTENT_TYPE_EXTENSIONS.get(content_type, "")
        name = key if not ext or key.endswith(ext) else key + ext
        return os.path.join(self.directory, name)

    def save(self, key: str, data: Union[str, bytes], content_type: str = "text/plain") -> str:
        os.makedirs(self.directory, exist_ok=True)
        path = self.path_for(key, content_type)
        if isinstance(data, str):
            with open(path, "w", encoding="utf-8") as fh:
                fh.write(data)
        else:
            with open(path, "wb") as fh:
                fh.write(data)
        logger.debug("Saved artifact %s", path)
        return path
