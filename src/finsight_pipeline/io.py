# FinSight Pipeline - Financial data normalization & projections for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
I/O module for FinSight Pipeline.

Reads a raw field set (``label -> value``) from disk and writes pipeline
results as JSON.

Supported input formats
-----------------------

1) JSON object
       {"Ventas": "1.500,00", "Coste Ventas": 900}

   Values must be strings, numbers or null.

2) Two-column CSV or XLSX (first sheet)
       label, value
       Ventas, "1.500,00"
       Coste Ventas, 900

   The header row is optional. Columns beyond the second are ignored. CSV
   values are kept as text so that locale formatting reaches the cleaner
   untouched; empty cells become None.

Labels are not interpreted here: resolution onto the canonical vocabulary
is the job of the synonym resolver. For Excel uploads, describe_sheet()
reports the statement type of the sheet that was read.
"""

import json
import math
import os
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Optional, Union

import pandas as pd

from .synonyms import classify_sheet, normalize_sheet_name, sheet_confidence

PathLike = Union[str, "os.PathLike[str]"]

_HEADER_LABELS = {"label", "field", "campo", "concepto"}
_HEADER_VALUES = {"value", "valor", "importe", "amount"}


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON in {path}") from exc

    if not isinstance(data, Mapping):
        raise ValueError(f"Expected a JSON object of label -> value in {path}.")

    for key, value in data.items():
        if value is not None and not isinstance(value, (str, int, float)):
            raise ValueError(
                f"Unsupported value for {key!r} in {path}: "
                f"expected a string, a number or null."
            )
    return {str(k): v for k, v in data.items()}


def _cell(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if isinstance(value, str) and value.strip() == "":
        return None
    return value


def _frame_to_fieldset(df: pd.DataFrame, path: Path) -> dict[str, Any]:
    if df.shape[1] < 2:
        raise ValueError(
            f"Invalid structure in {path}: expected two columns (label, value)."
        )
    df = df.iloc[:, :2]
    df.columns = ["label", "value"]

    if not df.empty:
        first_label = str(df.iloc[0]["label"]).strip().lower()
        first_value = str(df.iloc[0]["value"]).strip().lower()
        if first_label in _HEADER_LABELS and first_value in _HEADER_VALUES:
            df = df.iloc[1:]

    fields: dict[str, Any] = {}
    for label, value in zip(df["label"], df["value"]):
        label = _cell(label)
        if label is None:
            continue
        fields[str(label).strip()] = _cell(value)
    return fields


def read_raw_fieldset(path: PathLike) -> dict[str, Any]:
    """
    Read a raw field set from a JSON, CSV or XLSX file.

    Parameters
    ----------
    path:
        File to read. The format is chosen from the extension.

    Returns
    -------
    dict
        ``{label: raw value}`` in file order. When a label appears twice,
        the last occurrence wins.

    Raises
    ------
    FileNotFoundError
        If the file does not exist.
    ValueError
        If the extension is not supported or the content has the wrong
        structure.
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Input file not found: {path}")

    suffix = path.suffix.lower()
    if suffix == ".json":
        return _read_json(path)
    if suffix == ".csv":
        df = pd.read_csv(path, header=None, dtype=str, keep_default_na=False)
        return _frame_to_fieldset(df, path)
    if suffix in (".xlsx", ".xlsm"):
        df = pd.read_excel(path, header=None, dtype=object, engine="openpyxl")
        return _frame_to_fieldset(df, path)

    raise ValueError(
        f"Unsupported input format {suffix!r}. Expected .json, .csv or .xlsx."
    )


def describe_sheet(path: PathLike, labels: Iterable[str]) -> Optional[dict[str, Any]]:
    """
    Profile the sheet an Excel field set was read from.

    The statement type comes from the sheet title when it is explicit
    ("Balance 2024", "PyG") and from the field labels otherwise.

    Returns
    -------
    dict or None
        ``{"sheet": title, "kind": statement type, "confidence": float}``
        for .xlsx / .xlsm files, None for other formats.
    """
    path = Path(path)
    if path.suffix.lower() not in (".xlsx", ".xlsm"):
        return None

    labels = [str(label) for label in labels]
    with pd.ExcelFile(path, engine="openpyxl") as workbook:
        title = str(workbook.sheet_names[0])

    kind = normalize_sheet_name(title)
    if kind == "financial_data":
        kind = classify_sheet(title, labels)
    return {
        "sheet": title,
        "kind": kind,
        "confidence": sheet_confidence(title, labels),
    }


def write_result(result: Any, path: PathLike) -> Path:
    """
    Write a pipeline result (object with ``to_dict()`` or plain dict) as JSON.

    Parent directories are created as needed. Returns the written path.
    """
    path = Path(path)
    payload = result.to_dict() if hasattr(result, "to_dict") else dict(result)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(
        json.dumps(payload, indent=2, ensure_ascii=False, default=str) + "\n",
        encoding="utf-8",
    )
    return path
