import yaml
import json
import math
import pathlib
import uuid
import decimal
from enum import Enum
from pathlib import Path
from datetime import datetime, date
import numpy as np
import pandas as pd


def load_yaml(path: Path):
    with open(path, "r", encoding="utf-8") as f:
        doc = yaml.safe_load(f)
    return doc or {}


def write_json(path, data):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=4, default=_json_default)


def dumps(data) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2, default=_json_default)


def _json_default(o):
    # datetimes / dates (incl. pandas.Timestamp)
    if isinstance(o, (pd.Timestamp, datetime, date)):
        return o.isoformat()
    # numpy scalars
    if isinstance(o, (np.integer,)):
        return int(o)
    if isinstance(o, (np.floating,)):
        value = float(o)
        return None if (math.isnan(value) or math.isinf(value)) else value
    if isinstance(o, (np.bool_)):
        return bool(o)
    if isinstance(o, decimal.Decimal):
        return float(o)
    if isinstance(o, Enum):
        return o.value
    if isinstance(o, (set, frozenset)):
        return sorted(o)
    if isinstance(o, (pathlib.Path, uuid.UUID)):
        return str(o)
    return str(o)
