"""
JSON Serialization Helper - Converts dashboard payloads and records to JSON-compatible data

Payloads are plain dicts, but values can still arrive as numpy scalars or
arrays (binning output, host-side enrichment), datetimes, NaN/inf floats,
or canonical record dataclasses (search results, snapshot exports).
"""

import json
import math
from dataclasses import asdict, is_dataclass
from datetime import datetime, date

import numpy as np


def serialize_for_json(obj):
    """
    Recursively convert non-JSON-serializable objects to strings or native types.

    Handles:
    - datetime / date -> ISO format string
    - numpy types -> Python native types
    - NaN / inf floats -> None
    - dataclass records -> dict
    - dict/list/tuple/set -> recursively process
    """
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    elif isinstance(obj, (np.integer, np.floating)):
        return serialize_for_json(obj.item())
    elif isinstance(obj, np.ndarray):
        return [serialize_for_json(item) for item in obj.tolist()]
    elif isinstance(obj, float):
        return obj if math.isfinite(obj) else None
    elif is_dataclass(obj) and not isinstance(obj, type):
        return serialize_for_json(asdict(obj))
    elif isinstance(obj, dict):
        return {str(key): serialize_for_json(value) for key, value in obj.items()}
    elif hasattr(obj, '_asdict'):
        return serialize_for_json(obj._asdict())
    elif isinstance(obj, (list, tuple, set, frozenset)):
        return [serialize_for_json(item) for item in obj]
    else:
        return obj


def safe_json_dumps(obj, **kwargs):
    """Safely convert object to JSON string, handling numpy and datetime types"""
    serialized = serialize_for_json(obj)
    return json.dumps(serialized, default=str, **kwargs)
