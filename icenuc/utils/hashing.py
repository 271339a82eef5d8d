# icenuc/utils/hashing.py
"""
Digests used to identify runs: task cache keys and run-log names come from
the run config, and uploaded workbooks are logged by a digest of their bytes.
"""

import json
import hashlib
from typing import Dict, Any


def config_hash(cfg: Dict[str, Any], length: int = 7) -> str:
    """
    Digest of a run config (or a task's keyed slice of one).

    Keys are sorted and non-JSON values (paths, dates) are stringified, so
    the same `setup:`/`ingest:` block always yields the same key. Seven
    characters name run logs; the full 64 are the task cache key.
    """
    canonical = json.dumps(cfg, sort_keys=True, ensure_ascii=True, default=str)
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()[:length]


def content_digest(data: bytes, length: int = 12) -> str:
    """Short sha256 of a workbook's bytes, so repeated uploads of one file are visible in the log."""
    return hashlib.sha256(data).hexdigest()[:length]
