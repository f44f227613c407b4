# ==============================================
# TOPIC 3: RECORDS
# ==============================================
#
# This package turns flushed batches of raw items into keyed,
# normalized records and keeps them in memory.
#
# Modules:
# --------
# - field_normalizer.py   → camelCase / PascalCase keys to snake_case
# - type_coercion.py      → bool / int / timestamp coercion
# - record_normalizer.py  → NormalizedRecord + per-category normalizers
# - record_store.py       → RecordStore (authoritative maps + cache mirror)
#
# ==============================================

from .field_normalizer import FieldNormalizer
from .type_coercion import TypeCoercer
from .record_normalizer import CACHE_PREFIXES, NormalizedRecord, RecordNormalizer
from .record_store import RecordStore

__all__ = [
    "CACHE_PREFIXES",
    "FieldNormalizer",
    "NormalizedRecord",
    "RecordNormalizer",
    "RecordStore",
    "TypeCoercer",
]
