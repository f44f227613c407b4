# ==============================================
# FieldNormalizer
# ==============================================
#
# PURPOSE:
#   Convert all field names of an incoming item to a single canonical
#   form (snake_case) before the per-category normalizers read them.
#
# WHY THIS CLASS EXISTS:
#   The upstream event source sends camelCase JSON ("remoteJid",
#   "pushName", "messageTimestamp") while some producers already send
#   snake_case. Normalizers should only have to know one spelling.
#
# CLASS: FieldNormalizer
# ----------------------
#   Keeps a memo of raw name → canonical name.
#
#   Methods:
#   --------
#   - normalize(name) -> str   (memoised)
#   - normalize_keys(value: Any) -> Any
#       Recursively rewrite dict keys (inside dicts and lists).
#   - are_similar(first, second) -> bool
#
# RULES:
# ------
#   1. camelCase    → snake_case    (remoteJid → remote_jid)
#   2. PascalCase   → snake_case    (PushName → push_name)
#   3. ALLCAPS      → lowercase     (ID → id)
#   4. Mixed abbrev → snake_case    (userJID → user_jid)
#   5. Already snake → unchanged    (from_me → from_me)
#   6. Other characters become "_", runs of "_" collapse to one
#
# ==============================================

import re
from typing import Any, Dict

_NON_WORD = re.compile(r"[^0-9A-Za-z_]+")
_ACRONYM_BOUNDARY = re.compile(r"([A-Z]+)([A-Z][a-z])")
_WORD_BOUNDARY = re.compile(r"([a-z0-9])([A-Z])")
_REPEATED_UNDERSCORE = re.compile(r"__+")


def to_snake_case(name: str) -> str:
    """Uncached conversion used by FieldNormalizer ("userJID" -> "user_jid")."""
    name = _NON_WORD.sub("_", name)
    name = _ACRONYM_BOUNDARY.sub(r"\1_\2", name)
    name = _WORD_BOUNDARY.sub(r"\1_\2", name)
    return _REPEATED_UNDERSCORE.sub("_", name.lower()).strip("_")


class FieldNormalizer:
    """Memoising camelCase / PascalCase → snake_case key converter."""

    def __init__(self):
        self._memo: Dict[str, str] = {}

    def normalize(self, name: str) -> str:
        """
        Canonical snake_case spelling of one field name.

        "remoteJid" → "remote_jid", "PushName" → "push_name", "ID" → "id".
        """
        if not name:
            return name
        canonical = self._memo.get(name)
        if canonical is None:
            canonical = self._memo[name] = to_snake_case(name)
        return canonical

    def normalize_keys(self, value: Any) -> Any:
        """
        Return a copy of `value` with every dict key normalized.

        Non-string keys and non-container values are returned as-is.
        """
        if isinstance(value, list):
            return [self.normalize_keys(element) for element in value]
        if not isinstance(value, dict):
            return value
        return {
            (self.normalize(key) if isinstance(key, str) else key): self.normalize_keys(inner)
            for key, inner in value.items()
        }

    def are_similar(self, first: str, second: str) -> bool:
        """True when both spellings share one canonical form."""
        return self.normalize(first) == self.normalize(second)

    def get_mappings(self) -> Dict[str, str]:
        """Raw name → canonical name for every name seen so far."""
        return dict(self._memo)
