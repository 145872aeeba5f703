import re
import unicodedata

KEY_MODES = ("strict", "loose")

# quote characters that leak into exported headers
QUOTE_CHARS = "\"'`‘’“”"

NON_WORD = re.compile(r"[\W_]+", re.UNICODE)


# ----------------------------------------
def normalize_key(raw_header, mode="strict"):
    """Canonical form of a column header.

    loose:  trims surrounding whitespace (tabs included) and quote characters.
    strict: loose, then case-folds, strips diacritics and drops every
            non-alphanumeric character, so "Driving Licence No.\\t" and
            "drivingLicenceNo" resolve to the same key.

    Both modes are idempotent.
    """
    if mode not in KEY_MODES:
        raise ValueError(f"unknown key mode {mode!r}, expected one of {KEY_MODES}")

    key = "" if raw_header is None else str(raw_header)

    # --quotes and whitespace can be interleaved, e.g. '" Name "\t'
    previous = None
    while previous != key:
        previous = key
        key = key.strip().strip(QUOTE_CHARS)

    if mode == "loose":
        return key

    # --compatibility decomposition can surface capitals (e.g. "ℌ" -> "H"), so fold after it
    key = unicodedata.normalize("NFKD", key.casefold())
    key = "".join(ch for ch in key if not unicodedata.combining(ch)).casefold()
    return NON_WORD.sub("", key)


# ----------------------------------------
def normalize_row(row, mode="strict", on_collision=None):
    """Re-key a row by normalized header, preserving column order.

    When two headers normalize to the same key the later one wins; the
    optional on_collision(key, earlier_header, later_header) callback is told.
    """
    normalized = {}
    source_header = {}
    for raw_header, value in row.items():
        key = normalize_key(raw_header, mode)
        if key in normalized and on_collision:
            on_collision(key, source_header[key], raw_header)
        normalized[key] = value
        source_header[key] = raw_header
    return normalized
