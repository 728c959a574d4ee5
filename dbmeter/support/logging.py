__all__ = ["dump_hex", "dump_seq", "disable_shortening"]


class _LazyDump:
    """Formats its data only when a log record is actually emitted."""

    __slots__ = ("_format", "_data")

    def __init__(self, format, data):
        self._format = format
        self._data   = data

    def __str__(self):
        return self._format(self._data)

    def __repr__(self):
        return f"<dump {str(self)}>"


def _truncate(items, limit, unit):
    if limit is None or len(items) <= limit:
        return items, ""
    return items[:limit], f"... ({len(items)} {unit} total)"


def dump_hex(data):
    """``dump_hex(b"\\x01\\xff")`` logs as ``01ff``; long data is shortened."""
    def to_hex(data):
        data, suffix = _truncate(bytes(data), dump_hex.limit, "bytes")
        return data.hex() + suffix
    return _LazyDump(to_hex, data)

dump_hex.limit = 64


def dump_seq(joiner, data):
    """``dump_seq(" ", [50, 48])`` logs as ``50 48``; long sequences are shortened."""
    def to_seq(data):
        data, suffix = _truncate(list(data), dump_seq.limit, "elements")
        return joiner.join(map(str, data)) + suffix
    return _LazyDump(to_seq, data)

dump_seq.limit = 16


def disable_shortening():
    dump_hex.limit = dump_seq.limit = None
