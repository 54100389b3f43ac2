"""Small helpers shared across openrecorder."""

from urllib.parse import urldefrag


def format_bytes(num_bytes: int | float) -> str:
    """Format a byte count as a short human readable string (decimal units)."""
    value = float(num_bytes)
    for unit in ['B', 'kB', 'MB', 'GB']:
        if abs(value) < 1000.0:
            if unit == 'B':
                return f'{int(value)} {unit}'
            return f'{value:.3g} {unit}'
        value /= 1000.0
    return f'{value:.3g} TB'


def same_document_url(a: str, b: str) -> bool:
    """Compare two urls ignoring their fragments."""
    if not a or not b:
        return False
    return urldefrag(a)[0] == urldefrag(b)[0]
