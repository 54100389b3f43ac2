"""Streaming manifest rewriting.

Adaptive streams make the player pick a rendition at replay time that may
never have been fetched during capture. Both rewriters reduce a manifest to
one rendition per stream so the page records, and later replays, exactly one.
"""

import re
import xml.etree.ElementTree as ET
from dataclasses import dataclass

DEFAULT_MAX_BANDWIDTH = 1_000_000
DEFAULT_MAX_RESOLUTION = 1280 * 720

EXT_INF = re.compile(r'#EXT-X-STREAM-INF:(?:.*[,])?BANDWIDTH=(\d+)')
EXT_RESOLUTION = re.compile(r'RESOLUTION=(\d+)x(\d+)')

_XML_NAMESPACES = {
    'xlink': 'http://www.w3.org/1999/xlink',
    'xsi': 'http://www.w3.org/2001/XMLSchema-instance',
    'cenc': 'urn:mpeg:cenc:2013',
}
for _prefix, _uri in _XML_NAMESPACES.items():
    ET.register_namespace(_prefix, _uri)


@dataclass
class Rendition:
    index: int
    bandwidth: int
    area: int = 0


def pick_rendition(
    renditions: list[Rendition],
    max_bandwidth: int = DEFAULT_MAX_BANDWIDTH,
    max_resolution: int = DEFAULT_MAX_RESOLUTION,
) -> Rendition:
    """Highest bandwidth rendition within the limits, else the cheapest one."""
    eligible = [
        r for r in renditions
        if r.bandwidth <= max_bandwidth and (not r.area or r.area <= max_resolution)
    ]
    if eligible:
        return max(eligible, key=lambda r: r.bandwidth)
    return min(renditions, key=lambda r: r.bandwidth)


def rewrite_hls(
    text: str,
    max_bandwidth: int = DEFAULT_MAX_BANDWIDTH,
    max_resolution: int = DEFAULT_MAX_RESOLUTION,
) -> str | None:
    """Keep a single variant stream in an HLS master playlist.

    Media playlists and single-variant masters come back normalised but
    otherwise unchanged. Returns None when the text is not a playlist.
    """
    if not text.lstrip().startswith('#EXTM3U'):
        return None

    lines = text.strip().splitlines()
    variants: list[Rendition] = []

    for index, line in enumerate(lines):
        m = EXT_INF.search(line)
        if not m:
            continue
        res = EXT_RESOLUTION.search(line)
        area = int(res.group(1)) * int(res.group(2)) if res else 0
        variants.append(Rendition(index=index, bandwidth=int(m.group(1)), area=area))

    drop: set[int] = set()
    best = pick_rendition(variants, max_bandwidth, max_resolution) if variants else None
    for variant in variants:
        if variant is best:
            continue
        drop.add(variant.index)
        # the variant URI is the next non-tag line
        for uri_index in range(variant.index + 1, len(lines)):
            if lines[uri_index].strip() and not lines[uri_index].startswith('#'):
                drop.add(uri_index)
                break

    return '\n'.join(line for index, line in enumerate(lines) if index not in drop) + '\n'


def _namespace(tag: str) -> str:
    if tag.startswith('{'):
        return tag[1:tag.index('}')]
    return ''


def rewrite_dash(
    text: str,
    max_bandwidth: int = DEFAULT_MAX_BANDWIDTH,
    max_resolution: int = DEFAULT_MAX_RESOLUTION,
) -> str | None:
    """Keep a single Representation per AdaptationSet of a DASH MPD.

    Returns None when the manifest cannot be parsed.
    """
    try:
        root = ET.fromstring(text)
    except ET.ParseError:
        return None

    ns = _namespace(root.tag)

    def qname(name: str) -> str:
        return f'{{{ns}}}{name}' if ns else name

    for adaptation in list(root.iter(qname('AdaptationSet'))):
        representations = adaptation.findall(qname('Representation'))
        if len(representations) < 2:
            continue

        renditions = []
        for index, rep in enumerate(representations):
            try:
                bandwidth = int(rep.get('bandwidth', '0'))
                area = int(rep.get('width', '0')) * int(rep.get('height', '0'))
            except ValueError:
                bandwidth, area = 0, 0
            renditions.append(Rendition(index=index, bandwidth=bandwidth, area=area))

        best = pick_rendition(renditions, max_bandwidth, max_resolution)
        for rendition in renditions:
            if rendition is not best:
                adaptation.remove(representations[rendition.index])

    try:
        body = ET.tostring(root, encoding='unicode', default_namespace=ns or None)
    except ValueError:
        # unqualified elements mixed into a namespaced MPD
        body = ET.tostring(root, encoding='unicode')
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + body
