"""Default DOM-to-text extraction for page snapshots.

Works on the tree returned by ``DOM.getDocument`` with ``depth=-1`` and
``pierce=True``; iframe documents and shadow roots are walked as well.
"""

from typing import Any

TEXT_NODE = 3

SKIPPED_ELEMENTS = frozenset({'SCRIPT', 'STYLE', 'NOSCRIPT', 'TEMPLATE', 'HEAD', 'TITLE'})


def _walk(node: dict[str, Any], out: list[str]) -> None:
    if node.get('nodeName', '').upper() in SKIPPED_ELEMENTS:
        return

    if node.get('nodeType') == TEXT_NODE:
        value = (node.get('nodeValue') or '').strip()
        if value:
            out.append(value)
        return

    for child in node.get('children') or []:
        _walk(child, out)
    for shadow_root in node.get('shadowRoots') or []:
        _walk(shadow_root, out)
    if node.get('contentDocument'):
        _walk(node['contentDocument'], out)


def extract_text_from_dom(dom: dict[str, Any] | None) -> str:
    """Collect visible text from a DOM.getDocument result."""
    if not dom:
        return ''
    root = dom.get('root', dom)
    out: list[str] = []
    _walk(root, out)
    return ' '.join(out)
