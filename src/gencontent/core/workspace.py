"""
Workspace resolution for generation passes.

A document belongs to the first workspace root whose textual form is a prefix
of the document's textual form. Matching is purely textual: no URI parsing,
no path normalization.
"""
from typing import Any, Optional, Sequence


def resolve_root(document: Any, roots: Optional[Sequence[Any]]) -> Optional[Any]:
    """
    Return the workspace root that owns ``document``.

    Args:
        document: Document location (string, path or URI-like object)
        roots: Candidate roots, in priority order

    Returns:
        The first candidate whose ``str()`` prefixes ``str(document)``,
        or None if the document is unknown or no candidate matches
    """
    if document is None or not roots:
        return None
    location = str(document)
    for root in roots:
        if location.startswith(str(root)):
            return root
    return None


def local_path(document: Any, root: Any) -> Optional[str]:
    """Strip the root's textual prefix from the document location."""
    if document is None or root is None:
        return None
    location = str(document)
    prefix = str(root)
    if not location.startswith(prefix):
        return None
    return location[len(prefix):]
