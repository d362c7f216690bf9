"""
Error Signature Utility
=======================
Generates stable signatures for failures so the classifier can tell when two
failing tests most likely share one root cause.

Error Signature:
    error_kind + normalised top frame
    Two failures with the same exception kind raised from the same innermost
    project frame get the same signature.

A signature is only produced when BOTH parts are known: an empty signature is
"no evidence", and never matches anything.
"""
import hashlib


def normalize_frame(file_path: str, where: str = "") -> str:
    """
    Canonical "path:function" (or "path:line") form for a stack frame.

    Parameters
    ----------
    file_path : str
        Workspace-relative path of the frame.
    where : str
        Function name or line number of the frame.

    Returns
    -------
    str
        Forward-slashed "path:where", or "" if no path was given.
    """
    path = file_path.strip().replace("\\", "/") if file_path else ""
    while path.startswith("./"):
        path = path[2:]
    path = path.lstrip("/")
    if not path:
        return ""
    where = str(where).strip()
    return f"{path}:{where}" if where else path


def generate_error_signature(error_kind: str, top_frame: str) -> str:
    """
    Generate a stable signature for a failure.

    Parameters
    ----------
    error_kind : str
        Exception class name, e.g. "KeyError". Module prefixes are dropped
        so "builtins.KeyError" and "KeyError" match.
    top_frame : str
        Normalised top frame, see normalize_frame().

    Returns
    -------
    str
        16-char hex digest, or "" when either part is missing.
    """
    kind = error_kind.strip().rsplit(".", 1)[-1] if error_kind else ""
    frame = top_frame.strip() if top_frame else ""
    if not kind or not frame:
        return ""
    raw = f"{kind}|{frame}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]
