"""Type-name demangling for the two RTTI encodings.

Only the shapes that appear in type descriptors are handled: plain and
nested class names.  Anything else (templates, local classes) is returned
as-is.
"""

from __future__ import annotations

from typing import List, Tuple

_ANONYMOUS_NAMESPACE = "_GLOBAL__N_1"
MSVC_TYPE_PREFIXES = (".?AV", ".?AU")


def _source_name(s: str, i: int) -> Tuple[str, int]:
    j = i
    while j < len(s) and s[j].isdigit():
        j += 1
    if j == i:
        raise ValueError(f"expected length at {i} in {s!r}")
    length = int(s[i:j])
    if j + length > len(s):
        raise ValueError(f"name overruns {s!r}")
    name = s[j:j + length]
    if name == _ANONYMOUS_NAMESPACE:
        name = "(anonymous namespace)"
    return name, j + length


def demangle_itanium_type(mangled: str) -> str:
    """``3Foo`` -> ``Foo``; ``N2ns3BarE`` -> ``ns::Bar``; ``St9exception`` -> ``std::exception``."""
    s = mangled.lstrip("*")
    if not s:
        return mangled
    try:
        if s[0] == "N":
            parts: List[str] = []
            i = 1
            while i < len(s) and s[i] in "rVK":
                i += 1
            while i < len(s) and s[i] != "E":
                if s.startswith("St", i):
                    parts.append("std")
                    i += 2
                    continue
                name, i = _source_name(s, i)
                parts.append(name)
            if i != len(s) - 1 or not parts:
                return mangled
            return "::".join(parts)
        if s.startswith("St"):
            name, i = _source_name(s, 2)
            return f"std::{name}" if i == len(s) else mangled
        name, i = _source_name(s, 0)
        return name if i == len(s) else mangled
    except ValueError:
        return mangled


def itanium_vtable_symbol(mangled: str) -> str:
    """Symbol of the vtable for the type whose ``type_info`` name is *mangled*."""
    return "_ZTV" + mangled.lstrip("*")


def demangle_msvc_type(decorated: str) -> str:
    """``.?AVBar@ns@@`` -> ``ns::Bar``."""
    if not decorated.startswith(MSVC_TYPE_PREFIXES) or not decorated.endswith("@@"):
        return decorated
    body = decorated[4:-2]
    if not body or "?" in body:
        return decorated
    return "::".join(reversed(body.split("@")))
