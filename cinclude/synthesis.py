"""Final pass over the declaration list.

* Functions and variables bound to the default library (``libc``) are
  rebound to the running process (``library=None``), where the C library is
  already loaded. Other libraries stay as named.
* Every struct/union is followed by its generated zero constructor.
"""

from dataclasses import (
    replace,
)

from cinclude.ir import (
    Constructor,
    Declaration,
    Function,
    Struct,
    Variable,
)

DEFAULT_LIBRARY = "libc"


def synthesize(declarations: list[Declaration], default_library: str = DEFAULT_LIBRARY) -> list[Declaration]:
    """Produce the ordered declaration sequence handed to the registrar.

    :param declarations: Walker output followed by probed constants.
    :param default_library: Library name whose symbols resolve without
        qualification.
    :returns: A new list; input declarations are not modified.
    """
    result: list[Declaration] = []
    for decl in declarations:
        if isinstance(decl, (Function, Variable)) and decl.library == default_library:
            decl = replace(decl, library=None)
        result.append(decl)
        if isinstance(decl, Struct):
            result.append(Constructor(type_name=decl.name))
    return result
