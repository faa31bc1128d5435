class M4AHeaderError(Exception):
    """Base exception for M4A header construction."""

    pass


class InvalidInputError(M4AHeaderError):
    """The caller supplied parameters no valid header can be built from."""

    pass


class InvariantError(M4AHeaderError):
    """A box tree was misused or is missing an expected box."""

    pass
