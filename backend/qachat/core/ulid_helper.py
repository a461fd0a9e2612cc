"""ULIDs for identities, generated channels and socket connections."""

import ulid


def generate_ulid() -> str:
    return str(ulid.ULID())
