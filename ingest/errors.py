from __future__ import annotations


class UpstreamUnavailable(Exception):
    pass


class UpstreamMalformed(ValueError):
    pass


class UnresolvedReference(LookupError):
    def __init__(self, kind: str, value: object) -> None:
        super().__init__(f"{kind} {value!r} not found in reference data")
        self.kind = kind
        self.value = value


class NoEventsFound(Exception):
    pass
