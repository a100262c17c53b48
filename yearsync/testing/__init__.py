from .fakes import (
    FakeRemote,
    FakeTokens,
    FakeTransport,
    diff_reply,
    make_change,
    millis,
    probe_reply,
)

__all__ = [
    "FakeRemote",
    "FakeTokens",
    "FakeTransport",
    "diff_reply",
    "make_change",
    "millis",
    "probe_reply",
]
