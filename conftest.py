import pytest

from callrelay.core.ws import LinkClosed


class RecordingLink:
    """Stand-in for a websocket Link that records every frame sent to it."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.sent: list[dict] = []
        self.closed = False

    async def send(self, frame: dict) -> None:
        if self.closed:
            raise LinkClosed(self.name)
        self.sent.append(frame)

    def __repr__(self) -> str:
        return f"RecordingLink({self.name})"


@pytest.fixture
def make_link():
    return RecordingLink
