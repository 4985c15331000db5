"""ASGI entrypoint for the recording store API."""

from session_replay.api.app import create_app
from session_replay.containers import build_container

app = create_app(build_container())
