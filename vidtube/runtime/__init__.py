"""Runtime orchestration (background workflow jobs).

This layer is responsible for:
- claiming queued workflow jobs from SQLite
- calling the OpenAI-compatible provider for titles, descriptions and thumbnails
- writing results back to the video and recording job events

It stays independent from the HTTP layer (`vidtube.api`), so both the CLI and
the API process can run the same worker.
"""
