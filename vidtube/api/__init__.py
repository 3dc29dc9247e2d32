"""HTTP API layer (FastAPI).

Exposes the versioned `/api/v1` surface used by the web client:
- cursor-paginated video, comment, subscription and playlist feeds
- owner-scoped video, comment and playlist mutations
- AI workflow triggers and their job traces

The API stays thin: paging and persistence live in `vidtube.storage`, workflow
execution in `vidtube.runtime`.
"""
