# HTTP API (FastAPI).
# Created: 2026-03-02
