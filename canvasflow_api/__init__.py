"""HTTP surface of canvasflow: FastAPI app, run-log persistence and trigger routes."""
