"""Data access for canvasflow_api."""
