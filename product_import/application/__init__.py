"""Application layer: submission parsing and queue/worker orchestration."""
