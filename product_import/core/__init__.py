"""Domain-level building blocks shared across layers."""
