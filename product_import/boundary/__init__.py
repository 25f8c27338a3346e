"""Boundary adapters: relational store and external enrichment providers."""
