"""
Product import queue service.

Durable job queue that ingests product records and drives their enrichment
(text embeddings, image captions, image vectors) into searchable stores.
"""
