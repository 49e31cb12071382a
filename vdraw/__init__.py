"""Verifiable draw engine: certified randomness, ticket integrity and prize resolution."""
