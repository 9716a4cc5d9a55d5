"""Application package for the language-learning quiz backend.

This package exposes the service, repository and model modules used by
the FastAPI application: quiz catalog and attempt scoring, flashcards
and JWT authentication. Individual modules contain the concrete
implementations and documentation.
"""
