"""
Abstract Submission Backend - REST API for conference abstract submissions

This package provides a FastAPI-based web service that collects abstract
submissions for a conference. It enables:

- Form submissions with required-field validation
- Sequential submission IDs from an atomic store-backed counter
- Confirmation and admin notification emails, sent best-effort
- Editing of a submission through a link until a fixed deadline

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - submission_service: Submit / fetch / update orchestration and deadline gate
    - sequence: Named atomic counters for uniqueID allocation
    - database: SQLite document store for submissions and counters
    - notifications: SMTP and SES mail transports behind a background dispatcher
    - configuration: config.yaml defaults, environment and override merging
    - models: Pydantic models for settings, views and responses

Usage:
    Run the API server with:
        uvicorn abstract_submission_backend.main:app --host 0.0.0.0 --port 3000

    Or use the console script, which reads PORT from the environment:
        abstract-submission-backend
"""
