"""
Trip road matching package.

The package is organized into:
- api/: API endpoint handlers
- services/: matching orchestration, storage access and the OSRM matcher
- models.py: request, response and outcome models
- state.py: match status enum and transition rules
"""
