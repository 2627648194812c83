"""Trip API routes."""
