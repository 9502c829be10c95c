"""
PR Watchdog web service.

Receives GitHub webhooks over FastAPI and runs the alert scan loops in the
same process.
"""
