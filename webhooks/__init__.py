"""
GitHub webhook ingestion: payload normalization and the PR lifecycle state machine.
"""
