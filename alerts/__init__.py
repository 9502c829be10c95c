"""
PR alerting: detection scanners, deduplication, formatting and paced dispatch.
"""
