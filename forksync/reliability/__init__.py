"""
Reliability — Session lease and bounded polling.
"""
