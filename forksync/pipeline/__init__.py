"""
Pipeline — Backup, mirror, integrate, gate, promote, notify, roll back.
"""
