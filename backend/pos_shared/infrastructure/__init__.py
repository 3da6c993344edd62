"""
Infrastructure: local database, remote document store, notifications.
"""
