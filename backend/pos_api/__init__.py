"""
POS API: offline-first persistence, synchronization and order engine.
"""
