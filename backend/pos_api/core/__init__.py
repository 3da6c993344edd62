"""
Application wiring: container, dependencies, lifespan.
"""
