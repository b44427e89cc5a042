"""Business logic services.

Decision functions are pure; the orchestration services take their
collaborators (repositories, blob store, clock) through the constructor.
"""
