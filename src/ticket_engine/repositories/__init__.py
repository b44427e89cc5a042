"""Persistence collaborators: record repositories and attachment blob stores."""
