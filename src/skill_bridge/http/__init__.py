"""HTTP collaborators."""
