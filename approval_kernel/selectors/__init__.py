"""Read-only selectors for the approval kernel."""
