"""Write services for the approval kernel."""
