"""OhmGraphite daemon application."""
