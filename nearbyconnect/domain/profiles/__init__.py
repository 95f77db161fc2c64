"""Profile domain: profiles, locations and identity bootstrap."""
