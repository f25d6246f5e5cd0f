"""Local contacts and their HubSpot synchronization."""
