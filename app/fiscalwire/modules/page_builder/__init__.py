"""Page builder: pages, zones, placements and auto-fill rules."""
