"""Services for restaurant discovery, calling and batch coordination."""
