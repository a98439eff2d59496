"""Canvas REST client and per-user sessions."""
