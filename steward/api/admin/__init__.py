"""Admin surface for permission review, delegation and audit logs."""
