"""CoursePilot backend."""
