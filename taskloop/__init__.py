"""taskloop - calendar-driven task tracking with submit and verify."""
