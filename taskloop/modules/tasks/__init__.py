"""Task lifecycle, calendar sync, reminders and KPIs."""
