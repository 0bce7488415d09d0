"""Attendance recognition and decision pipeline."""
