"""Operator notifications for the auto-recovery system."""
