"""Data models for the QuickNote store."""
