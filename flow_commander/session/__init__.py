"""Task file storage."""
