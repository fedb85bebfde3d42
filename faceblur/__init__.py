"""Face detection and blurring service for images landing in blob storage."""
