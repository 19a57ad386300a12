"""Password recovery service for the main user-management API."""
