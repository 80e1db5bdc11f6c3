"""Repository functions over the database models."""
