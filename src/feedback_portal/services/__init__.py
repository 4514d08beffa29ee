"""Business logic for posts, merging, similarity search and feedback suggestions."""
