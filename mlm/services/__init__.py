"""Services: store models, repositories and domain logic."""
