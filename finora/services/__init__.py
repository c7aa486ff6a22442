"""Services package: storage, email."""
