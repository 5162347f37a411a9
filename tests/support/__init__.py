"""In-memory collaborators shared by the test modules."""
