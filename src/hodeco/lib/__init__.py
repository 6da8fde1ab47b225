"""Infrastructure shared by the rest of the package: file opening and optional acceleration."""
