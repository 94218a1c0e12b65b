"""SQLAlchemy models. Import the modules (not the package) to register tables."""
