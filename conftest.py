"""Pytest configuration for Clinic Records."""


def pytest_configure(config):
    """Configure pytest with custom settings."""
    # Add custom markers
    config.addinivalue_line("markers", "clinic: mark test as clinic records test")
