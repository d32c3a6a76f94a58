"""
Pytest configuration.

For standard test utilities, see tests/__init__.py
"""


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers", "db: marks tests as requiring a database engine (deselect with '-m \"not db\"')"
    )
